"""
Exception hierarchy for zkterm.

All exceptions inherit from ZKTermError, providing a clean hierarchy
for error handling. The design follows these principles:

1. Transport errors (socket refused/reset/EOF) are distinct from protocol errors
2. Device rejections carry the original reply code and the command that caused it
3. Enrollment failures carry partial progress for user feedback
4. All exceptions provide meaningful error messages
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Final

if TYPE_CHECKING:
    from collections.abc import Iterable

    from zkterm.protocol.packet import Frame


class ZKTermError(Exception):
    """
    Base exception for all zkterm errors.

    All library-specific exceptions inherit from this class, allowing
    callers to catch all zkterm errors with a single except clause.
    """

    pass


class ProtocolError(ZKTermError):
    """
    Protocol-level error.

    Raised when the protocol is violated, such as:
    - Invalid frame format
    - Unexpected command or reply code
    - Malformed data structure
    """

    pass


class FrameError(ProtocolError):
    """
    Frame decoding error.

    Raised when bytes received from the terminal cannot be decoded into a
    frame (too short, bad magic, truncated payload). The ``result``
    attribute holds the FrameParseResult that describes the failure.
    """

    def __init__(self, message: str, *, result: object | None = None) -> None:
        super().__init__(message)
        self.result = result


class TimeoutError(ZKTermError):  # noqa: A001 - intentionally shadows builtin
    """
    Communication timeout.

    Raised when a reply or event is not received within the expected time.
    A timeout is recoverable: the connection stays usable and the caller may
    retry or abort.
    """

    def __init__(
        self,
        message: str = "Communication timeout",
        *,
        timeout_seconds: float | None = None,
    ) -> None:
        super().__init__(message)
        self.timeout_seconds = timeout_seconds

    def __str__(self) -> str:
        base = super().__str__()
        if self.timeout_seconds is not None:
            return f"{base} (after {self.timeout_seconds:.1f}s)"
        return base


class ConnectionError(ZKTermError):  # noqa: A001 - intentionally shadows builtin
    """
    Terminal connection state error.

    Raised when:
    - An operation requires a session but the client is not connected
    - connect() is called while already connected
    """

    pass


class TransportError(ZKTermError):
    """
    Transport-level error.

    Raised for low-level socket issues:
    - Connection refused or reset
    - Peer closed the connection
    - I/O errors

    A TransportError should prompt a reconnect.
    """

    pass


class OperationCancelledError(ZKTermError):
    """
    A pending operation was abandoned because the connection was closed.
    """

    pass


class ParseError(ZKTermError):
    """
    Record parsing error.

    Raised when a fixed-layout record cannot be decoded, typically due to:
    - Wrong record length
    - Non-ASCII text fields
    - Invalid field values
    """

    def __init__(
        self,
        message: str,
        *,
        record_type: str | None = None,
        offset: int | None = None,
        raw_data: str | None = None,
    ) -> None:
        super().__init__(message)
        self.record_type = record_type
        self.offset = offset
        self.raw_data = raw_data

    def __str__(self) -> str:
        parts = [super().__str__()]
        if self.record_type:
            parts.append(f"record_type={self.record_type}")
        if self.offset is not None:
            parts.append(f"offset={self.offset}")
        if self.raw_data:
            display_data = self.raw_data[:40] + "..." if len(self.raw_data) > 40 else self.raw_data
            parts.append(f"data={display_data}")
        return " ".join(parts) if len(parts) > 1 else parts[0]


class DeviceRejectedError(ZKTermError):
    """
    The terminal answered a command with a rejection reply.

    The reply_code attribute contains the original reply code and command
    the code of the command that was rejected.
    """

    def __init__(
        self,
        reply_code: int,
        command: int | None = None,
        message: str | None = None,
    ) -> None:
        self.reply_code = reply_code
        self.command = command
        self.message = message or REPLY_MESSAGES.get(reply_code, "Unexpected reply")
        text = "Device rejected command"
        if command is not None:
            text += f" 0x{command:04X}"
        super().__init__(f"{text}: reply 0x{reply_code:04X} ({self.message})")


class EnrollmentFailure(ZKTermError):
    """
    Fingerprint enrollment ended without a stored template.

    Carries the partial progress reached before the failure so the caller
    can tell the user what happened.
    """

    def __init__(
        self,
        message: str,
        *,
        reason: object | None = None,
        error_code: int | None = None,
        placement_count: int = 0,
        last_quality: int | None = None,
    ) -> None:
        super().__init__(message)
        self.reason = reason
        self.error_code = error_code
        self.placement_count = placement_count
        self.last_quality = last_quality


# Reply code to message mapping based on ReplyCode values
REPLY_MESSAGES: Final[dict[int, str]] = {
    0x07D1: "Command failed",
    0x07D3: "Device busy, retry",
    0x07D4: "Repeated command",
    0x07D5: "Unauthorized, comm key required",
    0xFFFF: "Unknown command",
}

_REPLY_CODES: Final[frozenset[int]] = frozenset(
    {0x07D0, 0x07D1, 0x07D2, 0x07D3, 0x07D4, 0x07D5, 0x05DC, 0x05DD, 0xFFFF}
)


def raise_for_reply(
    frame: Frame,
    command: int | None = None,
    accept: Iterable[int] = (0x07D0,),
) -> Frame:
    """
    Raise if the reply frame is not one of the accepted codes.

    Args:
        frame: Reply frame returned for a command.
        command: The command that was sent (for the error message).
        accept: Reply codes that count as success.

    Returns:
        The frame unchanged when accepted.

    Raises:
        DeviceRejectedError: If the reply is a rejection code.
        ProtocolError: If the frame is not a reply at all.
    """
    if frame.command in accept:
        return frame
    if frame.command in _REPLY_CODES:
        raise DeviceRejectedError(frame.command, command)
    target = f"0x{command:04X}" if command is not None else "command"
    raise ProtocolError(f"Unexpected frame 0x{frame.command:04X} in reply to {target}")
