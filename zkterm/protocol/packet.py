"""
Terminal protocol frame encoding and decoding.

Every TCP frame has the same layout:

    +-------------+-----------------+----------------------------+------+
    | magic (4)   | payload size(4) | inner header (8)           | body |
    | 50 50 82 7D | u32 LE          | cmd, checksum, session,    |      |
    |             | = 8 + len(body) | reply number (u16 LE each) |      |
    +-------------+-----------------+----------------------------+------+

Wire Format Notes:
- All integers are little-endian
- Realtime event frames use the REG_EVENT command code and carry the event
  bitmask in the session id field
- Inbound checksums are checked but a mismatch is only logged, since
  firmware behaviour varies
"""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass, field
from enum import Enum, auto

from zkterm.exceptions import FrameError
from zkterm.protocol.checksums import calculate_checksum, checksum_input, validate_checksum
from zkterm.protocol.constants import CommandCode, ProtocolConstants, ReplyCode

logger = logging.getLogger(__name__)

_PREFIX = struct.Struct("<4sI")
_HEADER = struct.Struct("<HHHH")


class FrameParseResult(Enum):
    """
    Result codes for frame parsing operations.

    These indicate the outcome of attempting to parse a frame from
    a byte buffer.
    """

    SUCCESS = auto()
    """Frame was successfully parsed."""

    TOO_SHORT = auto()
    """Buffer is shorter than the 16-byte minimum frame."""

    BAD_MAGIC = auto()
    """Buffer does not start with the protocol magic."""

    INCOMPLETE_FRAME = auto()
    """Declared payload size exceeds the bytes available."""

    INVALID_SIZE = auto()
    """Declared payload size is smaller than the inner header."""


@dataclass(frozen=True)
class Frame:
    """
    A decoded protocol frame.

    Attributes:
        command: Command or reply code.
        checksum: Checksum as carried on the wire.
        session_id: Session id (event bitmask for realtime frames).
        reply_number: Reply number.
        body: Frame body.
        raw: Complete raw frame bytes.
    """

    command: int
    checksum: int
    session_id: int
    reply_number: int
    body: bytes = b""
    raw: bytes = field(default=b"", repr=False, compare=False)

    @property
    def is_realtime(self) -> bool:
        """Check if this frame is an unsolicited realtime event."""
        return self.command == CommandCode.REG_EVENT

    @property
    def event_code(self) -> int:
        """Event bitmask of a realtime frame (carried in the session id field)."""
        return self.session_id

    @property
    def reply(self) -> ReplyCode | int:
        """Get command as ReplyCode enum if recognized, else raw int."""
        try:
            return ReplyCode(self.command)
        except ValueError:
            return self.command

    @property
    def is_ok(self) -> bool:
        """Check if this frame is a positive acknowledgment."""
        return self.command == ReplyCode.ACK_OK

    def __repr__(self) -> str:
        reply = self.reply
        name = reply.name if isinstance(reply, ReplyCode) else f"0x{self.command:04X}"
        if self.is_realtime:
            name = f"EVENT(0x{self.event_code:04X})"
        return (
            f"Frame({name}, session={self.session_id}, reply={self.reply_number}, "
            f"body={len(self.body)} bytes)"
        )


@dataclass(frozen=True)
class FrameParseError:
    """
    Details about a frame parsing failure.

    Provides diagnostic information when parsing fails.
    """

    result: FrameParseResult
    message: str
    partial_data: bytes = b""


def encode_packet(
    command: int,
    session_id: int,
    reply_number: int,
    body: bytes | bytearray = b"",
) -> bytes:
    """
    Build a complete protocol frame.

    The inner header is first built with a zero checksum placeholder, the
    checksum is computed over it (skipping the checksum field) and written
    back, then the magic and payload size are prepended.

    Args:
        command: Command or reply code.
        session_id: Session id (0 before CONNECT succeeds).
        reply_number: Reply number for this frame.
        body: Optional body bytes.

    Returns:
        Complete frame bytes.

    Example:
        >>> encode_packet(CommandCode.CONNECT, 0, 0).hex()
        '5050827d08000000e80317fc00000000'
    """
    body = bytes(body)
    header = _HEADER.pack(command, 0, session_id, reply_number)
    checksum = calculate_checksum(checksum_input(header, body))
    header = _HEADER.pack(command, checksum, session_id, reply_number)
    payload = header + body
    return _PREFIX.pack(ProtocolConstants.MAGIC, len(payload)) + payload


def frame_size(prefix: bytes | bytearray) -> int:
    """
    Read the payload size from the 8-byte frame prefix.

    Args:
        prefix: Magic and payload size as received.

    Returns:
        Number of bytes that follow the prefix.

    Raises:
        FrameError: If the prefix is short, the magic is wrong or the size
            is out of range.
    """
    if len(prefix) < ProtocolConstants.PREFIX_SIZE:
        raise FrameError(
            f"Frame prefix too short ({len(prefix)} bytes)",
            result=FrameParseResult.TOO_SHORT,
        )
    magic, size = _PREFIX.unpack_from(prefix)
    if magic != ProtocolConstants.MAGIC:
        raise FrameError(f"Bad frame magic {magic.hex()}", result=FrameParseResult.BAD_MAGIC)
    if not ProtocolConstants.HEADER_SIZE <= size <= ProtocolConstants.MAX_PAYLOAD_SIZE:
        raise FrameError(f"Invalid payload size {size}", result=FrameParseResult.INVALID_SIZE)
    return size


class FrameReader:
    """
    Protocol frame parser.

    Parses raw bytes into Frame objects. The parser is stateless and can be
    reused for multiple parse operations.

    Example:
        >>> reader = FrameReader()
        >>> result, frame = reader.parse(encode_packet(ReplyCode.ACK_OK, 7, 0))
        >>> assert result == FrameParseResult.SUCCESS
        >>> assert frame.session_id == 7
    """

    def parse(
        self,
        buffer: bytes | bytearray | memoryview,
    ) -> tuple[FrameParseResult, Frame | FrameParseError]:
        """
        Parse one frame from the start of the buffer.

        Bytes after the declared payload are ignored.

        Args:
            buffer: Input buffer containing frame data.

        Returns:
            Tuple of (result, frame_or_error):
            - On success: (SUCCESS, Frame)
            - On failure: (error_code, FrameParseError)
        """
        buffer = bytes(buffer)

        if len(buffer) < ProtocolConstants.MIN_FRAME_SIZE:
            return FrameParseResult.TOO_SHORT, FrameParseError(
                result=FrameParseResult.TOO_SHORT,
                message=f"Buffer too small for frame (need 16, have {len(buffer)})",
                partial_data=buffer,
            )

        magic, size = _PREFIX.unpack_from(buffer)
        if magic != ProtocolConstants.MAGIC:
            return FrameParseResult.BAD_MAGIC, FrameParseError(
                result=FrameParseResult.BAD_MAGIC,
                message=f"Invalid frame magic {magic.hex()}",
                partial_data=buffer[:4],
            )

        if size < ProtocolConstants.HEADER_SIZE:
            return FrameParseResult.INVALID_SIZE, FrameParseError(
                result=FrameParseResult.INVALID_SIZE,
                message=f"Declared payload size {size} smaller than header",
            )

        end = ProtocolConstants.PREFIX_SIZE + size
        if len(buffer) < end:
            return FrameParseResult.INCOMPLETE_FRAME, FrameParseError(
                result=FrameParseResult.INCOMPLETE_FRAME,
                message=f"Incomplete frame (need {end}, have {len(buffer)})",
                partial_data=buffer,
            )

        header = buffer[8:16]
        body = buffer[16:end]
        command, checksum, session_id, reply_number = _HEADER.unpack(header)

        if not validate_checksum(header, body):
            logger.warning(
                "Checksum mismatch on frame 0x%04X (got 0x%04X), accepting anyway",
                command,
                checksum,
            )

        frame = Frame(
            command=command,
            checksum=checksum,
            session_id=session_id,
            reply_number=reply_number,
            body=body,
            raw=buffer[:end],
        )
        return FrameParseResult.SUCCESS, frame


# Module-level convenience instance
DEFAULT_FRAME_READER: FrameReader = FrameReader()
"""Default FrameReader instance for convenience."""


def decode_frame(buffer: bytes | bytearray | memoryview) -> Frame:
    """
    Decode a frame, raising on failure.

    Args:
        buffer: Input buffer containing one frame.

    Returns:
        The decoded Frame.

    Raises:
        FrameError: If the buffer does not hold a complete valid frame.
    """
    result, parsed = DEFAULT_FRAME_READER.parse(buffer)
    if result != FrameParseResult.SUCCESS:
        raise FrameError(parsed.message, result=result)
    return parsed
