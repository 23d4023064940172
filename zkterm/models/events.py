"""
Realtime event types.

Once the event mask is registered the terminal pushes frames with the
REG_EVENT command code at arbitrary points. The event code travels in the
session id field and the payload layout depends on the code. Each code maps
to one dataclass below; ``parse_event`` turns a pushed frame into the right
variant.
"""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Union

from zkterm.exceptions import ParseError
from zkterm.models.records import AttendanceRecord
from zkterm.protocol.constants import EventFlag

if TYPE_CHECKING:
    from zkterm.protocol.packet import Frame

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Event:
    payload: bytes = field(default=b"", repr=False)


@dataclass(frozen=True)
class AttendanceEvent(_Event):
    """A user punched in or out."""

    record: AttendanceRecord | None = None
    code: EventFlag = field(default=EventFlag.ATTLOG, init=False)


@dataclass(frozen=True)
class FingerEvent(_Event):
    """A finger was placed on the scanner."""

    code: EventFlag = field(default=EventFlag.FINGER, init=False)


@dataclass(frozen=True)
class EnrollUserEvent(_Event):
    code: EventFlag = field(default=EventFlag.ENROLLUSER, init=False)


@dataclass(frozen=True)
class EnrollFingerEvent(_Event):
    """
    Fingerprint enrollment finished.

    result_code is None when the payload is shorter than two bytes.
    """

    result_code: int | None = None
    code: EventFlag = field(default=EventFlag.ENROLLFINGER, init=False)


@dataclass(frozen=True)
class ButtonEvent(_Event):
    code: EventFlag = field(default=EventFlag.BUTTON, init=False)


@dataclass(frozen=True)
class UnlockEvent(_Event):
    code: EventFlag = field(default=EventFlag.UNLOCK, init=False)


@dataclass(frozen=True)
class VerifyEvent(_Event):
    code: EventFlag = field(default=EventFlag.VERIFY, init=False)


@dataclass(frozen=True)
class FingerprintQualityEvent(_Event):
    """Feature extraction finished; score is 0-100 or None if absent."""

    score: int | None = None
    code: EventFlag = field(default=EventFlag.FPFTR, init=False)


@dataclass(frozen=True)
class AlarmEvent(_Event):
    code: EventFlag = field(default=EventFlag.ALARM, init=False)


@dataclass(frozen=True)
class UnknownEvent(_Event):
    """An event code this library does not decode."""

    code: int = 0


RealtimeEvent = Union[
    AttendanceEvent,
    FingerEvent,
    EnrollUserEvent,
    EnrollFingerEvent,
    ButtonEvent,
    UnlockEvent,
    VerifyEvent,
    FingerprintQualityEvent,
    AlarmEvent,
    UnknownEvent,
]


def _attendance(payload: bytes) -> AttendanceEvent:
    try:
        record = AttendanceRecord.from_event_payload(payload)
    except ParseError as e:
        logger.warning("Undecodable attendance event: %s", e)
        record = None
    return AttendanceEvent(payload=payload, record=record)


def _enroll_finger(payload: bytes) -> EnrollFingerEvent:
    result_code = struct.unpack_from("<H", payload)[0] if len(payload) >= 2 else None
    return EnrollFingerEvent(payload=payload, result_code=result_code)


def _quality(payload: bytes) -> FingerprintQualityEvent:
    return FingerprintQualityEvent(payload=payload, score=payload[0] if payload else None)


_PARSERS = {
    EventFlag.ATTLOG: _attendance,
    EventFlag.FINGER: lambda payload: FingerEvent(payload=payload),
    EventFlag.ENROLLUSER: lambda payload: EnrollUserEvent(payload=payload),
    EventFlag.ENROLLFINGER: _enroll_finger,
    EventFlag.BUTTON: lambda payload: ButtonEvent(payload=payload),
    EventFlag.UNLOCK: lambda payload: UnlockEvent(payload=payload),
    EventFlag.VERIFY: lambda payload: VerifyEvent(payload=payload),
    EventFlag.FPFTR: _quality,
    EventFlag.ALARM: lambda payload: AlarmEvent(payload=payload),
}


def parse_event(frame: Frame) -> RealtimeEvent:
    """
    Decode a pushed realtime frame into its event variant.

    Args:
        frame: A frame whose is_realtime property is True.

    Returns:
        The event; UnknownEvent for codes without a decoder.
    """
    parser = _PARSERS.get(frame.event_code)
    if parser is None:
        return UnknownEvent(payload=frame.body, code=frame.event_code)
    return parser(frame.body)
