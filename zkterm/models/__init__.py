"""
Data models for terminal records and events.

This module contains the structures exchanged with the terminal:

- Fixed-layout records (UserRecord, EnrollmentDescriptor)
- Attendance punches decoded from realtime events
- Terminal identity (DeviceInfo)
- The realtime event tagged union
"""

from zkterm.models.events import (
    AlarmEvent,
    AttendanceEvent,
    ButtonEvent,
    EnrollFingerEvent,
    EnrollUserEvent,
    FingerEvent,
    FingerprintQualityEvent,
    RealtimeEvent,
    UnknownEvent,
    UnlockEvent,
    VerifyEvent,
    parse_event,
)
from zkterm.models.records import (
    AttendanceRecord,
    DeviceInfo,
    EnrollmentDescriptor,
    UserRecord,
    verify_mode_payload,
)

__all__ = [
    # Records
    "UserRecord",
    "EnrollmentDescriptor",
    "AttendanceRecord",
    "DeviceInfo",
    "verify_mode_payload",
    # Events
    "RealtimeEvent",
    "AttendanceEvent",
    "FingerEvent",
    "EnrollUserEvent",
    "EnrollFingerEvent",
    "ButtonEvent",
    "UnlockEvent",
    "VerifyEvent",
    "FingerprintQualityEvent",
    "AlarmEvent",
    "UnknownEvent",
    "parse_event",
]
