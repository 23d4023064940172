"""
zkterm - asyncio client for ZKTeco-compatible biometric terminals.

This library speaks the terminal's binary TCP protocol (port 4370):
session handshake, user record provisioning, realtime event streaming and
fingerprint enrollment.

Example:
    >>> import asyncio
    >>> from zkterm import TerminalClient
    >>>
    >>> async def main():
    ...     async with TerminalClient() as client:
    ...         await client.connect("192.168.1.201")
    ...         for user in await client.list_users():
    ...             print(user.user_id, user.name)
    >>>
    >>> asyncio.run(main())
"""

from zkterm.client import ClientState, TerminalClient
from zkterm.config import TerminalSettings
from zkterm.dispatcher import EventDispatcher, Subscription
from zkterm.enrollment import (
    EnrollmentOrchestrator,
    EnrollmentResult,
    EnrollmentState,
    FailureReason,
)
from zkterm.exceptions import (
    ConnectionError,
    DeviceRejectedError,
    EnrollmentFailure,
    FrameError,
    OperationCancelledError,
    ParseError,
    ProtocolError,
    TimeoutError,
    TransportError,
    ZKTermError,
)
from zkterm.models import (
    AttendanceRecord,
    DeviceInfo,
    EnrollmentDescriptor,
    RealtimeEvent,
    UserRecord,
)
from zkterm.protocol import CommandCode, EventFlag, ReplyCode
from zkterm.session import Session, SessionManager

__version__ = "0.1.0"

__all__ = [
    # Client
    "TerminalClient",
    "ClientState",
    "TerminalSettings",
    # Session and events
    "Session",
    "SessionManager",
    "EventDispatcher",
    "Subscription",
    # Enrollment
    "EnrollmentOrchestrator",
    "EnrollmentResult",
    "EnrollmentState",
    "FailureReason",
    # Models
    "UserRecord",
    "EnrollmentDescriptor",
    "AttendanceRecord",
    "DeviceInfo",
    "RealtimeEvent",
    # Protocol
    "CommandCode",
    "ReplyCode",
    "EventFlag",
    # Exceptions
    "ZKTermError",
    "TransportError",
    "ConnectionError",
    "ProtocolError",
    "FrameError",
    "ParseError",
    "DeviceRejectedError",
    "EnrollmentFailure",
    "TimeoutError",
    "OperationCancelledError",
    # Version
    "__version__",
]
