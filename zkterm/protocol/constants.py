"""
Terminal protocol command codes and constants.

Based on the ZKTeco communication protocol as used by the standalone
attendance/access terminals on TCP port 4370.
"""

from __future__ import annotations

from enum import IntEnum, IntFlag
from typing import Final


class CommandCode(IntEnum):
    """
    Command codes sent from the client to the terminal.

    Command codes are 16-bit values carried little-endian in the first field
    of the inner header. They are grouped by function:
    - 0x03E8-0x03F5: Session and device control
    - 0x0008-0x0013: User records and templates
    - 0x003C-0x004F: Capture and verification
    - 0x01F4: Realtime event registration
    - 0x05DF: Bulk data read
    """

    # ===== Session and Device Control =====

    CONNECT = 0x03E8
    """Open a session; the reply carries the device-assigned session id."""

    EXIT = 0x03E9
    """Close the session."""

    ENABLE_DEVICE = 0x03EA
    """Return the terminal to normal operation."""

    DISABLE_DEVICE = 0x03EB
    """Lock the terminal while data is being written."""

    REFRESH_DATA = 0x03F5
    """Commit written data to the active tables."""

    GET_VERSION = 0x044C
    """Read the firmware version string."""

    # ===== Options =====

    OPTIONS_RRQ = 0x000B
    """Read a device option (``~Name``)."""

    OPTIONS_WRQ = 0x000C
    """Write a device option (``Name=value``)."""

    # ===== User Records and Templates =====

    USER_WRQ = 0x0008
    """Write a 72-byte user record."""

    USERTEMP_RRQ = 0x0009
    """Read fingerprint templates."""

    DELETE_USER = 0x0012
    """Delete a user record by serial number."""

    DELETE_USERTEMP = 0x0013
    """Delete fingerprint templates of a user."""

    # ===== Capture and Verification =====

    START_VERIFY = 0x003C
    """Put the scanner into prompt mode."""

    START_ENROLL = 0x003D
    """Begin fingerprint enrollment for a descriptor."""

    CANCEL_CAPTURE = 0x003E
    """Abort any capture in progress."""

    VERIFY_WRQ = 0x004F
    """Write the per-user verification mode."""

    # ===== Events and Bulk Data =====

    REG_EVENT = 0x01F4
    """Register the realtime event mask; also the code of pushed event frames."""

    DATA_WRRQ = 0x05DF
    """Bulk data read request."""


class ReplyCode(IntEnum):
    """Reply codes returned by the terminal."""

    ACK_OK = 0x07D0
    """Command accepted."""

    ACK_ERROR = 0x07D1
    """Command failed."""

    ACK_DATA = 0x07D2
    """Command accepted, body carries data."""

    ACK_RETRY = 0x07D3
    """Device busy, retry later."""

    ACK_REPEAT = 0x07D4
    """Command repeated."""

    ACK_UNAUTH = 0x07D5
    """Session not authorized (comm key required)."""

    PREPARE_DATA = 0x05DC
    """Large data transfer announced."""

    DATA = 0x05DD
    """Data payload."""

    ACK_UNKNOWN = 0xFFFF
    """Unknown command."""


class EventFlag(IntFlag):
    """
    Realtime event bitmask.

    Pushed event frames carry exactly one of these values in the field that
    normally holds the session id.
    """

    ATTLOG = 0x0001
    """Attendance record logged."""

    FINGER = 0x0002
    """Finger placed on the scanner."""

    ENROLLUSER = 0x0004
    """User enrolled."""

    ENROLLFINGER = 0x0008
    """Fingerprint enrollment finished (payload carries the result code)."""

    BUTTON = 0x0010
    """Button pressed."""

    UNLOCK = 0x0020
    """Door unlocked."""

    VERIFY = 0x0080
    """User verified."""

    FPFTR = 0x0100
    """Fingerprint feature extracted (payload carries the quality score)."""

    ALARM = 0x0200
    """Alarm raised."""


ALL_EVENTS: Final[EventFlag] = (
    EventFlag.ATTLOG
    | EventFlag.FINGER
    | EventFlag.ENROLLUSER
    | EventFlag.ENROLLFINGER
    | EventFlag.BUTTON
    | EventFlag.UNLOCK
    | EventFlag.VERIFY
    | EventFlag.FPFTR
    | EventFlag.ALARM
)
"""Every event type the client knows how to decode."""


class VerifyMode(IntEnum):
    """Per-user verification policy written with VERIFY_WRQ."""

    GROUP_VERIFY = 0
    FP_ONLY = 129
    PIN_ONLY = 130
    PASSWORD_ONLY = 131
    RFID_ONLY = 132
    FP_PIN = 136
    FP_PASSWORD = 137


class FingerFlag(IntEnum):
    """Fingerprint template flag in the enrollment descriptor."""

    INVALID = 0
    VALID = 1
    DURESS = 3


class EnrollResult(IntEnum):
    """Known ENROLLFINGER result codes. Other values are device specific."""

    SUCCESS = 0
    NO_DATA_CAPTURED = 6


class ProtocolConstants:
    """
    Terminal protocol constants.

    Contains framing values, timing values, record sizes, and handshake
    payloads used throughout the protocol implementation.
    """

    # ===== Framing =====

    MAGIC: Final[bytes] = bytes([0x50, 0x50, 0x82, 0x7D])
    """Start of every TCP frame."""

    PREFIX_SIZE: Final[int] = 8
    """Magic (4) + payload size (4)."""

    HEADER_SIZE: Final[int] = 8
    """Inner header: command, checksum, session id, reply number."""

    MIN_FRAME_SIZE: Final[int] = 16
    """Smallest complete frame (prefix + inner header, empty body)."""

    MAX_PAYLOAD_SIZE: Final[int] = 0x100000
    """Upper bound accepted for a declared payload size."""

    REPLY_NUMBER_MODULUS: Final[int] = 0x10000
    """Reply numbers are 16-bit and wrap."""

    # ===== Timing Constants (in seconds) =====

    DEFAULT_COMMAND_TIMEOUT: Final[float] = 10.0
    """Default reply timeout in seconds."""

    DEFAULT_CONNECT_TIMEOUT: Final[float] = 5.0
    """TCP connect timeout in seconds."""

    DEFAULT_ENROLL_TIMEOUT: Final[float] = 60.0
    """Inactivity window during enrollment in seconds."""

    EXIT_TIMEOUT: Final[float] = 1.0
    """Reply timeout for the best-effort EXIT command."""

    RETRY_DELAY: Final[float] = 0.5
    """Delay between connect retries in seconds."""

    MAX_RETRIES: Final[int] = 3
    """Maximum number of connect retry attempts."""

    # ===== Network =====

    DEFAULT_HOST: Final[str] = "192.168.1.201"
    """Factory default terminal address."""

    DEFAULT_PORT: Final[int] = 4370
    """Factory default TCP port."""

    # ===== Records =====

    USER_RECORD_SIZE: Final[int] = 72
    """Size of one user record."""

    ENROLL_DESCRIPTOR_SIZE: Final[int] = 26
    """Size of the STARTENROLL payload."""

    VERIFY_RECORD_SIZE: Final[int] = 24
    """Size of the VERIFY_WRQ payload."""

    DEFAULT_USER_ID_WIDTH: Final[int] = 9
    """User-id width when the device does not report PIN2Width."""

    USER_ID_FIELD_SIZE: Final[int] = 9
    """Bytes reserved for the user id inside a user record."""

    AUTO_USER_ID_LIMIT: Final[int] = 999
    """Highest id searched for a gap when suggesting a new user id."""

    MAX_FINGER_INDEX: Final[int] = 9
    """Fingers are numbered 0-9."""

    EXPECTED_PLACEMENTS: Final[int] = 3
    """Finger placements the terminal asks for during enrollment."""

    GOOD_QUALITY_SCORE: Final[int] = 100
    """FPFTR score reported for a good sample."""

    # ===== Handshake and Request Payloads =====

    SDK_BUILD_OPTION: Final[bytes] = b"SDKBuild=1\x00"
    """Option written after CONNECT."""

    EVENT_MASK_ALL: Final[bytes] = bytes([0xFF, 0xFF, 0x00, 0x00])
    """REG_EVENT body enabling every realtime event."""

    READ_ALL_USERS: Final[bytes] = bytes(
        [0x01, 0x09, 0x00, 0x05, 0x00, 0x00, 0x00, 0x00, 0x00, 0x00, 0x00]
    )
    """DATA_WRRQ body requesting the whole user table."""


REJECTION_CODES: Final[frozenset[int]] = frozenset({
    ReplyCode.ACK_ERROR,
    ReplyCode.ACK_RETRY,
    ReplyCode.ACK_REPEAT,
    ReplyCode.ACK_UNAUTH,
    ReplyCode.ACK_UNKNOWN,
})
"""Reply codes that mean the command was not carried out."""

DATA_REPLY_CODES: Final[frozenset[int]] = frozenset({
    ReplyCode.ACK_DATA,
    ReplyCode.DATA,
})
"""Reply codes whose body carries bulk data."""
