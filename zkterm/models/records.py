"""
Pydantic models for terminal records.

This module defines the fixed-layout structures exchanged with the terminal,
implemented as immutable Pydantic models with validation.

Design principles:
- All models are frozen (immutable)
- Field constraints mirror the wire layout (widths, integer ranges)
- Text fields are ASCII, NUL padded on the wire and NUL trimmed in Python
- Every record converts to and from its exact byte layout
"""

from __future__ import annotations

import struct
from datetime import datetime
from typing import ClassVar

from pydantic import BaseModel, ConfigDict, Field, field_validator

from zkterm.exceptions import ParseError
from zkterm.protocol.constants import FingerFlag, ProtocolConstants, VerifyMode


def _pad_ascii(value: str, width: int) -> bytes:
    return value.encode("ascii").ljust(width, b"\x00")[:width]


def _trim_ascii(raw: bytes, record_type: str, offset: int) -> str:
    text = raw.split(b"\x00", 1)[0]
    try:
        return text.decode("ascii")
    except UnicodeDecodeError as e:
        raise ParseError(
            "Text field is not ASCII",
            record_type=record_type,
            offset=offset,
            raw_data=raw.hex(),
        ) from e


def _check_ascii(value: str) -> str:
    if not value.isascii():
        raise ValueError("must contain only ASCII characters")
    if "\x00" in value:
        raise ValueError("must not contain NUL characters")
    return value


class UserRecord(BaseModel):
    """
    A user record as stored on the terminal.

    The wire layout is exactly 72 bytes:

        offset  size  field
        0       2     serial number (u16, device-assigned)
        2       1     permission
        3       8     password (ASCII, NUL padded)
        11      24    name (ASCII, NUL padded)
        35      4     card number (u32)
        39      1     group number
        40      2     timezone flag (0 = use group timezones)
        42      6     timezone slots (3 x u16)
        48      9     user id (ASCII, NUL padded)
        57      15    reserved

    Example:
        >>> record = UserRecord(user_id="1001", name="Alice")
        >>> len(record.to_bytes())
        72
        >>> UserRecord.from_bytes(record.to_bytes()) == record
        True
    """

    model_config = ConfigDict(frozen=True)

    LAYOUT: ClassVar[struct.Struct] = struct.Struct("<HB8s24sIBH3H9s15s")

    serial_number: int = Field(default=0, ge=0, le=0xFFFF, description="Device-assigned serial")
    permission: int = Field(default=0, ge=0, le=255, description="Privilege level")
    password: str = Field(default="", max_length=8, description="Password")
    name: str = Field(default="", max_length=24, description="Display name")
    card_number: int = Field(default=0, ge=0, le=0xFFFFFFFF, description="RFID card number")
    group: int = Field(default=1, ge=0, le=255, description="Group number")
    timezone_flag: int = Field(default=0, ge=0, le=0xFFFF, description="Timezone flag")
    timezones: tuple[int, int, int] = Field(default=(0, 0, 0), description="Timezone slots")
    user_id: str = Field(min_length=1, max_length=ProtocolConstants.USER_ID_FIELD_SIZE, description="User id")
    reserved: bytes = Field(default=bytes(15), min_length=15, max_length=15)

    @field_validator("password", "name", "user_id")
    @classmethod
    def validate_ascii(cls, v: str) -> str:
        """Ensure text fields fit the ASCII wire encoding."""
        return _check_ascii(v)

    @field_validator("timezones")
    @classmethod
    def validate_timezones(cls, v: tuple[int, int, int]) -> tuple[int, int, int]:
        """Ensure every timezone slot fits in a u16."""
        if any(not 0 <= tz <= 0xFFFF for tz in v):
            raise ValueError("timezone slots must be 0-65535")
        return v

    def to_bytes(self) -> bytes:
        """Encode the record into its 72-byte wire layout."""
        return self.LAYOUT.pack(
            self.serial_number,
            self.permission,
            _pad_ascii(self.password, 8),
            _pad_ascii(self.name, 24),
            self.card_number,
            self.group,
            self.timezone_flag,
            *self.timezones,
            _pad_ascii(self.user_id, 9),
            self.reserved,
        )

    @classmethod
    def from_bytes(cls, data: bytes | bytearray | memoryview) -> UserRecord:
        """
        Decode a record from its 72-byte wire layout.

        Args:
            data: Exactly 72 bytes.

        Returns:
            UserRecord instance.

        Raises:
            ParseError: If the length is wrong or a text field is not ASCII.
        """
        data = bytes(data)
        if len(data) != ProtocolConstants.USER_RECORD_SIZE:
            raise ParseError(
                f"User record must be {ProtocolConstants.USER_RECORD_SIZE} bytes, got {len(data)}",
                record_type="UserRecord",
                raw_data=data.hex(),
            )

        (
            serial_number,
            permission,
            password,
            name,
            card_number,
            group,
            timezone_flag,
            tz1,
            tz2,
            tz3,
            user_id,
            reserved,
        ) = cls.LAYOUT.unpack(data)

        user_id_text = _trim_ascii(user_id, "UserRecord", 48)
        if not user_id_text:
            raise ParseError("User record has an empty user id", record_type="UserRecord", offset=48)

        return cls(
            serial_number=serial_number,
            permission=permission,
            password=_trim_ascii(password, "UserRecord", 3),
            name=_trim_ascii(name, "UserRecord", 11),
            card_number=card_number,
            group=group,
            timezone_flag=timezone_flag,
            timezones=(tz1, tz2, tz3),
            user_id=user_id_text,
            reserved=reserved,
        )

    def __repr__(self) -> str:
        return f"UserRecord(user_id={self.user_id!r}, serial={self.serial_number}, name={self.name!r})"


class EnrollmentDescriptor(BaseModel):
    """
    Payload of the START_ENROLL command (26 bytes).

        offset  size  field
        0       24    user id (ASCII, NUL padded)
        24      1     finger index (0-9)
        25      1     finger flag
    """

    model_config = ConfigDict(frozen=True)

    user_id: str = Field(min_length=1, max_length=24)
    finger_index: int = Field(default=0, ge=0, le=ProtocolConstants.MAX_FINGER_INDEX)
    finger_flag: FingerFlag = Field(default=FingerFlag.VALID)

    @field_validator("user_id")
    @classmethod
    def validate_ascii(cls, v: str) -> str:
        """Ensure the user id fits the ASCII wire encoding."""
        return _check_ascii(v)

    def to_bytes(self) -> bytes:
        """Encode the descriptor into its 26-byte wire layout."""
        return _pad_ascii(self.user_id, 24) + bytes([self.finger_index, self.finger_flag])


def verify_mode_payload(serial_number: int, mode: VerifyMode = VerifyMode.FP_ONLY) -> bytes:
    """
    Build the 24-byte VERIFY_WRQ payload.

    Args:
        serial_number: Device-assigned serial of the user.
        mode: Verification mode to apply.

    Returns:
        Serial (u16 LE), mode byte, zero fill.
    """
    if not 0 <= serial_number <= 0xFFFF:
        raise ValueError(f"Serial number must be 0-65535, got {serial_number}")
    payload = struct.pack("<HB", serial_number, mode)
    return payload.ljust(ProtocolConstants.VERIFY_RECORD_SIZE, b"\x00")


class AttendanceRecord(BaseModel):
    """
    An attendance punch pushed with the ATTLOG realtime event.

    Firmware versions use different payload layouts. Short layouts carry a
    numeric user id, long ones a 24-byte ASCII id:

        size        layout
        10          u16 id, status, punch, time(6)
        12          u32 id, status, punch, time(6)
        14          u16 id, status, punch, time(6), 4 extra
        32 or more  24-byte id, status, punch, time(6), extra

    The time field is year-2000, month, day, hour, minute, second.
    """

    model_config = ConfigDict(frozen=True)

    user_id: str
    status: int = Field(ge=0, le=255, description="Attendance state")
    verify_type: int = Field(ge=0, le=255, description="Verification method used")
    timestamp: datetime

    @classmethod
    def from_event_payload(cls, data: bytes | bytearray | memoryview) -> AttendanceRecord:
        """
        Decode an ATTLOG event payload.

        Raises:
            ParseError: If the payload size matches no known layout or the
                timestamp is invalid.
        """
        data = bytes(data)
        size = len(data)

        if size == 10 or size == 14:
            user_num, status, verify_type, time_raw = struct.unpack_from("<HBB6s", data)
            user_id = str(user_num)
        elif size == 12:
            user_num, status, verify_type, time_raw = struct.unpack_from("<IBB6s", data)
            user_id = str(user_num)
        elif size >= 32:
            user_raw, status, verify_type, time_raw = struct.unpack_from("<24sBB6s", data)
            user_id = _trim_ascii(user_raw, "AttendanceRecord", 0)
        else:
            raise ParseError(
                f"Unknown attendance payload size {size}",
                record_type="AttendanceRecord",
                raw_data=data.hex(),
            )

        year, month, day, hour, minute, second = time_raw
        try:
            timestamp = datetime(2000 + year, month, day, hour, minute, second)
        except ValueError as e:
            raise ParseError(
                f"Invalid attendance timestamp: {e}",
                record_type="AttendanceRecord",
                raw_data=data.hex(),
            ) from e

        return cls(user_id=user_id, status=status, verify_type=verify_type, timestamp=timestamp)


class DeviceInfo(BaseModel):
    """
    Terminal identity.

    Each field is None when the terminal does not report it.
    """

    model_config = ConfigDict(frozen=True)

    device_name: str | None = Field(default=None, description="Model name (~DeviceName)")
    serial_number: str | None = Field(default=None, description="Serial number (~SerialNumber)")
    platform: str | None = Field(default=None, description="Hardware platform (~Platform)")
    firmware_version: str | None = Field(default=None, description="Firmware version string")

    def __str__(self) -> str:
        name = self.device_name or "unknown"
        return f"{name} {self.serial_number or '?'} ({self.firmware_version or '?'})"
