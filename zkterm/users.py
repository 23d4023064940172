"""
User record provisioning.

Writes to the user table follow the device's locking discipline: the
terminal is disabled while records change, the change is committed with
REFRESHDATA and the terminal is enabled again afterwards.
"""

from __future__ import annotations

import logging
import struct
from typing import TYPE_CHECKING

from zkterm.exceptions import ParseError, ZKTermError
from zkterm.models.records import UserRecord
from zkterm.protocol.constants import DATA_REPLY_CODES, CommandCode, ProtocolConstants

if TYPE_CHECKING:
    from zkterm.correlator import CommandCorrelator

logger = logging.getLogger(__name__)


def validate_user_id(user_id: str, width: int) -> str:
    """
    Check a user id against the device's id width.

    Args:
        user_id: Candidate id.
        width: Maximum id length reported by (or configured for) the device.
            Capped at the 9-byte id field of the user record.

    Returns:
        The id unchanged.

    Raises:
        ValueError: If the id is empty, too wide or not ASCII.
    """
    if not user_id:
        raise ValueError("User id must not be empty")
    if not user_id.isascii() or "\x00" in user_id:
        raise ValueError(f"User id {user_id!r} must be ASCII without NUL characters")
    limit = min(width, ProtocolConstants.USER_ID_FIELD_SIZE)
    if len(user_id) > limit:
        raise ValueError(f"User id {user_id!r} exceeds the id width of {limit}")
    return user_id


def parse_user_table(body: bytes) -> list[UserRecord]:
    """
    Decode the body of a read-all-users reply.

    The body is a u32 LE byte count followed by 72-byte records. A trailing
    partial record is dropped with a warning; a record that fails to decode
    is skipped with a warning.
    """
    if len(body) < 4:
        logger.debug("User table reply has no size prefix, assuming empty table")
        return []

    declared = struct.unpack_from("<I", body)[0]
    table = body[4:]
    record_size = ProtocolConstants.USER_RECORD_SIZE

    if declared > len(table):
        logger.warning(
            "User table declares %d bytes but only %d arrived", declared, len(table)
        )
    usable = min(declared, len(table))
    if usable % record_size:
        logger.warning(
            "Dropping %d trailing bytes of a partial user record", usable % record_size
        )

    users: list[UserRecord] = []
    for offset in range(0, usable - usable % record_size, record_size):
        try:
            users.append(UserRecord.from_bytes(table[offset : offset + record_size]))
        except ParseError as e:
            logger.warning("Skipping undecodable user record at offset %d: %s", offset, e)
    return users


class UserDirectory:
    """
    User table operations on a connected terminal.

    Attributes:
        user_id_width: Maximum user id length accepted by create_user().
    """

    def __init__(
        self,
        correlator: CommandCorrelator,
        user_id_width: int = ProtocolConstants.DEFAULT_USER_ID_WIDTH,
    ) -> None:
        self._correlator = correlator
        self.user_id_width = user_id_width

    async def list_users(self) -> list[UserRecord]:
        """
        Read the full user table.

        Returns:
            Decoded records in device order.

        Raises:
            DeviceRejectedError: If the terminal refuses the read.
        """
        reply = await self._correlator.request(
            CommandCode.DATA_WRRQ,
            ProtocolConstants.READ_ALL_USERS,
            accept=DATA_REPLY_CODES,
        )
        users = parse_user_table(reply.body)
        logger.debug("Read %d user records", len(users))
        return users

    async def find_by_user_id(self, user_id: str) -> UserRecord | None:
        """Return the record whose user id matches, or None."""
        for record in await self.list_users():
            if record.user_id == user_id:
                return record
        return None

    async def next_available_user_id(self) -> str:
        """
        Suggest an id for a new user.

        Returns the lowest unused numeric id from 1 to 999, or one past the
        highest numeric id when all of those are taken. Non-numeric ids are
        ignored.
        """
        users = await self.list_users()
        taken = {int(record.user_id) for record in users if record.user_id.isdigit()}
        for candidate in range(1, ProtocolConstants.AUTO_USER_ID_LIMIT + 1):
            if candidate not in taken:
                return str(candidate)
        return str(max(taken) + 1)

    async def write_user_record(self, record: UserRecord) -> None:
        """Send USER_WRQ without the disable/refresh bracket."""
        await self._correlator.request(CommandCode.USER_WRQ, record.to_bytes())

    async def refresh(self) -> None:
        await self._correlator.request(CommandCode.REFRESH_DATA)

    async def create_user(self, record: UserRecord) -> UserRecord:
        """
        Write a user record.

        Sequence: DISABLE_DEVICE, USER_WRQ, ENABLE_DEVICE, REFRESH_DATA. If
        the write fails the terminal is still re-enabled and the error is
        re-raised.

        Args:
            record: Record to store; its user id must fit the id width.

        Returns:
            The record as written.

        Raises:
            ValueError: If the user id is too wide.
            DeviceRejectedError: If the terminal rejects a step.
        """
        validate_user_id(record.user_id, self.user_id_width)
        logger.info("Creating user %s", record.user_id)

        await self._correlator.request(CommandCode.DISABLE_DEVICE)
        try:
            await self.write_user_record(record)
        except ZKTermError:
            await self._enable_quietly()
            raise
        await self._correlator.request(CommandCode.ENABLE_DEVICE)
        await self.refresh()
        return record

    async def delete_user(self, serial_number: int) -> None:
        """
        Delete a user and its fingerprint templates by serial number.

        Sequence: DISABLE_DEVICE, DELETE_USERTEMP, DELETE_USER, REFRESH_DATA,
        ENABLE_DEVICE. The terminal is re-enabled even when a step fails.

        Raises:
            ValueError: If the serial does not fit in 16 bits.
            DeviceRejectedError: If the terminal rejects a step.
        """
        if not 0 <= serial_number <= 0xFFFF:
            raise ValueError(f"Serial number must be 0-65535, got {serial_number}")
        serial = struct.pack("<H", serial_number)
        logger.info("Deleting user with serial %d", serial_number)

        await self._correlator.request(CommandCode.DISABLE_DEVICE)
        try:
            await self._correlator.request(CommandCode.DELETE_USERTEMP, serial + b"\x00")
            await self._correlator.request(CommandCode.DELETE_USER, serial)
            await self.refresh()
        except ZKTermError:
            await self._enable_quietly()
            raise
        await self._correlator.request(CommandCode.ENABLE_DEVICE)

    async def delete_user_by_id(self, user_id: str) -> bool:
        """
        Delete the user with the given id if it exists.

        Returns:
            True if a user was deleted, False if none matched.
        """
        record = await self.find_by_user_id(user_id)
        if record is None:
            logger.debug("User %s not found, nothing to delete", user_id)
            return False
        await self.delete_user(record.serial_number)
        return True

    async def _enable_quietly(self) -> None:
        try:
            await self._correlator.request(CommandCode.ENABLE_DEVICE)
        except ZKTermError as e:
            logger.warning("Could not re-enable terminal: %s", e)
