"""
Device option queries.

Options are read with OPTIONS_RRQ and a ``~Name`` body; a supporting
terminal answers ACK_OK with ``~Name=value`` followed by NUL. An empty or
unterminated value counts as unsupported.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

from zkterm.models.records import DeviceInfo
from zkterm.protocol.constants import CommandCode, ProtocolConstants, ReplyCode

if TYPE_CHECKING:
    from zkterm.correlator import CommandCorrelator

logger = logging.getLogger(__name__)

USER_ID_WIDTH_OPTION = "PIN2Width"
ALPHANUMERIC_ID_OPTION = "IsABCPinEnable"
DEVICE_NAME_OPTION = "DeviceName"
SERIAL_NUMBER_OPTION = "SerialNumber"
PLATFORM_OPTION = "Platform"


def validate_parameter_name(name: str) -> str:
    """
    Raises:
        ValueError: If the name is empty, not ASCII, or contains '=' or NUL.
    """
    if not name:
        raise ValueError("Parameter name must not be empty")
    if not name.isascii() or "=" in name or "\x00" in name:
        raise ValueError(f"Invalid parameter name {name!r}")
    return name


class DeviceParameters:
    """Reads named options from a connected terminal."""

    def __init__(self, correlator: CommandCorrelator) -> None:
        self._correlator = correlator

    async def get(self, name: str) -> str | None:
        """
        Query a device option.

        Args:
            name: Option name without the leading '~'.

        Returns:
            The option value, or None when the terminal does not support it.

        Raises:
            ValueError: If the name is invalid.
        """
        validate_parameter_name(name)
        reply = await self._correlator.send_command(
            CommandCode.OPTIONS_RRQ, f"~{name}\x00".encode("ascii")
        )
        if reply.command != ReplyCode.ACK_OK:
            logger.debug("Option %s not supported (reply 0x%04X)", name, reply.command)
            return None

        match = re.search(
            rb"~" + re.escape(name.encode("ascii")) + rb"=([^\x00]+)\x00", reply.body
        )
        if match is None:
            logger.debug("Option %s missing from reply %r", name, reply.body)
            return None
        return match.group(1).decode("ascii", errors="replace")

    async def user_id_width(self, default: int = ProtocolConstants.DEFAULT_USER_ID_WIDTH) -> int:
        """Maximum user id length, or ``default`` when the device does not say."""
        value = await self.get(USER_ID_WIDTH_OPTION)
        if value is None or not value.strip().isdigit() or int(value) <= 0:
            return default
        return int(value)

    async def supports_alphanumeric_ids(self) -> bool:
        value = await self.get(ALPHANUMERIC_ID_OPTION)
        return value is not None and value.strip() == "1"

    async def firmware_version(self) -> str | None:
        """Firmware version string, None when the terminal refuses GET_VERSION."""
        reply = await self._correlator.send_command(CommandCode.GET_VERSION)
        if reply.command != ReplyCode.ACK_OK:
            logger.debug("Firmware version not available (reply 0x%04X)", reply.command)
            return None
        version = reply.body.split(b"\x00", 1)[0].decode("ascii", errors="replace").strip()
        return version or None

    async def device_info(self) -> DeviceInfo:
        """
        Read the terminal's identity.

        Fields the terminal does not report are left as None.
        """
        return DeviceInfo(
            device_name=await self.get(DEVICE_NAME_OPTION),
            serial_number=await self.get(SERIAL_NUMBER_OPTION),
            platform=await self.get(PLATFORM_OPTION),
            firmware_version=await self.firmware_version(),
        )
