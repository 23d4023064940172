"""Tests for DeviceParameters."""

import pytest

from zkterm.models.records import DeviceInfo
from zkterm.parameters import DeviceParameters, validate_parameter_name
from zkterm.protocol.constants import CommandCode, ReplyCode


@pytest.fixture
def parameters(manager):
    """Create DeviceParameters on the connected session."""
    return DeviceParameters(manager.correlator)


class TestDeviceParameters:
    """Tests for option queries."""

    @pytest.mark.asyncio
    async def test_get_value(self, terminal, parameters):
        """Test the request body and parsed value."""
        terminal.reply_with(CommandCode.OPTIONS_RRQ, ReplyCode.ACK_OK, b"~PIN2Width=14\x00")

        assert await parameters.get("PIN2Width") == "14"
        assert terminal.received[-1].body == b"~PIN2Width\x00"

    @pytest.mark.asyncio
    async def test_unsupported(self, terminal, parameters):
        """Test a rejected query returns None."""
        terminal.reply_with(CommandCode.OPTIONS_RRQ, ReplyCode.ACK_ERROR)
        assert await parameters.get("PIN2Width") is None

    @pytest.mark.asyncio
    async def test_missing_pattern(self, terminal, parameters):
        """Test an OK reply without the option returns None."""
        terminal.reply_with(CommandCode.OPTIONS_RRQ, ReplyCode.ACK_OK, b"~Other=1\x00")
        assert await parameters.get("PIN2Width") is None

    @pytest.mark.asyncio
    async def test_empty_or_unterminated_value(self, terminal, parameters):
        """Test an empty value or a missing NUL terminator counts as unsupported."""
        terminal.reply_with(CommandCode.OPTIONS_RRQ, ReplyCode.ACK_OK, b"~PIN2Width=\x00")
        assert await parameters.get("PIN2Width") is None

        terminal.reply_with(CommandCode.OPTIONS_RRQ, ReplyCode.ACK_OK, b"~PIN2Width=14")
        assert await parameters.get("PIN2Width") is None

    @pytest.mark.asyncio
    async def test_user_id_width(self, terminal, parameters):
        """Test the width is read from PIN2Width."""
        terminal.reply_with(CommandCode.OPTIONS_RRQ, ReplyCode.ACK_OK, b"~PIN2Width=14\x00")
        assert await parameters.user_id_width() == 14

    @pytest.mark.asyncio
    async def test_user_id_width_default(self, terminal, parameters):
        """Test the width falls back when unsupported or not numeric."""
        terminal.reply_with(CommandCode.OPTIONS_RRQ, ReplyCode.ACK_ERROR)
        assert await parameters.user_id_width() == 9

        terminal.reply_with(CommandCode.OPTIONS_RRQ, ReplyCode.ACK_OK, b"~PIN2Width=abc\x00")
        assert await parameters.user_id_width(default=5) == 5

    @pytest.mark.asyncio
    async def test_alphanumeric_ids(self, terminal, parameters):
        """Test IsABCPinEnable is read as a flag."""
        terminal.reply_with(CommandCode.OPTIONS_RRQ, ReplyCode.ACK_OK, b"~IsABCPinEnable=1\x00")
        assert await parameters.supports_alphanumeric_ids() is True
        assert await parameters.supports_alphanumeric_ids() is False

    @pytest.mark.asyncio
    async def test_device_info(self, terminal, parameters):
        """Test identity is read from three options and GET_VERSION."""
        terminal.reply_with(CommandCode.OPTIONS_RRQ, ReplyCode.ACK_OK, b"~DeviceName=K40\x00")
        terminal.reply_with(CommandCode.OPTIONS_RRQ, ReplyCode.ACK_OK, b"~SerialNumber=AF4C1\x00")
        terminal.reply_with(CommandCode.OPTIONS_RRQ, ReplyCode.ACK_ERROR)
        terminal.reply_with(CommandCode.GET_VERSION, ReplyCode.ACK_OK, b"Ver 6.60 Apr 28 2017\x00")

        info = await parameters.device_info()

        assert info == DeviceInfo(
            device_name="K40",
            serial_number="AF4C1",
            platform=None,
            firmware_version="Ver 6.60 Apr 28 2017",
        )
        assert [frame.body for frame in terminal.received[3:6]] == [
            b"~DeviceName\x00",
            b"~SerialNumber\x00",
            b"~Platform\x00",
        ]

    @pytest.mark.asyncio
    async def test_firmware_version_refused(self, terminal, parameters):
        """Test a refused GET_VERSION returns None."""
        terminal.reply_with(CommandCode.GET_VERSION, ReplyCode.ACK_ERROR)
        assert await parameters.firmware_version() is None

    @pytest.mark.parametrize("name", ["", "A=B", "A\x00", "Zähler"])
    def test_invalid_names(self, name):
        """Test names that cannot be sent are rejected."""
        with pytest.raises(ValueError):
            validate_parameter_name(name)
