"""Tests for frame encoding and decoding."""

import logging
import struct

import pytest

from zkterm.exceptions import FrameError
from zkterm.protocol.constants import CommandCode, EventFlag, ReplyCode
from zkterm.protocol.packet import (
    FrameParseResult,
    FrameReader,
    decode_frame,
    encode_packet,
    frame_size,
)


class TestEncodePacket:
    """Tests for encode_packet."""

    def test_connect_known_vector(self):
        """Test the zero-body CONNECT frame matches the known bytes."""
        packet = encode_packet(CommandCode.CONNECT, 0, 0)
        assert packet.hex() == "5050827d08000000e80317fc00000000"

    def test_size_field_counts_header_and_body(self):
        """Test the payload size is 8 plus the body length."""
        packet = encode_packet(CommandCode.OPTIONS_WRQ, 7, 1, b"SDKBuild=1\x00")
        assert struct.unpack_from("<I", packet, 4)[0] == 8 + 11
        assert len(packet) == 16 + 11

    def test_header_fields(self):
        """Test command, session and reply number are little-endian u16."""
        packet = encode_packet(CommandCode.DISABLE_DEVICE, 0x1234, 0x0102)
        command, _, session_id, reply_number = struct.unpack_from("<HHHH", packet, 8)
        assert command == CommandCode.DISABLE_DEVICE
        assert session_id == 0x1234
        assert reply_number == 0x0102


class TestFrameReader:
    """Tests for FrameReader and decode_frame."""

    @pytest.fixture
    def reader(self):
        """Create a FrameReader instance."""
        return FrameReader()

    def test_parse_success(self, reader):
        """Test parsing a well-formed frame."""
        packet = encode_packet(ReplyCode.ACK_OK, 7, 3, b"\x01\x02")
        result, frame = reader.parse(packet)

        assert result == FrameParseResult.SUCCESS
        assert frame.command == ReplyCode.ACK_OK
        assert frame.session_id == 7
        assert frame.reply_number == 3
        assert frame.body == b"\x01\x02"
        assert frame.raw == packet
        assert frame.is_ok

    def test_parse_too_short(self, reader):
        """Test buffers shorter than 16 bytes are rejected."""
        result, error = reader.parse(bytes(15))
        assert result == FrameParseResult.TOO_SHORT
        assert error.result == FrameParseResult.TOO_SHORT

    def test_parse_bad_magic(self, reader):
        """Test a wrong magic is rejected."""
        packet = b"\x00" + encode_packet(ReplyCode.ACK_OK, 7, 0)[1:]
        result, _ = reader.parse(packet)
        assert result == FrameParseResult.BAD_MAGIC

    def test_parse_incomplete(self, reader):
        """Test a declared size larger than the buffer is rejected."""
        packet = encode_packet(ReplyCode.ACK_OK, 7, 0, b"abcd")
        result, _ = reader.parse(packet[:-1])
        assert result == FrameParseResult.INCOMPLETE_FRAME

    def test_checksum_mismatch_is_accepted(self, reader, caplog):
        """Test a bad inbound checksum only logs a warning."""
        packet = bytearray(encode_packet(ReplyCode.ACK_OK, 7, 0))
        packet[10] ^= 0xFF

        with caplog.at_level(logging.WARNING, logger="zkterm.protocol.packet"):
            result, frame = reader.parse(bytes(packet))

        assert result == FrameParseResult.SUCCESS
        assert frame.command == ReplyCode.ACK_OK
        assert "Checksum mismatch" in caplog.text

    def test_realtime_frame(self):
        """Test event frames carry the event code in the session field."""
        frame = decode_frame(encode_packet(CommandCode.REG_EVENT, EventFlag.FINGER, 0))
        assert frame.is_realtime
        assert frame.event_code == EventFlag.FINGER
        assert "EVENT" in repr(frame)

    def test_decode_frame_raises(self):
        """Test decode_frame raises FrameError with the parse result."""
        with pytest.raises(FrameError) as exc_info:
            decode_frame(b"\x50\x50")
        assert exc_info.value.result == FrameParseResult.TOO_SHORT

    def test_unknown_reply_code_kept_as_int(self):
        """Test codes outside ReplyCode are exposed as plain ints."""
        frame = decode_frame(encode_packet(0x1234, 7, 0))
        assert frame.reply == 0x1234
        assert not frame.is_ok


class TestFrameSize:
    """Tests for frame_size."""

    def test_reads_payload_size(self):
        """Test the size is read from the prefix."""
        packet = encode_packet(ReplyCode.ACK_OK, 7, 0, b"abc")
        assert frame_size(packet[:8]) == 11

    def test_bad_magic(self):
        """Test a wrong magic raises FrameError."""
        with pytest.raises(FrameError) as exc_info:
            frame_size(b"ABCD\x08\x00\x00\x00")
        assert exc_info.value.result == FrameParseResult.BAD_MAGIC

    def test_size_below_header(self):
        """Test sizes smaller than the inner header are rejected."""
        with pytest.raises(FrameError):
            frame_size(b"\x50\x50\x82\x7d\x04\x00\x00\x00")

    def test_short_prefix(self):
        """Test a prefix shorter than 8 bytes is rejected."""
        with pytest.raises(FrameError):
            frame_size(b"\x50\x50\x82")


class TestRoundTrip:
    """Tests that decode_frame recovers every field encode_packet writes."""

    @pytest.mark.parametrize(
        "command, session_id, reply_number, body",
        [
            (CommandCode.CONNECT, 0, 0, b""),
            (CommandCode.DISABLE_DEVICE, 7, 1, b"\x01"),
            (CommandCode.OPTIONS_WRQ, 0x1234, 0x00FF, b"SDKBuild=1\x00"),
            (CommandCode.USER_WRQ, 0xFFFF, 0xFFFF, bytes(range(72))),
            (ReplyCode.ACK_DATA, 0xFFFF, 0, bytes(range(256)) * 40 + b"\xff"),
            (CommandCode.REG_EVENT, EventFlag.FINGER, 0, b"\xff\xff\xff"),
        ],
    )
    def test_fields_survive(self, caplog, command, session_id, reply_number, body):
        """Test command, session, reply number and body survive with a valid checksum."""
        with caplog.at_level(logging.WARNING, logger="zkterm.protocol.packet"):
            frame = decode_frame(encode_packet(command, session_id, reply_number, body))

        assert frame.command == command
        assert frame.session_id == session_id
        assert frame.reply_number == reply_number
        assert frame.body == body
        assert "Checksum mismatch" not in caplog.text
