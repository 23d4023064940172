"""
Protocol layer for terminal communication.

This module contains the low-level protocol handling:
- Command, reply and event codes
- Checksum calculation and validation
- Frame encoding and decoding
"""

from zkterm.protocol.checksums import calculate_checksum, validate_checksum
from zkterm.protocol.constants import (
    ALL_EVENTS,
    CommandCode,
    EnrollResult,
    EventFlag,
    FingerFlag,
    ProtocolConstants,
    ReplyCode,
    VerifyMode,
)
from zkterm.protocol.packet import (
    DEFAULT_FRAME_READER,
    Frame,
    FrameParseError,
    FrameParseResult,
    FrameReader,
    decode_frame,
    encode_packet,
    frame_size,
)

__all__ = [
    # Constants
    "CommandCode",
    "ReplyCode",
    "EventFlag",
    "ALL_EVENTS",
    "VerifyMode",
    "FingerFlag",
    "EnrollResult",
    "ProtocolConstants",
    # Checksums
    "calculate_checksum",
    "validate_checksum",
    # Frames
    "Frame",
    "FrameReader",
    "FrameParseResult",
    "FrameParseError",
    "encode_packet",
    "decode_frame",
    "frame_size",
    "DEFAULT_FRAME_READER",
]
