"""
16-bit ones'-complement checksum calculation and validation.

The terminal protocol protects every frame with an internet-style checksum:
- Pad the data to an even length with one zero byte
- Sum all 16-bit little-endian words into a 32-bit accumulator
- Fold the upper 16 bits into the lower 16 bits once
- Take the ones' complement of the low 16 bits

The checksum covers the command field, session id, reply number and body.
The checksum field itself is excluded.
"""

from __future__ import annotations

import struct


def calculate_checksum(data: bytes | bytearray | memoryview) -> int:
    """
    Calculate the 16-bit protocol checksum over the specified data.

    Args:
        data: Command field followed by session id, reply number and body.

    Returns:
        16-bit checksum value (0-65535).

    Example:
        >>> hex(calculate_checksum(b"\\xe8\\x03\\x00\\x00\\x00\\x00"))
        '0xfc17'
    """
    data = bytes(data)
    if len(data) % 2:
        data += b"\x00"

    chk32 = sum(struct.unpack(f"<{len(data) // 2}H", data))
    chk32 = (chk32 & 0xFFFF) + ((chk32 >> 16) & 0xFFFF)
    return ~chk32 & 0xFFFF


def checksum_input(header: bytes | bytearray, body: bytes | bytearray = b"") -> bytes:
    """
    Build the byte sequence the checksum is computed over.

    Args:
        header: 8-byte inner header (the checksum field is skipped).
        body: Frame body.

    Returns:
        Command field + session id + reply number + body.
    """
    return bytes(header[0:2]) + bytes(header[4:8]) + bytes(body)


def validate_checksum(header: bytes | bytearray, body: bytes | bytearray = b"") -> bool:
    """
    Validate that the checksum carried in an inner header matches its contents.

    Args:
        header: 8-byte inner header as received.
        body: Frame body as received.

    Returns:
        True if checksum is valid, False otherwise.
    """
    if len(header) < 8:
        return False

    received = struct.unpack_from("<H", header, 2)[0]
    return received == calculate_checksum(checksum_input(header, body))
