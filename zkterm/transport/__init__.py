"""
Transport layer for terminal communication.

This package provides transport implementations for carrying protocol
frames to and from a terminal.

Available transports:
- AsyncTcpTransport: Async TCP socket using asyncio streams
- MockTransport: Mock transport for testing without hardware

Example:
    >>> from zkterm.transport import AsyncTcpTransport
    >>> async with AsyncTcpTransport("192.168.1.201", 4370) as transport:
    ...     await transport.write(frame_data)
    ...     header = await transport.read(8)
"""

from zkterm.transport.abc import AbstractTransport
from zkterm.transport.mock import MockTransport
from zkterm.transport.tcp_async import AsyncTcpTransport

__all__ = [
    "AbstractTransport",
    "AsyncTcpTransport",
    "MockTransport",
]
