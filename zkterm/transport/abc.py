"""
Abstract transport interface for terminal communication.

This module defines the abstract base class for all transport implementations.
Transports handle the byte stream to and from a terminal.

The transport layer is responsible for:
- Opening/closing the connection
- Reading and writing raw bytes
- Timeout handling

Implementations:
- AsyncTcpTransport: asyncio stream over TCP
- MockTransport: For testing without hardware
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from types import TracebackType


class AbstractTransport(ABC):
    """
    Abstract base class for terminal transports.

    Transports provide async read/write operations for communicating with a
    terminal. All transport implementations must inherit from this class and
    implement all abstract methods.

    Transports support async context manager protocol for safe resource
    management:

        async with AsyncTcpTransport("192.168.1.201") as transport:
            await transport.write(frame)
            header = await transport.read(8)

    Attributes:
        is_open: Whether the transport connection is currently open.
        endpoint: Identifier for the transport (e.g., "192.168.1.201:4370").
    """

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """
        Check if the transport connection is currently open.

        Returns:
            True if connected and ready for I/O, False otherwise.
        """
        ...

    @property
    @abstractmethod
    def endpoint(self) -> str:
        """
        Get the transport identifier.

        Returns:
            Endpoint string (e.g., "192.168.1.201:4370").
        """
        ...

    @abstractmethod
    async def open(self) -> None:
        """
        Open the transport connection.

        Raises:
            TransportError: If the connection cannot be established.
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """
        Close the transport connection.

        Releases the connection and any associated resources. Safe to call
        multiple times (idempotent). After closing, the transport can be
        reopened with open().
        """
        ...

    @abstractmethod
    async def write(self, data: bytes) -> None:
        """
        Write data to the transport.

        Args:
            data: Bytes to send, normally one complete frame.

        Raises:
            TransportError: If the transport is not open or write fails.
        """
        ...

    @abstractmethod
    async def read(self, size: int, timeout: float | None = None) -> bytes:
        """
        Read an exact number of bytes from the transport.

        Blocks until exactly `size` bytes have been received or timeout
        expires. A timeout consumes nothing, so the read may be retried.

        Args:
            size: Number of bytes to read.
            timeout: Read timeout in seconds. None uses transport default.

        Returns:
            Exactly `size` bytes.

        Raises:
            TimeoutError: If timeout expires before all bytes are received.
            TransportError: If the transport is not open, the peer closed the
                connection, or the read fails.
        """
        ...

    async def __aenter__(self) -> AbstractTransport:
        """Async context manager entry - opens the transport."""
        await self.open()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Async context manager exit - closes the transport."""
        await self.close()
