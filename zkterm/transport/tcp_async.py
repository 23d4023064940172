"""
Async TCP transport using asyncio streams.

This module provides the transport implementation for talking to a
terminal over its TCP command port (4370 by default).

Example:
    >>> transport = AsyncTcpTransport("192.168.1.201")
    >>> async with transport:
    ...     await transport.write(frame)
    ...     header = await transport.read(8)
"""

from __future__ import annotations

import asyncio
import logging

from zkterm.exceptions import TimeoutError, TransportError
from zkterm.protocol.constants import ProtocolConstants
from zkterm.transport.abc import AbstractTransport

logger = logging.getLogger(__name__)


class AsyncTcpTransport(AbstractTransport):
    """
    Async TCP transport using asyncio streams.

    Provides non-blocking socket communication using Python's asyncio
    framework. This is the transport for real hardware communication.

    Attributes:
        host: Terminal host name or IP address.
        port: Terminal TCP port.
        is_open: Whether the socket is currently open.

    Example:
        >>> transport = AsyncTcpTransport("192.168.1.201", 4370)
        >>> await transport.open()
        >>> try:
        ...     await transport.write(frame)
        ...     header = await transport.read(8, timeout=5.0)
        ... finally:
        ...     await transport.close()
    """

    def __init__(
        self,
        host: str,
        port: int = ProtocolConstants.DEFAULT_PORT,
        default_timeout: float = ProtocolConstants.DEFAULT_COMMAND_TIMEOUT,
        connect_timeout: float = ProtocolConstants.DEFAULT_CONNECT_TIMEOUT,
    ) -> None:
        """
        Initialize the async TCP transport.

        Args:
            host: Terminal host name or IP address.
            port: TCP port (default: 4370).
            default_timeout: Default read timeout in seconds.
            connect_timeout: Timeout for establishing the TCP connection.
        """
        self._host = host
        self._port = port
        self._default_timeout = default_timeout
        self._connect_timeout = connect_timeout
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None

    @classmethod
    def from_address(cls, address: str | tuple[str, int], **kwargs: float) -> AsyncTcpTransport:
        """
        Build a transport from ``"host"``, ``"host:port"`` or ``(host, port)``.

        Raises:
            ValueError: If the port part is not a number.
        """
        if isinstance(address, tuple):
            host, port = address
            return cls(host, int(port), **kwargs)

        host, sep, port_text = address.rpartition(":")
        if not sep:
            return cls(address, **kwargs)
        if not port_text.isdigit():
            raise ValueError(f"Invalid port in address {address!r}")
        return cls(host, int(port_text), **kwargs)

    @property
    def is_open(self) -> bool:
        """Check if the socket is currently open."""
        return (
            self._writer is not None
            and not self._writer.is_closing()
            and self._reader is not None
        )

    @property
    def endpoint(self) -> str:
        """Get the host:port string."""
        return f"{self._host}:{self._port}"

    @property
    def host(self) -> str:
        return self._host

    @property
    def port(self) -> int:
        return self._port

    async def open(self) -> None:
        """
        Open the TCP connection.

        Raises:
            TransportError: If the connection is refused, unreachable or
                does not complete within the connect timeout.
        """
        if self.is_open:
            return

        try:
            self._reader, self._writer = await asyncio.wait_for(
                asyncio.open_connection(self._host, self._port),
                timeout=self._connect_timeout,
            )
        except asyncio.TimeoutError:
            raise TransportError(
                f"Timed out connecting to {self.endpoint} after {self._connect_timeout:.1f}s"
            ) from None
        except OSError as e:
            raise TransportError(f"Failed to connect to {self.endpoint}: {e}") from e

        logger.debug("TCP connection to %s established", self.endpoint)

    async def close(self) -> None:
        """
        Close the TCP connection.

        Safely closes the connection and releases resources. Safe to call
        multiple times.
        """
        writer = self._writer
        self._reader = None
        self._writer = None

        if writer is not None:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError as e:
                logger.debug("Error while closing %s: %s", self.endpoint, e)

    async def write(self, data: bytes) -> None:
        """
        Write data to the socket.

        Args:
            data: Bytes to transmit.

        Raises:
            TransportError: If the socket is not open or write fails.
        """
        if not self.is_open:
            raise TransportError("Socket is not open")

        try:
            self._writer.write(data)
            await self._writer.drain()
        except OSError as e:
            raise TransportError(f"Write failed: {e}") from e

    async def read(self, size: int, timeout: float | None = None) -> bytes:
        """
        Read an exact number of bytes from the socket.

        Args:
            size: Number of bytes to read.
            timeout: Read timeout in seconds. None uses default timeout.

        Returns:
            Exactly `size` bytes.

        Raises:
            TimeoutError: If timeout expires before all bytes are received.
            TransportError: If the socket is not open, the peer closed the
                connection, or the read fails.
        """
        reader = self._reader
        if reader is None:
            raise TransportError("Socket is not open")

        if size <= 0:
            return b""

        effective_timeout = timeout if timeout is not None else self._default_timeout

        try:
            return await asyncio.wait_for(reader.readexactly(size), timeout=effective_timeout)
        except asyncio.TimeoutError:
            raise TimeoutError(
                f"Timeout waiting for {size} bytes",
                timeout_seconds=effective_timeout,
            ) from None
        except asyncio.IncompleteReadError as e:
            raise TransportError(
                f"Connection closed: expected {size} bytes, got {len(e.partial)}"
            ) from e
        except OSError as e:
            raise TransportError(f"Read failed: {e}") from e

    def __repr__(self) -> str:
        status = "open" if self.is_open else "closed"
        return f"AsyncTcpTransport({self.endpoint!r}, {status})"
