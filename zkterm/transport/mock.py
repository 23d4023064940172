"""
Mock transport for testing.

This module provides a mock transport implementation that allows testing
the terminal client without actual hardware. Responses can be pre-configured
or dynamically generated using callback functions, and unsolicited bytes
(realtime events) can be pushed at any time.

Example:
    >>> from zkterm.transport import MockTransport
    >>> from zkterm.protocol import ReplyCode, encode_packet
    >>>
    >>> mock = MockTransport()
    >>> mock.add_response(encode_packet(ReplyCode.ACK_OK, 7, 0))  # reply to CONNECT
"""

from __future__ import annotations

import asyncio
from collections import deque
from typing import Callable

from zkterm.exceptions import TimeoutError, TransportError
from zkterm.transport.abc import AbstractTransport


class MockTransport(AbstractTransport):
    """
    Mock transport for testing without hardware.

    Queued responses are released one per write, in FIFO order, so each
    command written by the client makes exactly one reply readable. All
    written data is recorded for verification in tests.

    Attributes:
        written_data: List of all bytes written to the transport.

    Example:
        >>> mock = MockTransport()
        >>> mock.add_response(b"reply")
        >>>
        >>> async with mock:
        ...     await mock.write(b"command")
        ...     assert await mock.read(5) == b"reply"
        ...     assert mock.written_data == [b"command"]
    """

    def __init__(
        self,
        endpoint: str = "mock://terminal",
        default_timeout: float = 5.0,
    ) -> None:
        """
        Initialize the mock transport.

        Args:
            endpoint: Identifier for the mock transport.
            default_timeout: Default timeout for read operations.
        """
        self._endpoint = endpoint
        self._default_timeout = default_timeout
        self._is_open = False
        self._eof = False
        self._responses: deque[bytes] = deque()
        self._written_data: list[bytes] = []
        self._read_buffer = bytearray()
        self._data_available = asyncio.Event()
        self._response_callback: Callable[[bytes], bytes | None] | None = None

    @property
    def is_open(self) -> bool:
        """Check if the mock transport is open."""
        return self._is_open

    @property
    def endpoint(self) -> str:
        """Get the mock endpoint name."""
        return self._endpoint

    @property
    def written_data(self) -> list[bytes]:
        """Get all data written to the transport."""
        return self._written_data.copy()

    @property
    def last_written(self) -> bytes | None:
        """Get the most recently written data."""
        return self._written_data[-1] if self._written_data else None

    def add_response(self, response: bytes) -> None:
        """
        Queue a response released by the next write.

        Args:
            response: Bytes to make readable after the next write.
        """
        self._responses.append(response)

    def add_responses(self, *responses: bytes) -> None:
        """
        Queue multiple responses, one per subsequent write.

        Args:
            *responses: Multiple byte responses to add.
        """
        for response in responses:
            self._responses.append(response)

    def set_response_callback(
        self,
        callback: Callable[[bytes], bytes | None] | None,
    ) -> None:
        """
        Set a callback to dynamically generate responses.

        The callback receives the written data and should return the response
        bytes. If it returns None, the next queued response is used instead.

        Args:
            callback: Function that takes written bytes and returns response.
        """
        self._response_callback = callback

    def feed(self, data: bytes) -> None:
        """
        Make bytes readable immediately, as if pushed by the terminal.

        Args:
            data: Bytes to append to the read buffer.
        """
        self._read_buffer.extend(data)
        self._data_available.set()

    def simulate_disconnect(self) -> None:
        """Make the peer close the connection; pending reads fail."""
        self._eof = True
        self._data_available.set()

    def clear(self) -> None:
        """Clear all written data and pending responses."""
        self._written_data.clear()
        self._responses.clear()
        self._read_buffer.clear()

    def clear_written(self) -> None:
        """Clear only the written data history."""
        self._written_data.clear()

    async def open(self) -> None:
        """Open the mock transport."""
        if self._is_open:
            raise TransportError("Mock transport already open")
        self._is_open = True
        self._eof = False

    async def close(self) -> None:
        """Close the mock transport."""
        self._is_open = False
        self._data_available.set()

    async def write(self, data: bytes) -> None:
        """
        Write data to the mock transport.

        Records the written data and releases the callback-generated or next
        queued response.

        Args:
            data: Bytes to write.

        Raises:
            TransportError: If transport is not open.
        """
        if not self._is_open or self._eof:
            raise TransportError("Mock transport not open")

        self._written_data.append(bytes(data))

        response = None
        if self._response_callback:
            response = self._response_callback(bytes(data))
        if response is None and self._responses:
            response = self._responses.popleft()
        if response:
            self.feed(response)

    async def read(self, size: int, timeout: float | None = None) -> bytes:
        """
        Read exact number of bytes, waiting for them to be fed.

        Args:
            size: Number of bytes to read.
            timeout: Read timeout in seconds. None uses default timeout.

        Returns:
            Exactly size bytes.

        Raises:
            TimeoutError: If not enough data arrives in time.
            TransportError: If transport is closed or the peer disconnected.
        """
        effective_timeout = timeout if timeout is not None else self._default_timeout
        loop = asyncio.get_running_loop()
        deadline = loop.time() + effective_timeout

        while len(self._read_buffer) < size:
            if not self._is_open:
                raise TransportError("Mock transport not open")
            if self._eof:
                raise TransportError(
                    f"Connection closed: expected {size} bytes, got {len(self._read_buffer)}"
                )

            remaining = deadline - loop.time()
            if remaining <= 0:
                raise TimeoutError(
                    f"Not enough mock data: need {size}, have {len(self._read_buffer)}",
                    timeout_seconds=effective_timeout,
                )

            self._data_available.clear()
            try:
                await asyncio.wait_for(self._data_available.wait(), timeout=remaining)
            except asyncio.TimeoutError:
                continue

        result = bytes(self._read_buffer[:size])
        del self._read_buffer[:size]
        return result

    def assert_written(self, expected: bytes, index: int = -1) -> None:
        """
        Assert that specific data was written.

        Args:
            expected: Expected bytes.
            index: Index in written_data list (-1 for last).

        Raises:
            AssertionError: If data doesn't match.
        """
        if not self._written_data:
            raise AssertionError("No data written to mock transport")

        actual = self._written_data[index]
        if actual != expected:
            raise AssertionError(f"Written data mismatch: expected {expected!r}, got {actual!r}")

    def assert_write_count(self, expected: int) -> None:
        """
        Assert number of write operations.

        Args:
            expected: Expected number of writes.

        Raises:
            AssertionError: If count doesn't match.
        """
        actual = len(self._written_data)
        if actual != expected:
            raise AssertionError(f"Write count mismatch: expected {expected}, got {actual}")
