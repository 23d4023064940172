"""
Command/response correlation over a shared read path.

The protocol has no request identifiers a client can rely on, so replies
are matched positionally: at most one command is outstanding per connection
and the next non-realtime frame is its reply. Realtime event frames can
arrive at any moment, including between a command and its reply, so a
single read loop owns the socket's read side and routes every frame to
exactly one consumer:

    realtime frame  -> EventDispatcher, then acknowledge (ACK_OK, reply number 0)
    any other frame -> the pending command's future

Example:
    >>> correlator = CommandCorrelator(transport, session, dispatcher)
    >>> correlator.start()
    >>> frame = await correlator.request(CommandCode.DISABLE_DEVICE)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING

from zkterm.exceptions import (
    ConnectionError,
    FrameError,
    OperationCancelledError,
    TimeoutError,
    ZKTermError,
    raise_for_reply,
)
from zkterm.protocol.constants import ProtocolConstants, ReplyCode
from zkterm.protocol.packet import Frame, decode_frame, encode_packet, frame_size

if TYPE_CHECKING:
    from zkterm.dispatcher import EventDispatcher
    from zkterm.session import Session
    from zkterm.transport.abc import AbstractTransport

logger = logging.getLogger(__name__)


class CommandCorrelator:
    """
    Serializes commands and matches them with their replies.

    Attributes:
        running: Whether the read loop is active.
        failed: Whether the read loop ended on its own (transport or
            framing error) rather than through close().
    """

    def __init__(
        self,
        transport: AbstractTransport,
        session: Session,
        dispatcher: EventDispatcher,
        timeout: float = ProtocolConstants.DEFAULT_COMMAND_TIMEOUT,
    ) -> None:
        """
        Initialize the correlator.

        Args:
            transport: Open transport shared with nothing else.
            session: Session state owned by the session manager.
            dispatcher: Receiver for realtime frames.
            timeout: Default reply timeout in seconds.
        """
        self._transport = transport
        self._session = session
        self._dispatcher = dispatcher
        self._timeout = timeout
        self._call_lock = asyncio.Lock()
        self._write_lock = asyncio.Lock()
        self._pending: asyncio.Future[Frame] | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._error: ZKTermError | None = None

    @property
    def running(self) -> bool:
        return self._reader_task is not None and not self._reader_task.done()

    @property
    def failed(self) -> bool:
        return self._error is not None

    @property
    def busy(self) -> bool:
        """Check if a command is waiting for its reply."""
        return self._call_lock.locked()

    @property
    def timeout(self) -> float:
        return self._timeout

    def start(self) -> None:
        """Start the read loop on the running event loop."""
        if self.running:
            return
        self._error = None
        self._reader_task = asyncio.get_running_loop().create_task(self._read_loop())

    async def close(self) -> None:
        """
        Stop the read loop and fail any pending command.

        Waiters receive OperationCancelledError. Safe to call multiple times.
        """
        task, self._reader_task = self._reader_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._fail_pending(OperationCancelledError("Connection closed"))

    async def send_command(
        self,
        command: int,
        body: bytes = b"",
        timeout: float | None = None,
    ) -> Frame:
        """
        Send a command and wait for its reply.

        Concurrent callers are serialized; the reply number advances only
        when the reply arrives.

        Args:
            command: Command code.
            body: Command body.
            timeout: Reply timeout in seconds. None uses the default.

        Returns:
            The reply frame, whatever its code.

        Raises:
            ConnectionError: If the read loop is not running.
            TimeoutError: If no reply arrives in time (recoverable).
            TransportError: If the connection fails while waiting.
            ProtocolError: If an undecodable frame arrives while waiting.
            OperationCancelledError: If the connection is closed while waiting.
        """
        effective_timeout = timeout if timeout is not None else self._timeout

        async with self._call_lock:
            if not self.running:
                raise ConnectionError("Not connected (read loop is not running)")

            future: asyncio.Future[Frame] = asyncio.get_running_loop().create_future()
            self._pending = future
            packet = encode_packet(
                command,
                self._session.session_id,
                self._session.reply_number,
                body,
            )
            logger.debug(
                "-> 0x%04X session=%d reply=%d body=%d bytes: %s",
                command,
                self._session.session_id,
                self._session.reply_number,
                len(body),
                packet.hex(),
            )

            try:
                await self._write(packet)
                try:
                    frame = await asyncio.wait_for(future, timeout=effective_timeout)
                except asyncio.TimeoutError:
                    raise TimeoutError(
                        f"No reply to command 0x{command:04X}",
                        timeout_seconds=effective_timeout,
                    ) from None
            finally:
                if self._pending is future:
                    self._pending = None

            if frame.reply_number != self._session.reply_number:
                logger.debug(
                    "Reply number %d differs from request %d",
                    frame.reply_number,
                    self._session.reply_number,
                )
            self._session.advance()
            return frame

    async def request(
        self,
        command: int,
        body: bytes = b"",
        timeout: float | None = None,
        accept: Iterable[int] = (ReplyCode.ACK_OK,),
    ) -> Frame:
        """
        Send a command and require an accepted reply.

        Raises:
            DeviceRejectedError: If the terminal rejects the command.
            ProtocolError: If the reply is not a reply code.
            (plus everything send_command raises)
        """
        frame = await self.send_command(command, body, timeout)
        return raise_for_reply(frame, command, tuple(accept))

    async def _write(self, packet: bytes) -> None:
        async with self._write_lock:
            await self._transport.write(packet)

    async def _acknowledge_event(self, frame: Frame) -> None:
        # Acks always carry reply number 0 and never touch the command sequence.
        ack = encode_packet(ReplyCode.ACK_OK, self._session.session_id, 0)
        await self._write(ack)
        logger.debug("Acknowledged event 0x%04X", frame.event_code)

    async def _read_frame(self) -> Frame | None:
        try:
            prefix = await self._transport.read(ProtocolConstants.PREFIX_SIZE)
        except TimeoutError:
            return None

        size = frame_size(prefix)
        try:
            payload = await self._transport.read(size, timeout=self._timeout)
        except TimeoutError:
            raise FrameError(f"Truncated frame: {size} payload bytes never arrived") from None

        return decode_frame(prefix + payload)

    async def _read_loop(self) -> None:
        try:
            while True:
                frame = await self._read_frame()
                if frame is None:
                    continue

                logger.debug("<- %r: %s", frame, frame.raw.hex())
                if frame.is_realtime:
                    self._dispatcher.submit(frame)
                    await self._acknowledge_event(frame)
                else:
                    self._resolve(frame)

        except ZKTermError as e:
            logger.warning("Read loop stopped: %s", e)
            self._error = e
            self._session.connected = False
            self._fail_pending(e)
            self._dispatcher.close(e)

    def _resolve(self, frame: Frame) -> None:
        future = self._pending
        if future is None or future.done():
            logger.warning("Dropping unsolicited reply %r", frame)
            return
        future.set_result(frame)

    def _fail_pending(self, error: ZKTermError) -> None:
        future, self._pending = self._pending, None
        if future is not None and not future.done():
            future.set_exception(error)
