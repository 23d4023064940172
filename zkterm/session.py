"""
Session state and connection lifecycle.

A session is opened with CONNECT, which returns the device-assigned session
id, and is then prepared with two mandatory handshake steps: announcing the
SDK build option and registering the realtime event mask. The manager owns
the transport, the read loop and the dispatch loop for the lifetime of the
connection:

    DISCONNECTED -> connect() -> CONNECTED
    CONNECTED -> read loop failure -> DISCONNECTED (connect() again)
    CONNECTED -> disconnect() -> DISCONNECTED

Example:
    >>> async with SessionManager(AsyncTcpTransport("192.168.1.201")) as manager:
    ...     print(manager.session.session_id)
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from zkterm.correlator import CommandCorrelator
from zkterm.dispatcher import EventDispatcher
from zkterm.exceptions import (
    ConnectionError,
    TimeoutError,
    TransportError,
    ZKTermError,
    raise_for_reply,
)
from zkterm.protocol.constants import CommandCode, ProtocolConstants, ReplyCode

if TYPE_CHECKING:
    from zkterm.protocol.packet import Frame
    from zkterm.transport.abc import AbstractTransport

logger = logging.getLogger(__name__)


@dataclass
class Session:
    """
    Per-connection protocol state.

    Attributes:
        session_id: Device-assigned id, 0 until CONNECT succeeds.
        reply_number: Sequence number carried by the next command.
        connected: Whether the handshake completed and the link is alive.
    """

    session_id: int = 0
    reply_number: int = 0
    connected: bool = False

    def advance(self) -> int:
        """Move to the next reply number, wrapping at 16 bits."""
        self.reply_number = (self.reply_number + 1) % ProtocolConstants.REPLY_NUMBER_MODULUS
        return self.reply_number

    def reset(self) -> None:
        self.session_id = 0
        self.reply_number = 0
        self.connected = False


class SessionManager:
    """
    Opens, prepares and closes a terminal session.

    Attributes:
        session: The live Session state.
        dispatcher: Realtime event dispatcher for this connection.
        correlator: Command correlator for this connection.
        transport: The underlying transport.
    """

    def __init__(
        self,
        transport: AbstractTransport,
        *,
        timeout: float = ProtocolConstants.DEFAULT_COMMAND_TIMEOUT,
        max_retries: int = ProtocolConstants.MAX_RETRIES,
        retry_delay: float = ProtocolConstants.RETRY_DELAY,
        dispatcher: EventDispatcher | None = None,
    ) -> None:
        """
        Initialize the session manager.

        Args:
            transport: Transport to the terminal. Opened by connect() when
                it is not open yet.
            timeout: Default reply timeout in seconds.
            max_retries: Extra CONNECT attempts after a timeout.
            retry_delay: Delay between CONNECT attempts in seconds.
            dispatcher: Dispatcher to feed; a new one when omitted. Its
                subscriptions outlive individual connections.
        """
        self._transport = transport
        self._max_retries = max_retries
        self._retry_delay = retry_delay
        self._session = Session()
        self._dispatcher = dispatcher if dispatcher is not None else EventDispatcher()
        self._correlator = CommandCorrelator(transport, self._session, self._dispatcher, timeout)

    @property
    def session(self) -> Session:
        return self._session

    @property
    def dispatcher(self) -> EventDispatcher:
        return self._dispatcher

    @property
    def correlator(self) -> CommandCorrelator:
        return self._correlator

    @property
    def transport(self) -> AbstractTransport:
        return self._transport

    @property
    def is_connected(self) -> bool:
        """Check if the session is established and the read loop is alive."""
        return self._session.connected and self._correlator.running

    async def connect(self) -> Session:
        """
        Open the connection and perform the full handshake.

        Returns:
            The established Session.

        Raises:
            ConnectionError: If already connected.
            TransportError: If the transport cannot be opened.
            DeviceRejectedError: If the terminal rejects CONNECT or a
                handshake step (ACK_UNAUTH means a comm key is required).
            TimeoutError: If CONNECT gets no reply after all retries.
        """
        if self.is_connected:
            raise ConnectionError("Already connected")

        if self._correlator.running or self._correlator.failed:
            # Leftovers from a connection that failed on its own.
            await self._teardown()

        if not self._transport.is_open:
            logger.debug("Opening transport %s", self._transport.endpoint)
            await self._transport.open()

        logger.info("Connecting to terminal %s", self._transport.endpoint)
        self._session.reset()
        self._dispatcher.start()
        self._correlator.start()

        try:
            reply = await self._send_connect()
            self._session.session_id = reply.session_id
            self._session.connected = True
            logger.debug("Session id %d assigned", reply.session_id)

            await self._correlator.request(
                CommandCode.OPTIONS_WRQ, ProtocolConstants.SDK_BUILD_OPTION
            )
            await self._correlator.request(
                CommandCode.REG_EVENT, ProtocolConstants.EVENT_MASK_ALL
            )
        except BaseException:
            await self._teardown()
            raise

        logger.info(
            "Connected to terminal %s (session %d)",
            self._transport.endpoint,
            self._session.session_id,
        )
        return self._session

    async def disconnect(self) -> None:
        """
        Close the session.

        Sends EXIT best-effort, stops both loops, closes the transport and
        resets the session. Safe to call when already disconnected.
        """
        if self.is_connected:
            logger.info("Disconnecting from terminal %s", self._transport.endpoint)

        # EXIT would queue behind a pending command; closing fails that command instead.
        if self.is_connected and not self._correlator.busy:
            try:
                await self._correlator.send_command(
                    CommandCode.EXIT, timeout=ProtocolConstants.EXIT_TIMEOUT
                )
            except ZKTermError as e:
                logger.debug("EXIT not acknowledged: %s", e)

        await self._teardown()

    async def _send_connect(self) -> Frame:
        last_exception: TimeoutError | None = None

        for attempt in range(self._max_retries + 1):
            try:
                if attempt > 0:
                    logger.debug("Connect attempt %d/%d", attempt + 1, self._max_retries + 1)
                reply = await self._correlator.send_command(CommandCode.CONNECT)
            except TimeoutError as e:
                last_exception = e
                logger.warning(
                    "Connect timeout (attempt %d/%d)", attempt + 1, self._max_retries + 1
                )
                if attempt < self._max_retries:
                    await asyncio.sleep(self._retry_delay)
                continue

            if reply.command != ReplyCode.ACK_OK:
                logger.error("Terminal rejected CONNECT with reply 0x%04X", reply.command)
            return raise_for_reply(reply, CommandCode.CONNECT)

        logger.error("Connection failed after %d attempts", self._max_retries + 1)
        raise last_exception or TimeoutError("Connection timed out")

    async def _teardown(self) -> None:
        await self._correlator.close()
        await self._dispatcher.stop()
        if self._transport.is_open:
            try:
                await self._transport.close()
            except TransportError as e:
                logger.debug("Error closing transport: %s", e)
        self._session.reset()
        logger.debug("Session closed")

    async def __aenter__(self) -> SessionManager:
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.disconnect()

    def __repr__(self) -> str:
        state = "connected" if self.is_connected else "disconnected"
        return f"SessionManager({self._transport.endpoint!r}, {state}, session={self._session.session_id})"
