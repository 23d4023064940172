"""
Terminal client.

This module provides the main client interface for ZKTeco-compatible
biometric terminals. It ties the session, user, parameter and enrollment
components to one connection and tracks a simple state machine:

    DISCONNECTED -> connect() -> CONNECTING -> CONNECTED
    CONNECTED -> enroll_fingerprint() -> ENROLLING -> CONNECTED
    CONNECTED -> disconnect() -> DISCONNECTING -> DISCONNECTED

Example:
    >>> from zkterm import TerminalClient
    >>>
    >>> async def main():
    ...     async with TerminalClient() as client:
    ...         await client.connect("192.168.1.201:4370")
    ...         await client.create_user("1001", "Alice")
    ...         result = await client.enroll_fingerprint("1001")
    ...         print(result.message)
"""

from __future__ import annotations

import logging
from enum import Enum, auto
from typing import TYPE_CHECKING, Any, Callable

from zkterm.config import TerminalSettings
from zkterm.enrollment import EnrollmentOrchestrator, EnrollmentResult
from zkterm.dispatcher import EventDispatcher
from zkterm.exceptions import ConnectionError, ZKTermError
from zkterm.models.events import AttendanceEvent
from zkterm.models.records import DeviceInfo, UserRecord
from zkterm.parameters import DeviceParameters
from zkterm.protocol.constants import EventFlag
from zkterm.session import SessionManager
from zkterm.transport.tcp_async import AsyncTcpTransport
from zkterm.users import UserDirectory, validate_user_id

if TYPE_CHECKING:
    from zkterm.dispatcher import CloseHandler, EventHandler, Subscription
    from zkterm.models.records import AttendanceRecord
    from zkterm.transport.abc import AbstractTransport

logger = logging.getLogger(__name__)


class ClientState(Enum):
    """Terminal client connection states."""

    DISCONNECTED = auto()
    """Not connected to any terminal."""

    CONNECTING = auto()
    """Opening the connection and running the handshake."""

    CONNECTED = auto()
    """Connected and ready for operations."""

    ENROLLING = auto()
    """A fingerprint enrollment is in progress."""

    DISCONNECTING = auto()
    """Closing the session."""


class TerminalClient:
    """
    Client for one ZKTeco-compatible terminal.

    Attributes:
        state: Current connection state.
        session_id: Device-assigned session id (0 when disconnected).
        settings: Connection settings.
        transport: The underlying transport, once one is known.

    Example:
        >>> client = TerminalClient(settings=TerminalSettings(host="10.0.0.5"))
        >>> await client.connect()
        >>> users = await client.list_users()
        >>> await client.disconnect()
    """

    def __init__(
        self,
        transport: AbstractTransport | None = None,
        *,
        settings: TerminalSettings | None = None,
    ) -> None:
        """
        Initialize the terminal client.

        Args:
            transport: Transport to use. When omitted, connect() builds an
                AsyncTcpTransport from its address argument or the settings.
            settings: Connection settings (defaults when omitted).
        """
        self._settings = settings or TerminalSettings()
        self._transport = transport
        self._state = ClientState.DISCONNECTED
        self._dispatcher = EventDispatcher()
        self._manager: SessionManager | None = None
        self._users: UserDirectory | None = None
        self._parameters: DeviceParameters | None = None
        self._enrollment: EnrollmentOrchestrator | None = None
        if transport is not None:
            self._build(transport)

    @property
    def state(self) -> ClientState:
        """Get the current connection state."""
        if self._state in (ClientState.CONNECTED, ClientState.ENROLLING) and not (
            self._manager is not None and self._manager.is_connected
        ):
            # The read loop ended on its own.
            self._state = ClientState.DISCONNECTED
        return self._state

    @property
    def is_connected(self) -> bool:
        """Check if client has an established session."""
        return self.state in (ClientState.CONNECTED, ClientState.ENROLLING)

    @property
    def session_id(self) -> int:
        return self._manager.session.session_id if self._manager is not None else 0

    @property
    def settings(self) -> TerminalSettings:
        return self._settings

    @property
    def transport(self) -> AbstractTransport | None:
        return self._transport

    @property
    def user_id_width(self) -> int:
        return self._users.user_id_width if self._users is not None else self._settings.user_id_width

    async def connect(self, address: str | tuple[str, int] | None = None) -> None:
        """
        Connect to the terminal and perform the handshake.

        Args:
            address: ``"host"``, ``"host:port"`` or ``(host, port)``. When
                given, a TCP transport to that address replaces any
                configured transport.

        Raises:
            ConnectionError: If already connected.
            TransportError: If the terminal is unreachable.
            DeviceRejectedError: If the terminal rejects the session.
            TimeoutError: If the terminal does not answer.
        """
        if self.is_connected:
            raise ConnectionError(f"Cannot connect: client is in {self._state.name} state")

        if address is not None:
            transport: AbstractTransport = AsyncTcpTransport.from_address(
                address,
                default_timeout=self._settings.timeout,
                connect_timeout=self._settings.connect_timeout,
            )
        elif self._transport is not None:
            transport = self._transport
        else:
            transport = AsyncTcpTransport(
                self._settings.host,
                self._settings.port,
                default_timeout=self._settings.timeout,
                connect_timeout=self._settings.connect_timeout,
            )

        if transport is not self._transport:
            if self._manager is not None:
                await self._manager.disconnect()
            self._build(transport)

        self._state = ClientState.CONNECTING
        try:
            await self._manager.connect()
            width = await self._query_user_id_width()
        except BaseException:
            self._state = ClientState.DISCONNECTED
            await self._manager.disconnect()
            raise

        self._users.user_id_width = width
        self._state = ClientState.CONNECTED
        logger.debug("User id width is %d", width)

    async def disconnect(self) -> None:
        """
        Disconnect from the terminal.

        Safe to call even if not connected.
        """
        if self._manager is None:
            return
        self._state = ClientState.DISCONNECTING
        try:
            await self._manager.disconnect()
        finally:
            self._state = ClientState.DISCONNECTED

    async def create_user(
        self,
        user_id: str,
        name: str,
        password: str = "",
        card_number: int = 0,
        group: int = 1,
        permission: int = 0,
    ) -> UserRecord:
        """
        Create or overwrite a user record.

        Raises:
            ConnectionError: If not connected.
            ValueError: If the user id does not fit the device id width.
            pydantic.ValidationError: If a field is out of range.
            DeviceRejectedError: If the terminal rejects the write.
        """
        self._ensure_connected()
        validate_user_id(user_id, self._users.user_id_width)
        record = UserRecord(
            user_id=user_id,
            name=name,
            password=password,
            card_number=card_number,
            group=group,
            permission=permission,
        )
        return await self._users.create_user(record)

    async def delete_user(self, user_id: str) -> bool:
        """
        Delete a user and its fingerprints.

        Returns:
            True if the user existed and was deleted.
        """
        self._ensure_connected()
        return await self._users.delete_user_by_id(user_id)

    async def list_users(self) -> list[UserRecord]:
        """Read every user record stored on the terminal."""
        self._ensure_connected()
        return await self._users.list_users()

    async def find_user(self, user_id: str) -> UserRecord | None:
        self._ensure_connected()
        return await self._users.find_by_user_id(user_id)

    async def enroll_fingerprint(
        self,
        user_id: str,
        finger_index: int = 0,
        *,
        name: str | None = None,
        timeout: float | None = None,
    ) -> EnrollmentResult:
        """
        Enroll a fingerprint for a user.

        The user is created with a default record when it does not exist.

        Args:
            user_id: User to enroll.
            finger_index: Finger number 0-9.
            name: Name for a newly created user.
            timeout: Inactivity window in seconds (settings default).

        Returns:
            EnrollmentResult; call raise_for_outcome() to turn failures into
            exceptions.

        Raises:
            ConnectionError: If not connected or another enrollment runs.
        """
        self._ensure_connected()
        self._state = ClientState.ENROLLING
        try:
            return await self._enrollment.enroll(
                user_id,
                finger_index,
                name=name,
                timeout=timeout if timeout is not None else self._settings.enroll_timeout,
            )
        finally:
            if self._state == ClientState.ENROLLING:
                self._state = ClientState.CONNECTED

    def subscribe_events(
        self,
        flags: int,
        handler: EventHandler,
        *,
        on_close: CloseHandler | None = None,
    ) -> Subscription:
        """
        Receive realtime events matching an EventFlag mask.

        Subscriptions may be made before connect() and survive reconnects
        until cancelled.
        """
        return self._dispatcher.subscribe(flags, handler, on_close=on_close)

    def subscribe_attendance_events(
        self,
        handler: Callable[[AttendanceRecord], Any],
    ) -> Subscription:
        """
        Receive decoded attendance punches.

        Attendance events whose payload cannot be decoded are not delivered.
        """

        def deliver(event: AttendanceEvent) -> Any:
            if event.record is None:
                return None
            return handler(event.record)

        return self.subscribe_events(EventFlag.ATTLOG, deliver)

    async def get_device_parameter(self, name: str) -> str | None:
        """Read a device option, None when unsupported."""
        self._ensure_connected()
        return await self._parameters.get(name)

    async def get_device_info(self) -> DeviceInfo:
        """Read the terminal's name, serial number, platform and firmware."""
        self._ensure_connected()
        return await self._parameters.device_info()

    async def next_available_user_id(self) -> str:
        """Suggest an unused numeric user id."""
        self._ensure_connected()
        return await self._users.next_available_user_id()

    def _build(self, transport: AbstractTransport) -> None:
        """Create the per-connection components around a transport."""
        self._transport = transport
        self._manager = SessionManager(
            transport,
            timeout=self._settings.timeout,
            max_retries=self._settings.retries,
            dispatcher=self._dispatcher,
        )
        self._users = UserDirectory(self._manager.correlator, self._settings.user_id_width)
        self._parameters = DeviceParameters(self._manager.correlator)
        self._enrollment = EnrollmentOrchestrator(
            self._manager.correlator,
            self._dispatcher,
            self._users,
            timeout=self._settings.enroll_timeout,
        )

    async def _query_user_id_width(self) -> int:
        fallback = self._settings.user_id_width
        try:
            return await self._parameters.user_id_width(default=fallback)
        except ZKTermError as e:
            logger.warning("Could not read the user id width, using %d: %s", fallback, e)
            return fallback

    def _ensure_connected(self) -> None:
        """Verify client is in connected state."""
        state = self.state
        if state == ClientState.ENROLLING:
            raise ConnectionError("An enrollment is already in progress")
        if state != ClientState.CONNECTED:
            raise ConnectionError(f"Not connected (state: {state.name})")

    async def __aenter__(self) -> TerminalClient:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.disconnect()

    def __repr__(self) -> str:
        endpoint = self._transport.endpoint if self._transport is not None else None
        return f"TerminalClient({endpoint!r}, state={self.state.name}, session={self.session_id})"
