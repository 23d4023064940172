"""Shared fixtures and a scripted fake terminal."""

from __future__ import annotations

import asyncio
import struct
from collections import defaultdict, deque

import pytest
import pytest_asyncio

from zkterm.models.records import UserRecord
from zkterm.protocol.constants import CommandCode, ReplyCode
from zkterm.protocol.packet import Frame, decode_frame, encode_packet
from zkterm.session import SessionManager
from zkterm.transport.mock import MockTransport


def event_frame(event_code: int, payload: bytes = b"") -> bytes:
    """Encode a realtime event frame as the terminal pushes it."""
    return encode_packet(CommandCode.REG_EVENT, event_code, 0, payload)


def user_table(records: list[UserRecord]) -> bytes:
    """Encode a read-all-users reply body."""
    data = b"".join(record.to_bytes() for record in records)
    return struct.pack("<I", len(data)) + data


class FakeTerminal:
    """
    Answers frames written to a MockTransport like a terminal would.

    Every command gets ACK_OK echoing its reply number unless told
    otherwise. The user table is kept in ``users`` and updated by USER_WRQ
    and DELETE_USER so lookups after writes behave like a real device.
    Event acknowledgements are recorded in ``acks`` and never answered.
    """

    def __init__(self, transport: MockTransport, session_id: int = 7) -> None:
        self.transport = transport
        self.session_id = session_id
        self.received: list[Frame] = []
        self.acks: list[Frame] = []
        self.users: list[UserRecord] = []
        self._replies: dict[int, deque[tuple[int, bytes]]] = defaultdict(deque)
        self._before: dict[int, list[bytes]] = defaultdict(list)
        self._after: dict[int, list[bytes]] = defaultdict(list)
        self._ignored: set[int] = set()
        self._disconnect_after: set[int] = set()
        transport.set_response_callback(self._respond)

    @property
    def commands(self) -> list[int]:
        return [frame.command for frame in self.received]

    def reply_with(self, command: int, code: int, body: bytes = b"") -> None:
        """Answer the next ``command`` with ``code`` and ``body``."""
        self._replies[command].append((code, body))

    def ignore(self, command: int) -> None:
        """Never answer ``command``."""
        self._ignored.add(command)

    def push_before(self, command: int, event_code: int, payload: bytes = b"") -> None:
        """Push an event right before the reply to the next ``command``."""
        self._before[command].append(event_frame(event_code, payload))

    def push_after(self, command: int, event_code: int, payload: bytes = b"") -> None:
        """Push an event right after the reply to the next ``command``."""
        self._after[command].append(event_frame(event_code, payload))

    def disconnect_after(self, command: int) -> None:
        """Drop the connection once ``command`` has been answered."""
        self._disconnect_after.add(command)

    def push_event(self, event_code: int, payload: bytes = b"") -> None:
        """Push an event now, outside any command."""
        self.transport.feed(event_frame(event_code, payload))

    def _respond(self, data: bytes) -> bytes:
        frame = decode_frame(data)
        if frame.command == ReplyCode.ACK_OK:
            self.acks.append(frame)
            return b""

        self.received.append(frame)
        command = frame.command
        if command in self._ignored:
            return b""

        if self._replies[command]:
            code, body = self._replies[command].popleft()
        else:
            code, body = self._default_reply(frame)

        if code == ReplyCode.ACK_OK:
            self._apply(frame)

        reply = encode_packet(code, self.session_id, frame.reply_number, body)
        before = b"".join(self._before.pop(command, []))
        after = b"".join(self._after.pop(command, []))

        if command in self._disconnect_after:
            self.transport.simulate_disconnect()
        return before + reply + after

    def _default_reply(self, frame: Frame) -> tuple[int, bytes]:
        if frame.command == CommandCode.DATA_WRRQ:
            return ReplyCode.ACK_DATA, user_table(self.users)
        return ReplyCode.ACK_OK, b""

    def _apply(self, frame: Frame) -> None:
        if frame.command == CommandCode.USER_WRQ:
            record = UserRecord.from_bytes(frame.body)
            existing = [user for user in self.users if user.user_id == record.user_id]
            if existing:
                serial = existing[0].serial_number
            elif record.serial_number:
                serial = record.serial_number
            else:
                serial = max((user.serial_number for user in self.users), default=0) + 1
            self.users = [user for user in self.users if user.user_id != record.user_id]
            self.users.append(record.model_copy(update={"serial_number": serial}))
        elif frame.command == CommandCode.DELETE_USER:
            serial = struct.unpack_from("<H", frame.body)[0]
            self.users = [user for user in self.users if user.serial_number != serial]


async def wait_until(predicate, timeout: float = 1.0) -> None:
    """Poll ``predicate`` on the event loop until it holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Condition not reached in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def mock_transport():
    """Create a MockTransport with a short idle read timeout."""
    return MockTransport(default_timeout=0.2)


@pytest.fixture
def terminal(mock_transport):
    """Create a FakeTerminal answering on the mock transport."""
    return FakeTerminal(mock_transport)


@pytest_asyncio.fixture
async def manager(mock_transport, terminal):
    """Create a connected SessionManager."""
    manager = SessionManager(mock_transport, timeout=1.0, max_retries=0, retry_delay=0.01)
    await manager.connect()
    yield manager
    await manager.disconnect()
