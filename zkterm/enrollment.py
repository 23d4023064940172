"""
Fingerprint enrollment orchestration.

Enrollment is a conversation: a handful of commands prepare the terminal,
then the user places a finger several times while the terminal pushes
realtime events, and finally an ENROLLFINGER event reports the outcome.

    IDLE -> PREPARING -> AWAITING_FINGER -> CAPTURING -> FINALIZING
                                                     -> COMPLETED
                                                     -> FAILED
                                                     -> TIMED_OUT

Whatever the outcome, the terminal is left with capture cancelled and the
device enabled.

Example:
    >>> orchestrator = EnrollmentOrchestrator(correlator, dispatcher, users)
    >>> result = await orchestrator.enroll("1001", finger_index=0)
    >>> print(result.message)
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum, auto
from typing import TYPE_CHECKING

from zkterm.exceptions import EnrollmentFailure, ProtocolError, TimeoutError, ZKTermError
from zkterm.models.events import (
    EnrollFingerEvent,
    EnrollUserEvent,
    FingerEvent,
    FingerprintQualityEvent,
    RealtimeEvent,
)
from zkterm.models.records import EnrollmentDescriptor, UserRecord, verify_mode_payload
from zkterm.protocol.constants import (
    CommandCode,
    EnrollResult,
    EventFlag,
    ProtocolConstants,
)
from zkterm.users import validate_user_id

if TYPE_CHECKING:
    from zkterm.correlator import CommandCorrelator
    from zkterm.dispatcher import EventDispatcher
    from zkterm.users import UserDirectory

logger = logging.getLogger(__name__)

ENROLLMENT_EVENTS = (
    EventFlag.FINGER | EventFlag.FPFTR | EventFlag.ENROLLFINGER | EventFlag.ENROLLUSER
)


class EnrollmentState(Enum):
    """Enrollment progress states."""

    IDLE = auto()
    PREPARING = auto()
    AWAITING_FINGER = auto()
    CAPTURING = auto()
    FINALIZING = auto()
    COMPLETED = auto()
    FAILED = auto()
    TIMED_OUT = auto()

    @property
    def is_terminal(self) -> bool:
        return self in (EnrollmentState.COMPLETED, EnrollmentState.FAILED, EnrollmentState.TIMED_OUT)


class FailureReason(Enum):
    """Why an enrollment ended in FAILED."""

    NO_DATA_CAPTURED = auto()
    """The terminal captured no usable fingerprint (result code 6)."""

    DEVICE_ERROR = auto()
    """The terminal reported a result code without a known meaning."""

    MALFORMED_RESPONSE = auto()
    """The ENROLLFINGER event carried no result code."""

    CONNECTION_LOST = auto()
    """The event stream ended before a result arrived."""


@dataclass
class EnrollmentSession:
    """Mutable progress of one enrollment attempt."""

    user_id: str
    finger_index: int
    timeout: float
    state: EnrollmentState = EnrollmentState.IDLE
    placement_count: int = 0
    last_quality: int | None = None
    deadline: float = 0.0
    reason: FailureReason | None = None
    error_code: int | None = None

    def transition(self, state: EnrollmentState) -> None:
        if state is not self.state:
            logger.debug("Enrollment %s: %s -> %s", self.user_id, self.state.name, state.name)
            self.state = state

    def fail(self, reason: FailureReason, error_code: int | None = None) -> None:
        self.reason = reason
        self.error_code = error_code
        self.transition(EnrollmentState.FAILED)

    def result(self) -> EnrollmentResult:
        return EnrollmentResult(
            user_id=self.user_id,
            finger_index=self.finger_index,
            state=self.state,
            reason=self.reason,
            error_code=self.error_code,
            placement_count=self.placement_count,
            last_quality=self.last_quality,
            timeout=self.timeout,
        )


@dataclass(frozen=True)
class EnrollmentResult:
    """
    Outcome of an enrollment attempt.

    Attributes:
        state: COMPLETED, FAILED or TIMED_OUT.
        reason: Failure reason when state is FAILED.
        error_code: Device result code for DEVICE_ERROR and NO_DATA_CAPTURED.
        placement_count: Finger placements seen.
        last_quality: Last reported sample quality (0-100).
    """

    user_id: str
    finger_index: int
    state: EnrollmentState
    reason: FailureReason | None = None
    error_code: int | None = None
    placement_count: int = 0
    last_quality: int | None = None
    timeout: float | None = None

    @property
    def succeeded(self) -> bool:
        return self.state is EnrollmentState.COMPLETED

    @property
    def message(self) -> str:
        """User-facing description of the outcome."""
        if self.state is EnrollmentState.COMPLETED:
            return f"Fingerprint {self.finger_index} enrolled for user {self.user_id}"
        if self.state is EnrollmentState.TIMED_OUT:
            if self.timeout is not None:
                return f"No finger placed within {self.timeout:.0f}s, please retry"
            return "No finger placed in time, please retry"
        if self.reason is FailureReason.NO_DATA_CAPTURED:
            return "No fingerprint captured, please retry"
        if self.reason is FailureReason.DEVICE_ERROR:
            return f"Enrollment failed with device error code {self.error_code}"
        if self.reason is FailureReason.MALFORMED_RESPONSE:
            return "Terminal sent an invalid enrollment result"
        if self.reason is FailureReason.CONNECTION_LOST:
            return "Connection to the terminal was lost during enrollment"
        return f"Enrollment ended in state {self.state.name}"

    def raise_for_outcome(self) -> EnrollmentResult:
        """
        Return self if enrollment completed.

        Raises:
            TimeoutError: If no finger activity happened in time.
            EnrollmentFailure: If enrollment failed.
        """
        if self.succeeded:
            return self
        if self.state is EnrollmentState.TIMED_OUT:
            raise TimeoutError(self.message, timeout_seconds=self.timeout)
        raise EnrollmentFailure(
            self.message,
            reason=self.reason,
            error_code=self.error_code,
            placement_count=self.placement_count,
            last_quality=self.last_quality,
        )


class EnrollmentOrchestrator:
    """
    Drives fingerprint enrollment for one user and finger.

    Only one enrollment may run per connection; the client facade enforces
    this through its ENROLLING state.
    """

    def __init__(
        self,
        correlator: CommandCorrelator,
        dispatcher: EventDispatcher,
        users: UserDirectory,
        timeout: float = ProtocolConstants.DEFAULT_ENROLL_TIMEOUT,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            correlator: Command path of the connection.
            dispatcher: Event dispatcher of the connection.
            users: User directory used to look up or create the user.
            timeout: Default inactivity window in seconds.
        """
        self._correlator = correlator
        self._dispatcher = dispatcher
        self._users = users
        self._timeout = timeout

    async def enroll(
        self,
        user_id: str,
        finger_index: int = 0,
        *,
        name: str | None = None,
        timeout: float | None = None,
    ) -> EnrollmentResult:
        """
        Enroll a fingerprint.

        Creates the user with a default record if it does not exist yet.

        Args:
            user_id: User to enroll.
            finger_index: Finger number 0-9.
            name: Name for a newly created user record.
            timeout: Inactivity window in seconds, reset on every finger
                placement. None uses the default.

        Returns:
            EnrollmentResult describing the outcome. Failures reported by
            the terminal are returned, not raised.

        Raises:
            ValueError: If the user id or finger index is invalid.
            DeviceRejectedError: If the terminal rejects a preparation step.
            TimeoutError: If a preparation command gets no reply.
        """
        validate_user_id(user_id, self._users.user_id_width)
        if not 0 <= finger_index <= ProtocolConstants.MAX_FINGER_INDEX:
            raise ValueError(
                f"Finger index must be 0-{ProtocolConstants.MAX_FINGER_INDEX}, got {finger_index}"
            )

        descriptor = EnrollmentDescriptor(user_id=user_id, finger_index=finger_index)
        session = EnrollmentSession(
            user_id=user_id,
            finger_index=finger_index,
            timeout=timeout if timeout is not None else self._timeout,
        )

        # Subscribe before the first command so no event can be missed.
        events: asyncio.Queue[RealtimeEvent | None] = asyncio.Queue()
        subscription = self._dispatcher.subscribe(
            ENROLLMENT_EVENTS,
            events.put_nowait,
            on_close=lambda error: events.put_nowait(None),
        )

        logger.info("Starting enrollment of finger %d for user %s", finger_index, user_id)
        try:
            await self._prepare(session, name)
            await self._discard_stale(events)
            await self._start_capture(session, descriptor)
            await self._monitor(session, events)
        finally:
            subscription.cancel()
            await self._cleanup()

        result = session.result()
        if result.succeeded:
            logger.info("Enrollment of user %s completed", user_id)
        else:
            logger.info("Enrollment of user %s ended: %s", user_id, result.message)
        return result

    async def _prepare(self, session: EnrollmentSession, name: str | None) -> None:
        session.transition(EnrollmentState.PREPARING)
        await self._correlator.request(CommandCode.DISABLE_DEVICE)

        record = await self._users.find_by_user_id(session.user_id)
        if record is None:
            logger.info("User %s not on terminal, creating default record", session.user_id)
            await self._users.write_user_record(
                UserRecord(user_id=session.user_id, name=name or "")
            )
            await self._users.refresh()
            record = await self._users.find_by_user_id(session.user_id)
            if record is None:
                raise ProtocolError(f"User {session.user_id} missing after it was written")

        await self._correlator.request(
            CommandCode.VERIFY_WRQ, verify_mode_payload(record.serial_number)
        )
        await self._correlator.request(CommandCode.CANCEL_CAPTURE)
        await self._correlator.request(CommandCode.ENABLE_DEVICE)

    async def _discard_stale(self, events: asyncio.Queue[RealtimeEvent | None]) -> None:
        # Placements before STARTENROLL belong to normal verification.
        await self._dispatcher.flush()
        stale = 0
        while not events.empty():
            if events.get_nowait() is None:
                events.put_nowait(None)
                break
            stale += 1
        if stale:
            logger.debug("Discarded %d events received before capture started", stale)

    async def _start_capture(
        self,
        session: EnrollmentSession,
        descriptor: EnrollmentDescriptor,
    ) -> None:
        await self._correlator.request(CommandCode.START_ENROLL, descriptor.to_bytes())
        await self._correlator.request(CommandCode.START_VERIFY)
        session.transition(EnrollmentState.AWAITING_FINGER)
        logger.info(
            "Waiting for finger placements (%d expected, %.0fs inactivity timeout)",
            ProtocolConstants.EXPECTED_PLACEMENTS,
            session.timeout,
        )

    async def _monitor(
        self,
        session: EnrollmentSession,
        events: asyncio.Queue[RealtimeEvent | None],
    ) -> None:
        loop = asyncio.get_running_loop()
        session.deadline = loop.time() + session.timeout

        while not session.state.is_terminal:
            remaining = session.deadline - loop.time()
            if remaining <= 0:
                session.transition(EnrollmentState.TIMED_OUT)
                break

            try:
                event = await asyncio.wait_for(events.get(), timeout=remaining)
            except asyncio.TimeoutError:
                continue

            if event is None:
                session.fail(FailureReason.CONNECTION_LOST)
                break

            if isinstance(event, FingerEvent):
                session.placement_count += 1
                session.deadline = loop.time() + session.timeout
                session.transition(EnrollmentState.CAPTURING)
                logger.info(
                    "Finger placement %d/%d",
                    session.placement_count,
                    ProtocolConstants.EXPECTED_PLACEMENTS,
                )
            elif isinstance(event, FingerprintQualityEvent):
                session.last_quality = event.score
                if event.score == ProtocolConstants.GOOD_QUALITY_SCORE:
                    logger.debug("Good fingerprint sample")
                else:
                    logger.warning("Poor fingerprint sample (quality %s)", event.score)
            elif isinstance(event, EnrollFingerEvent):
                session.transition(EnrollmentState.FINALIZING)
                self._finish(session, event.result_code)
            elif isinstance(event, EnrollUserEvent):
                logger.debug("Terminal reported user enrolled")

    @staticmethod
    def _finish(session: EnrollmentSession, result_code: int | None) -> None:
        if result_code is None:
            session.fail(FailureReason.MALFORMED_RESPONSE)
        elif result_code == EnrollResult.SUCCESS:
            session.transition(EnrollmentState.COMPLETED)
        elif result_code == EnrollResult.NO_DATA_CAPTURED:
            session.fail(FailureReason.NO_DATA_CAPTURED, result_code)
        else:
            session.fail(FailureReason.DEVICE_ERROR, result_code)

    async def _cleanup(self) -> None:
        if not self._correlator.running:
            logger.debug("Skipping enrollment cleanup: connection is closed")
            return
        for command in (CommandCode.CANCEL_CAPTURE, CommandCode.ENABLE_DEVICE):
            try:
                await self._correlator.request(command)
            except ZKTermError as e:
                logger.warning("Enrollment cleanup step 0x%04X failed: %s", command, e)
