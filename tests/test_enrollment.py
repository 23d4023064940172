"""Tests for the fingerprint enrollment state machine."""

import asyncio
import struct

import pytest

from conftest import wait_until
from zkterm.enrollment import (
    EnrollmentOrchestrator,
    EnrollmentResult,
    EnrollmentState,
    FailureReason,
)
from zkterm.exceptions import DeviceRejectedError, EnrollmentFailure, TimeoutError
from zkterm.models.records import UserRecord
from zkterm.protocol.constants import CommandCode, EventFlag, ReplyCode, VerifyMode
from zkterm.users import UserDirectory

CLEANUP = [CommandCode.CANCEL_CAPTURE, CommandCode.ENABLE_DEVICE]


def _result_code(code: int) -> bytes:
    return struct.pack("<H", code)


def _placements(terminal, count: int = 3, quality: int = 100) -> None:
    for _ in range(count):
        terminal.push_after(CommandCode.START_VERIFY, EventFlag.FINGER)
        terminal.push_after(CommandCode.START_VERIFY, EventFlag.FPFTR, bytes([quality]))


@pytest.fixture
def orchestrator(manager):
    """Create an EnrollmentOrchestrator on the connected session."""
    users = UserDirectory(manager.correlator)
    return EnrollmentOrchestrator(manager.correlator, manager.dispatcher, users, timeout=1.0)


@pytest.fixture
def existing_user(terminal):
    """Store user 1001 with serial 5 on the fake terminal."""
    record = UserRecord(serial_number=5, user_id="1001", name="Alice")
    terminal.users = [record]
    return record


class TestEnrollmentFlow:
    """Tests for complete enrollment runs."""

    @pytest.mark.asyncio
    async def test_completed(self, terminal, orchestrator, existing_user):
        """Test three placements and a zero result complete enrollment."""
        _placements(terminal)
        terminal.push_after(CommandCode.START_VERIFY, EventFlag.ENROLLFINGER, _result_code(0))

        result = await orchestrator.enroll("1001", finger_index=2)

        assert result.state == EnrollmentState.COMPLETED
        assert result.succeeded
        assert result.placement_count == 3
        assert result.last_quality == 100
        assert result.raise_for_outcome() is result

    @pytest.mark.asyncio
    async def test_command_sequence(self, terminal, orchestrator, existing_user):
        """Test the preparation, start and cleanup commands and payloads."""
        terminal.push_after(CommandCode.START_VERIFY, EventFlag.ENROLLFINGER, _result_code(0))

        await orchestrator.enroll("1001", finger_index=2)

        assert terminal.commands[3:] == [
            CommandCode.DISABLE_DEVICE,
            CommandCode.DATA_WRRQ,
            CommandCode.VERIFY_WRQ,
            CommandCode.CANCEL_CAPTURE,
            CommandCode.ENABLE_DEVICE,
            CommandCode.START_ENROLL,
            CommandCode.START_VERIFY,
            *CLEANUP,
        ]
        by_command = {frame.command: frame for frame in terminal.received}
        verify = by_command[CommandCode.VERIFY_WRQ].body
        assert verify == bytes([5, 0, VerifyMode.FP_ONLY]) + bytes(21)
        descriptor = by_command[CommandCode.START_ENROLL].body
        assert descriptor == b"1001" + bytes(20) + bytes([2, 1])

    @pytest.mark.asyncio
    async def test_missing_user_is_created(self, terminal, orchestrator):
        """Test a default record is written and refreshed for unknown users."""
        terminal.push_after(CommandCode.START_VERIFY, EventFlag.ENROLLFINGER, _result_code(0))

        result = await orchestrator.enroll("2002", name="Bob")

        assert result.succeeded
        assert terminal.commands[3:8] == [
            CommandCode.DISABLE_DEVICE,
            CommandCode.DATA_WRRQ,
            CommandCode.USER_WRQ,
            CommandCode.REFRESH_DATA,
            CommandCode.DATA_WRRQ,
        ]
        assert [(user.user_id, user.name) for user in terminal.users] == [("2002", "Bob")]

    @pytest.mark.asyncio
    async def test_no_data_captured(self, terminal, orchestrator, existing_user):
        """Test result code 6 fails with NO_DATA_CAPTURED."""
        _placements(terminal, count=1, quality=40)
        terminal.push_after(CommandCode.START_VERIFY, EventFlag.ENROLLFINGER, _result_code(6))

        result = await orchestrator.enroll("1001")

        assert result.state == EnrollmentState.FAILED
        assert result.reason == FailureReason.NO_DATA_CAPTURED
        assert result.error_code == 6
        assert result.placement_count == 1
        assert result.last_quality == 40
        assert result.message == "No fingerprint captured, please retry"
        assert terminal.commands[-2:] == CLEANUP

        with pytest.raises(EnrollmentFailure) as exc_info:
            result.raise_for_outcome()
        assert exc_info.value.reason == FailureReason.NO_DATA_CAPTURED
        assert exc_info.value.placement_count == 1

    @pytest.mark.asyncio
    async def test_device_error_code(self, terminal, orchestrator, existing_user):
        """Test unknown result codes are reported as device errors."""
        terminal.push_after(CommandCode.START_VERIFY, EventFlag.ENROLLFINGER, _result_code(4))

        result = await orchestrator.enroll("1001")

        assert result.reason == FailureReason.DEVICE_ERROR
        assert result.error_code == 4
        assert "4" in result.message

    @pytest.mark.asyncio
    async def test_malformed_result(self, terminal, orchestrator, existing_user):
        """Test a result payload shorter than two bytes is malformed."""
        terminal.push_after(CommandCode.START_VERIFY, EventFlag.ENROLLFINGER, b"\x00")

        result = await orchestrator.enroll("1001")

        assert result.state == EnrollmentState.FAILED
        assert result.reason == FailureReason.MALFORMED_RESPONSE
        assert result.error_code is None

    @pytest.mark.asyncio
    async def test_events_before_capture_not_counted(self, terminal, orchestrator, existing_user):
        """Test finger activity during preparation is not counted as a placement."""
        terminal.push_before(CommandCode.VERIFY_WRQ, EventFlag.FINGER)
        terminal.push_after(CommandCode.ENABLE_DEVICE, EventFlag.FINGER)
        terminal.push_after(CommandCode.ENABLE_DEVICE, EventFlag.FPFTR, bytes([40]))
        terminal.push_after(CommandCode.START_VERIFY, EventFlag.ENROLLFINGER, _result_code(0))

        result = await orchestrator.enroll("1001")

        assert result.state == EnrollmentState.COMPLETED
        assert result.placement_count == 0
        assert result.last_quality is None

    @pytest.mark.asyncio
    async def test_poor_quality_does_not_fail(self, terminal, orchestrator, existing_user, caplog):
        """Test a poor sample is logged but enrollment continues."""
        _placements(terminal, quality=55)
        terminal.push_after(CommandCode.START_VERIFY, EventFlag.ENROLLFINGER, _result_code(0))

        result = await orchestrator.enroll("1001")

        assert result.succeeded
        assert result.last_quality == 55
        assert "Poor fingerprint sample" in caplog.text


class TestEnrollmentFailures:
    """Tests for timeouts, lost connections and rejected commands."""

    @pytest.mark.asyncio
    async def test_inactivity_timeout(self, terminal, orchestrator, existing_user):
        """Test no finger activity ends in TIMED_OUT with cleanup."""
        result = await orchestrator.enroll("1001", timeout=0.1)

        assert result.state == EnrollmentState.TIMED_OUT
        assert result.placement_count == 0
        assert terminal.commands[-2:] == CLEANUP

        with pytest.raises(TimeoutError):
            result.raise_for_outcome()

    @pytest.mark.asyncio
    async def test_placement_resets_deadline(self, terminal, orchestrator, existing_user):
        """Test each finger placement restarts the inactivity window."""
        task = asyncio.create_task(orchestrator.enroll("1001", timeout=0.3))
        await wait_until(lambda: CommandCode.START_VERIFY in terminal.commands)

        for _ in range(3):
            await asyncio.sleep(0.2)
            terminal.push_event(EventFlag.FINGER)
        await asyncio.sleep(0.1)
        terminal.push_event(EventFlag.ENROLLFINGER, _result_code(0))

        result = await task
        assert result.succeeded
        assert result.placement_count == 3

    @pytest.mark.asyncio
    async def test_connection_lost(self, terminal, orchestrator, existing_user):
        """Test a dropped connection fails with CONNECTION_LOST."""
        _placements(terminal, count=1)
        terminal.disconnect_after(CommandCode.START_VERIFY)

        result = await orchestrator.enroll("1001")

        assert result.state == EnrollmentState.FAILED
        assert result.reason == FailureReason.CONNECTION_LOST
        assert result.placement_count == 1
        assert terminal.commands[-1] == CommandCode.START_VERIFY

    @pytest.mark.asyncio
    async def test_rejected_start_runs_cleanup(self, terminal, orchestrator, existing_user):
        """Test a rejected STARTENROLL propagates after cleanup."""
        terminal.reply_with(CommandCode.START_ENROLL, ReplyCode.ACK_ERROR)

        with pytest.raises(DeviceRejectedError):
            await orchestrator.enroll("1001")

        assert terminal.commands[-3:] == [CommandCode.START_ENROLL, *CLEANUP]

    @pytest.mark.asyncio
    async def test_cancellation_runs_cleanup(self, terminal, orchestrator, existing_user):
        """Test cancelling the enrollment task still cleans up."""
        task = asyncio.create_task(orchestrator.enroll("1001", timeout=5.0))
        await wait_until(lambda: CommandCode.START_VERIFY in terminal.commands)
        await asyncio.sleep(0.05)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert terminal.commands[-2:] == CLEANUP

    @pytest.mark.asyncio
    async def test_subscription_released(self, terminal, manager, orchestrator, existing_user):
        """Test the event subscription is cancelled after enrollment."""
        terminal.push_after(CommandCode.START_VERIFY, EventFlag.ENROLLFINGER, _result_code(0))
        await orchestrator.enroll("1001")
        assert manager.dispatcher.subscriptions == []

    @pytest.mark.asyncio
    async def test_invalid_arguments(self, terminal, orchestrator):
        """Test bad finger indexes and ids fail before any command."""
        with pytest.raises(ValueError):
            await orchestrator.enroll("1001", finger_index=10)
        with pytest.raises(ValueError):
            await orchestrator.enroll("1234567890")
        assert terminal.commands[3:] == []

    @pytest.mark.asyncio
    async def test_wide_device_width_rejects_long_id(self, terminal, manager):
        """Test ids longer than the record field fail before any command."""
        users = UserDirectory(manager.correlator, user_id_width=24)
        orchestrator = EnrollmentOrchestrator(manager.correlator, manager.dispatcher, users)

        with pytest.raises(ValueError):
            await orchestrator.enroll("12345678901")
        assert terminal.commands[3:] == []


class TestEnrollmentResult:
    """Tests for EnrollmentResult messages."""

    def test_connection_lost_message(self):
        result = EnrollmentResult(
            user_id="1",
            finger_index=0,
            state=EnrollmentState.FAILED,
            reason=FailureReason.CONNECTION_LOST,
        )
        assert "lost" in result.message
        assert not result.succeeded

    def test_timeout_message(self):
        result = EnrollmentResult(
            user_id="1", finger_index=0, state=EnrollmentState.TIMED_OUT, timeout=60.0
        )
        assert "60s" in result.message
