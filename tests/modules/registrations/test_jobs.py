"""
Unit tests for the registration background jobs.
"""

import asyncio
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock, patch
from zoneinfo import ZoneInfo

import pytest
from apscheduler.triggers.combining import OrTrigger
from apscheduler.triggers.cron import CronTrigger

from kq_alumni.core.config import BackgroundJobSettings
from kq_alumni.modules.registrations import jobs
from kq_alumni.modules.registrations.approval import ApprovalBatchSummary

NAIROBI = ZoneInfo("Africa/Nairobi")


class TestBuildApprovalTrigger:
    """Tests for the approval job schedule."""

    def test_smart_scheduling_combines_three_schedules(self):
        trigger = jobs.build_approval_trigger(BackgroundJobSettings())

        assert isinstance(trigger, OrTrigger)
        assert len(trigger.triggers) == 3

    def test_business_hours_run_every_two_minutes(self):
        trigger = jobs.build_approval_trigger(BackgroundJobSettings())
        wednesday_morning = datetime(2025, 3, 12, 9, 31, tzinfo=NAIROBI)

        next_run = trigger.get_next_fire_time(None, wednesday_morning)

        assert next_run == datetime(2025, 3, 12, 9, 32, tzinfo=NAIROBI)

    def test_off_hours_run_every_fifteen_minutes(self):
        trigger = jobs.build_approval_trigger(BackgroundJobSettings())
        wednesday_evening = datetime(2025, 3, 12, 20, 1, tzinfo=NAIROBI)

        next_run = trigger.get_next_fire_time(None, wednesday_evening)

        assert next_run == datetime(2025, 3, 12, 20, 15, tzinfo=NAIROBI)

    def test_weekends_run_every_thirty_minutes(self):
        trigger = jobs.build_approval_trigger(BackgroundJobSettings())
        saturday_morning = datetime(2025, 3, 15, 10, 5, tzinfo=NAIROBI)

        next_run = trigger.get_next_fire_time(None, saturday_morning)

        assert next_run == datetime(2025, 3, 15, 10, 30, tzinfo=NAIROBI)

    def test_default_schedule_without_smart_scheduling(self):
        trigger = jobs.build_approval_trigger(BackgroundJobSettings(enable_smart_scheduling=False))
        wednesday_morning = datetime(2025, 3, 12, 9, 31, tzinfo=NAIROBI)

        assert isinstance(trigger, CronTrigger)
        assert trigger.get_next_fire_time(None, wednesday_morning) == datetime(
            2025, 3, 12, 9, 35, tzinfo=NAIROBI
        )

    def test_invalid_cron_expression_raises(self):
        with pytest.raises(ValueError):
            jobs.build_approval_trigger(
                BackgroundJobSettings(enable_smart_scheduling=False, default_schedule="* *")
            )


class TestRegisterRegistrationJobs:
    def test_registers_approval_job(self):
        with patch.object(jobs, "register_job") as mock_register:
            jobs.register_registration_jobs(BackgroundJobSettings())

        mock_register.assert_called_once()
        kwargs = mock_register.call_args.kwargs
        assert kwargs["job_id"] == jobs.JOB_ID_APPROVAL_PROCESSING
        assert kwargs["func"] is jobs.process_pending_registrations
        assert isinstance(kwargs["trigger"], OrTrigger)


class TestProcessPendingRegistrationsJob:
    """Tests for the scheduled job entry point."""

    @pytest.mark.asyncio
    async def test_runs_one_batch_in_its_own_session(self):
        mock_db = AsyncMock()
        session_maker = MagicMock()
        session_maker.return_value.__aenter__ = AsyncMock(return_value=mock_db)
        session_maker.return_value.__aexit__ = AsyncMock(return_value=False)

        summary = ApprovalBatchSummary(approved=2, retried=1)
        mock_job = MagicMock()
        mock_job.process_pending_registrations = AsyncMock(return_value=summary)

        with (
            patch.object(jobs, "async_session_maker", session_maker),
            patch.object(jobs, "ErpClient"),
            patch.object(jobs, "ApprovalProcessingJob", return_value=mock_job) as mock_job_cls,
        ):
            result = await jobs.process_pending_registrations()

        assert result["status"] == "completed"
        assert result["approved"] == 2
        assert result["retried"] == 1
        assert result["processed"] == 3
        assert mock_job_cls.call_args.args[0] is mock_db

    @pytest.mark.asyncio
    async def test_skips_when_a_batch_is_already_running(self):
        with patch.object(jobs, "ApprovalProcessingJob") as mock_job_cls:
            async with jobs._run_lock:
                result = await jobs.process_pending_registrations()

        assert result == {"status": "skipped", "reason": "already_running"}
        mock_job_cls.assert_not_called()

    def test_cancel_running_jobs_sets_cancel_event(self):
        try:
            jobs.cancel_running_jobs()
            assert jobs._cancel_event.is_set()
        finally:
            jobs._cancel_event.clear()


class TestWaitForRunningJobs:
    """Tests for waiting on a running batch during shutdown."""

    @pytest.mark.asyncio
    async def test_returns_immediately_when_idle(self):
        with patch.object(jobs, "_run_lock", asyncio.Lock()):
            assert await jobs.wait_for_running_jobs(timeout=0.1) is True

    @pytest.mark.asyncio
    async def test_waits_for_batch_to_finish(self):
        lock = asyncio.Lock()
        finished = []

        async def batch():
            async with lock:
                await asyncio.sleep(0.05)
                finished.append(True)

        with patch.object(jobs, "_run_lock", lock):
            task = asyncio.create_task(batch())
            await asyncio.sleep(0)

            assert await jobs.wait_for_running_jobs(timeout=1) is True
            assert finished == [True]
            assert not lock.locked()
            await task

    @pytest.mark.asyncio
    async def test_gives_up_after_timeout(self):
        lock = asyncio.Lock()

        with patch.object(jobs, "_run_lock", lock):
            await lock.acquire()
            try:
                assert await jobs.wait_for_running_jobs(timeout=0.05) is False
            finally:
                lock.release()
