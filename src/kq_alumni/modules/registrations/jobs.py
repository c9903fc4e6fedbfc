"""
Registration Background Jobs

Scheduled automatic approval of pending alumni registrations.

Design Principles:
- The job is idempotent: all retry state lives on the registration row
- The job opens its own database session (one unit of work per batch)
- Only one batch runs at a time in this process; with row locking enabled,
  concurrent replicas skip rows another batch has already claimed
- Failed registrations don't stop the batch; failed batches propagate to the
  scheduler listener

Schedule (Africa/Nairobi by default):
- Business hours (Mon-Fri 08:00-18:00): every 2 minutes
- Off hours (Mon-Fri 18:00-08:00): every 15 minutes
- Weekends: every 30 minutes
- Smart scheduling disabled: every 5 minutes
"""

import asyncio
import logging
from typing import Any

from apscheduler.triggers.base import BaseTrigger

from kq_alumni.core.config import BackgroundJobSettings, settings
from kq_alumni.core.database import async_session_maker
from kq_alumni.core.erp import ErpClient
from kq_alumni.core.scheduler import build_cron_trigger, register_job, resolve_timezone
from kq_alumni.modules.registrations.approval import ApprovalProcessingJob

logger = logging.getLogger(__name__)

# Job ID for registration and manual triggering
JOB_ID_APPROVAL_PROCESSING = "registrations_approval_processing"

# Single-flight guard: a manual trigger must not overlap a scheduled run
_run_lock = asyncio.Lock()
_cancel_event = asyncio.Event()


async def process_pending_registrations() -> dict[str, Any]:
    """
    Run one approval batch.

    Returns:
        Dict with job execution summary including the outcome counts,
        processed total and elapsed seconds, or ``{"status": "skipped"}``
        when a batch is already running
    """
    if _run_lock.locked():
        logger.warning("Approval processing already running, skipping this run")
        return {"status": "skipped", "reason": "already_running"}

    async with _run_lock:
        job_settings = settings.background_jobs
        erp_client = ErpClient(settings.erp)

        async with async_session_maker() as db:
            job = ApprovalProcessingJob(db, job_settings, erp_client)
            summary = await job.process_pending_registrations(cancel_event=_cancel_event)

        return {"status": "completed", **summary.as_dict()}


def build_approval_trigger(job_settings: BackgroundJobSettings) -> BaseTrigger:
    """
    Build the approval job trigger from configuration.

    Smart scheduling combines the business hours, off hours and weekend
    schedules; otherwise the default schedule is used around the clock.
    """
    timezone = resolve_timezone(job_settings.time_zone)

    if job_settings.enable_smart_scheduling:
        schedules = [
            job_settings.business_hours_schedule,
            job_settings.off_hours_schedule,
            job_settings.weekend_schedule,
        ]
    else:
        schedules = [job_settings.default_schedule]

    return build_cron_trigger(schedules, timezone)


def register_registration_jobs(job_settings: BackgroundJobSettings | None = None) -> None:
    """
    Register the approval processing job with the scheduler.

    This function should be called during application startup, before
    the scheduler is started.
    """
    job_settings = job_settings or settings.background_jobs

    logger.info("Registering registration background jobs...")

    _cancel_event.clear()

    register_job(
        job_id=JOB_ID_APPROVAL_PROCESSING,
        func=process_pending_registrations,
        trigger=build_approval_trigger(job_settings),
    )

    if job_settings.enable_smart_scheduling:
        logger.info(
            f"Registered job: {JOB_ID_APPROVAL_PROCESSING} "
            f"(business hours: '{job_settings.business_hours_schedule}', "
            f"off hours: '{job_settings.off_hours_schedule}', "
            f"weekends: '{job_settings.weekend_schedule}', tz: {job_settings.time_zone})"
        )
    else:
        logger.info(
            f"Registered job: {JOB_ID_APPROVAL_PROCESSING} "
            f"(schedule: '{job_settings.default_schedule}', tz: {job_settings.time_zone})"
        )


def cancel_running_jobs() -> None:
    """Ask a running approval batch to stop before its next registration."""
    _cancel_event.set()


async def wait_for_running_jobs(timeout: float) -> bool:
    """
    Wait for a running approval batch to finish and commit.

    Call after cancel_running_jobs() and before stopping the scheduler:
    stopping the scheduler cancels running tasks, which would roll back the
    batch in progress.

    Args:
        timeout: Seconds to wait before giving up

    Returns:
        True if no batch is running any more, False on timeout
    """
    if not _run_lock.locked():
        return True

    logger.info("Waiting for the running approval batch to finish...")

    try:
        await asyncio.wait_for(_run_lock.acquire(), timeout=timeout)
    except TimeoutError:
        logger.warning(f"Approval batch still running after {timeout}s, stopping anyway")
        return False

    _run_lock.release()
    return True
