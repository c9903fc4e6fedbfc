"""
Background Job Scheduler

Provides scheduled task execution using APScheduler with AsyncIO support.
Handles job registration, execution, and graceful shutdown.

Design Principles:
- Jobs are idempotent (safe to run multiple times)
- Jobs use database transactions for atomicity
- Failed jobs are logged but don't crash the scheduler
- Jobs can be triggered manually for testing
- Scheduler integrates with FastAPI lifespan

Usage:
    from kq_alumni.core.scheduler import register_job, start_scheduler, stop_scheduler

    # Register jobs, then start inside the FastAPI lifespan:
    async def lifespan(app):
        register_job("my_job", my_job, CronTrigger.from_crontab("*/5 * * * *"))
        await start_scheduler()
        yield
        await stop_scheduler()
"""

import logging
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from datetime import UTC, datetime, tzinfo
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED, JobExecutionEvent
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.combining import OrTrigger
from apscheduler.triggers.cron import CronTrigger

logger = logging.getLogger(__name__)

JobFunc = Callable[[], Coroutine[Any, Any, Any]]

# Global scheduler instance
_scheduler: AsyncIOScheduler | None = None


@dataclass
class RegisteredJob:
    func: JobFunc
    trigger: BaseTrigger
    replace_existing: bool = True


# Job registry for deferred scheduling and manual triggering
_job_registry: dict[str, RegisteredJob] = {}


class SchedulerConfig:
    """Configuration for the background scheduler."""

    # Job execution settings
    JOB_COALESCE = True  # Combine multiple missed executions into one
    JOB_MAX_INSTANCES = 1  # Only one instance of each job can run at a time
    JOB_MISFIRE_GRACE_TIME = 60 * 5  # 5 minutes grace time for missed jobs

    # Scheduler settings
    EXECUTORS = {
        "default": {"type": "asyncio"},
    }

    JOB_DEFAULTS = {
        "coalesce": JOB_COALESCE,
        "max_instances": JOB_MAX_INSTANCES,
        "misfire_grace_time": JOB_MISFIRE_GRACE_TIME,
    }


def resolve_timezone(name: str) -> tzinfo:
    """
    Resolve an IANA time zone name, falling back to UTC.

    Args:
        name: Time zone name, e.g. "Africa/Nairobi"

    Returns:
        The matching tzinfo, or UTC if the name is unknown
    """
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Timezone '{name}' not found. Using UTC.")
        return UTC


def build_cron_trigger(schedules: list[str], timezone: tzinfo) -> BaseTrigger:
    """
    Build a trigger firing on any of the given crontab expressions.

    Args:
        schedules: One or more 5-field crontab expressions
        timezone: Time zone the expressions are evaluated in

    Returns:
        A CronTrigger for a single expression, otherwise an OrTrigger

    Raises:
        ValueError: If no schedules are given or an expression is invalid
    """
    if not schedules:
        raise ValueError("At least one cron schedule is required")

    triggers = [CronTrigger.from_crontab(expr, timezone=timezone) for expr in schedules]
    if len(triggers) == 1:
        return triggers[0]
    return OrTrigger(triggers)


def _job_listener(event: JobExecutionEvent) -> None:
    """
    Listener for job execution events.

    Logs job execution results for monitoring and debugging.

    Args:
        event: The job execution event from APScheduler
    """
    if event.exception:
        logger.error(
            f"Job {event.job_id} failed with exception: {event.exception}",
            exc_info=event.exception,
        )
    else:
        logger.info(f"Job {event.job_id} executed successfully at {datetime.now(UTC).isoformat()}")


def get_scheduler() -> AsyncIOScheduler | None:
    """
    Get the global scheduler instance.

    Returns:
        The scheduler instance, or None if not initialized
    """
    return _scheduler


async def start_scheduler(timezone: tzinfo = UTC) -> AsyncIOScheduler:
    """
    Initialize and start the background scheduler.

    Creates a new AsyncIOScheduler instance, adds every job from the
    registry and starts it running.

    Args:
        timezone: Default time zone for the scheduler

    Returns:
        The started scheduler instance
    """
    global _scheduler

    if _scheduler is not None and _scheduler.running:
        logger.warning("Scheduler already running, returning existing instance")
        return _scheduler

    logger.info("Initializing background job scheduler...")

    _scheduler = AsyncIOScheduler(
        timezone=timezone,
        executors=SchedulerConfig.EXECUTORS,
        job_defaults=SchedulerConfig.JOB_DEFAULTS,
    )

    # Add event listeners for monitoring
    _scheduler.add_listener(_job_listener, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR)

    register_jobs_from_registry()

    _scheduler.start()

    logger.info("Background job scheduler started successfully")
    return _scheduler


async def stop_scheduler() -> None:
    """
    Stop the background scheduler gracefully.

    Waits for currently running jobs to complete before shutting down.
    """
    global _scheduler

    if _scheduler is None:
        logger.debug("Scheduler not initialized, nothing to stop")
        return

    if not _scheduler.running:
        logger.debug("Scheduler not running, nothing to stop")
        _scheduler = None
        return

    logger.info("Stopping background job scheduler...")

    _scheduler.shutdown(wait=True)

    logger.info("Background job scheduler stopped")
    _scheduler = None


def register_job(
    job_id: str,
    func: JobFunc,
    trigger: BaseTrigger,
    replace_existing: bool = True,
) -> None:
    """
    Register a job with the scheduler.

    Jobs registered before the scheduler starts are added when it starts.

    Args:
        job_id: Unique identifier for the job
        func: Async function to execute
        trigger: APScheduler trigger (CronTrigger, OrTrigger, IntervalTrigger, ...)
        replace_existing: Whether to replace an existing job with the same ID
    """
    _job_registry[job_id] = RegisteredJob(
        func=func, trigger=trigger, replace_existing=replace_existing
    )

    if _scheduler is None:
        logger.debug(f"Scheduler not initialized, job {job_id} will be registered later")
        return

    _scheduler.add_job(
        func,
        trigger=trigger,
        id=job_id,
        replace_existing=replace_existing,
    )
    logger.info(f"Registered job: {job_id}")


def register_jobs_from_registry() -> None:
    """
    Add all jobs from the registry to the scheduler.

    Called after scheduler initialization so jobs registered during startup
    are scheduled with the triggers they were registered with.
    """
    if _scheduler is None:
        logger.warning("Cannot register jobs: scheduler not initialized")
        return

    logger.info(f"Registering {len(_job_registry)} jobs from registry...")

    for job_id, job in _job_registry.items():
        _scheduler.add_job(
            job.func,
            trigger=job.trigger,
            id=job_id,
            replace_existing=job.replace_existing,
        )
        logger.info(f"Registered job: {job_id}")


def clear_job_registry() -> None:
    """Forget all registered jobs. Used on shutdown and in tests."""
    _job_registry.clear()


async def trigger_job_manually(job_id: str) -> dict[str, Any]:
    """
    Trigger a job manually for testing or maintenance purposes.

    This bypasses the scheduler and runs the job function directly.

    Args:
        job_id: The ID of the job to trigger

    Returns:
        Dict with execution result including:
        - job_id: The job ID
        - status: "success" or "error"
        - executed_at: Execution timestamp
        - result: Return value of the job, if any
        - error: Error message if failed

    Raises:
        ValueError: If job_id is not found in the registry
    """
    if job_id not in _job_registry:
        raise ValueError(
            f"Job {job_id} not found in registry. Available jobs: {list(_job_registry.keys())}"
        )

    func = _job_registry[job_id].func
    executed_at = datetime.now(UTC)

    logger.info(f"Manually triggering job: {job_id}")

    try:
        result = await func()
        logger.info(f"Manual execution of job {job_id} completed successfully")
        return {
            "job_id": job_id,
            "status": "success",
            "executed_at": executed_at.isoformat(),
            "result": result,
        }
    except Exception as e:
        logger.error(f"Manual execution of job {job_id} failed: {e}", exc_info=True)
        return {
            "job_id": job_id,
            "status": "error",
            "executed_at": executed_at.isoformat(),
            "error": str(e),
        }


def list_registered_jobs() -> list[dict[str, Any]]:
    """
    List all registered jobs and their status.

    Returns:
        List of job information dicts containing:
        - job_id: The job ID
        - next_run_time: When the job will run next (if scheduled)
        - is_paused: Whether the job is currently paused
    """
    jobs = []

    for job_id in _job_registry:
        job_info: dict[str, Any] = {
            "job_id": job_id,
            "registered": True,
        }

        if _scheduler is not None:
            scheduled_job = _scheduler.get_job(job_id)
            if scheduled_job:
                job_info["next_run_time"] = (
                    scheduled_job.next_run_time.isoformat() if scheduled_job.next_run_time else None
                )
                job_info["is_paused"] = scheduled_job.next_run_time is None
            else:
                job_info["next_run_time"] = None
                job_info["is_paused"] = True

        jobs.append(job_info)

    return jobs


def pause_job(job_id: str) -> bool:
    """
    Pause a scheduled job.

    Args:
        job_id: The ID of the job to pause

    Returns:
        True if job was paused, False if job not found
    """
    if _scheduler is None:
        logger.warning("Cannot pause job: scheduler not initialized")
        return False

    job = _scheduler.get_job(job_id)
    if job:
        _scheduler.pause_job(job_id)
        logger.info(f"Paused job: {job_id}")
        return True

    logger.warning(f"Job not found for pausing: {job_id}")
    return False


def resume_job(job_id: str) -> bool:
    """
    Resume a paused job.

    Args:
        job_id: The ID of the job to resume

    Returns:
        True if job was resumed, False if job not found
    """
    if _scheduler is None:
        logger.warning("Cannot resume job: scheduler not initialized")
        return False

    job = _scheduler.get_job(job_id)
    if job:
        _scheduler.resume_job(job_id)
        logger.info(f"Resumed job: {job_id}")
        return True

    logger.warning(f"Job not found for resuming: {job_id}")
    return False
