"""
KQ Alumni Approval Service - Main Application Entry Point

This module initializes and configures the FastAPI application including:
- Logging
- Database connection
- Background job scheduler (automatic approval processing)
- Job control endpoints
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException

from kq_alumni.core.config import settings
from kq_alumni.core.database import close_db, init_db
from kq_alumni.core.logging import configure_logging
from kq_alumni.core.scheduler import (
    clear_job_registry,
    list_registered_jobs,
    pause_job,
    resolve_timezone,
    resume_job,
    start_scheduler,
    stop_scheduler,
    trigger_job_manually,
)
from kq_alumni.modules.registrations.jobs import (
    cancel_running_jobs,
    register_registration_jobs,
    wait_for_running_jobs,
)


async def shutdown_background_jobs() -> None:
    """
    Stop background jobs without losing work in progress.

    A running approval batch finishes its current registration and commits
    before the scheduler stops. Stopping the scheduler cancels any task still
    running.
    """
    cancel_running_jobs()
    await wait_for_running_jobs(timeout=settings.background_jobs.shutdown_timeout_seconds)
    await stop_scheduler()
    clear_job_registry()


@asynccontextmanager
async def lifespan(_app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown events including:
    - Database connection
    - Background job scheduler
    """
    # Startup
    configure_logging(settings.log_level)
    print(f"Starting KQ Alumni approval service in {settings.python_env} mode...")

    # Initialize Database
    try:
        await init_db()
        print("[OK] Database connected")
    except Exception as e:
        print(f"[FAIL] Database connection failed: {e}")
        if settings.is_production:
            raise

    # Initialize Background Job Scheduler
    job_settings = settings.background_jobs
    if job_settings.enabled:
        try:
            # Register jobs before starting the scheduler
            register_registration_jobs(job_settings)

            await start_scheduler(timezone=resolve_timezone(job_settings.time_zone))
            print("[OK] Background scheduler started")
        except Exception as e:
            print(f"[FAIL] Background scheduler failed to start: {e}")
            if settings.is_production:
                raise
    else:
        print("[SKIP] Background jobs disabled")

    yield  # Application runs here

    # Shutdown
    print("Shutting down KQ Alumni approval service...")

    await shutdown_background_jobs()
    print("[OK] Background scheduler stopped")

    await close_db()
    print("[OK] Cleanup complete")


app = FastAPI(
    title="KQ Alumni Approval Service",
    description="Automatic ERP validation and approval of Kenya Airways alumni registrations",
    version="0.1.0",
    docs_url="/docs" if settings.is_development else None,
    redoc_url="/redoc" if settings.is_development else None,
    lifespan=lifespan,
)


# ============================================
# Background Job Control Endpoints
# ============================================
# In production the approval job runs automatically on schedule. These
# endpoints allow inspecting, triggering, pausing and resuming it.


@app.get("/debug/jobs", tags=["Jobs"])
async def list_jobs():
    """
    List all registered background jobs and their status.

    Returns:
        List of job information including next run time and pause status.
    """
    return {"jobs": list_registered_jobs()}


@app.post("/debug/jobs/{job_id}/trigger", tags=["Jobs"])
async def trigger_job(job_id: str):
    """
    Manually trigger a background job.

    This runs the job immediately, bypassing the normal schedule.

    Args:
        job_id: The ID of the job to trigger. Available jobs:
            - registrations_approval_processing

    Returns:
        Job execution result including status and any errors.

    Raises:
        HTTPException 400: If job_id is not found.
    """
    try:
        return await trigger_job_manually(job_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


@app.post("/debug/jobs/{job_id}/pause", tags=["Jobs"])
async def pause_job_endpoint(job_id: str):
    """
    Pause a scheduled background job.

    The job will stop running on schedule but remains registered.
    Use /debug/jobs/{job_id}/resume to restart it.
    """
    success = pause_job(job_id)
    return {"job_id": job_id, "paused": success}


@app.post("/debug/jobs/{job_id}/resume", tags=["Jobs"])
async def resume_job_endpoint(job_id: str):
    """Resume a paused background job."""
    success = resume_job(job_id)
    return {"job_id": job_id, "resumed": success}
