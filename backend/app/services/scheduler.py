"""
Background Job Scheduler.

WHAT: Configures and manages APScheduler for background tasks.

WHY: The expiry sweep has to run without any request arriving: cancelled
subscriptions lapse silently, and Paystack sends no event on the day a
paid period ends.

HOW: Uses APScheduler with AsyncIOScheduler for async job support and a
memory job store. The sweep is idempotent, so a restart that loses the
schedule only delays the next run.

Example:
    # In main.py startup:
    from app.services.scheduler import start_scheduler, shutdown_scheduler

    @app.on_event("startup")
    async def startup():
        await start_scheduler()

    @app.on_event("shutdown")
    async def shutdown():
        await shutdown_scheduler()
"""

import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.core.config import settings
from app.services.subscription_expiry import SubscriptionExpiryService, get_expiry_service


logger = logging.getLogger(__name__)


EXPIRY_SWEEP_JOB_ID = "subscription_expiry_sweep"

# Global scheduler instance
_scheduler: Optional[AsyncIOScheduler] = None


def get_scheduler() -> Optional[AsyncIOScheduler]:
    """Get the global scheduler instance."""
    return _scheduler


async def start_scheduler() -> None:
    """
    Start the background job scheduler.

    HOW:
    1. Creates AsyncIOScheduler with memory job store
    2. Registers the expiry sweep job (unless disabled in settings)
    3. Starts the scheduler

    Note: Call this from FastAPI startup event.
    """
    global _scheduler

    if _scheduler is not None and _scheduler.running:
        logger.warning("Scheduler already running")
        return

    jobstores = {
        "default": MemoryJobStore()
    }

    executors = {
        "default": AsyncIOExecutor()
    }

    job_defaults = {
        "coalesce": True,  # Combine multiple missed runs into one
        "max_instances": 1,  # Only one sweep at a time
        "misfire_grace_time": 3600,  # A sweep an hour late is still useful
    }

    _scheduler = AsyncIOScheduler(
        jobstores=jobstores,
        executors=executors,
        job_defaults=job_defaults,
        timezone="UTC",
    )

    if settings.SUBSCRIPTION_SWEEP_ENABLED:
        _register_expiry_sweep_job()
    else:
        logger.info("Subscription expiry sweep disabled by configuration")

    _scheduler.start()
    logger.info("Scheduler started")


def _register_expiry_sweep_job() -> None:
    """
    Register the daily expiry sweep.

    HOW: Runs SubscriptionExpiryService.sweep once a day at
    SUBSCRIPTION_SWEEP_HOUR:SUBSCRIPTION_SWEEP_MINUTE UTC.
    """
    global _scheduler

    if _scheduler is None:
        logger.error("Cannot register job: scheduler not initialized")
        return

    expiry_service = get_expiry_service()

    _scheduler.add_job(
        func=expiry_service.sweep,
        trigger=CronTrigger(
            hour=settings.SUBSCRIPTION_SWEEP_HOUR,
            minute=settings.SUBSCRIPTION_SWEEP_MINUTE,
            timezone="UTC",
        ),
        id=EXPIRY_SWEEP_JOB_ID,
        name="Subscription Expiry Sweep",
        replace_existing=True,
    )

    logger.info(
        f"Registered subscription expiry sweep "
        f"(daily at {settings.SUBSCRIPTION_SWEEP_HOUR:02d}:{settings.SUBSCRIPTION_SWEEP_MINUTE:02d} UTC, "
        f"grace {expiry_service.grace_days} days)"
    )


async def shutdown_scheduler() -> None:
    """
    Shut down the background job scheduler.

    Note: Call this from FastAPI shutdown event.
    """
    global _scheduler

    if _scheduler is None:
        logger.info("Scheduler not running")
        return

    if not _scheduler.running:
        logger.info("Scheduler already stopped")
        return

    logger.info("Shutting down scheduler...")
    _scheduler.shutdown(wait=True)
    _scheduler = None
    logger.info("Scheduler shut down successfully")


async def run_expiry_sweep_now(session_factory: Optional[async_sessionmaker] = None) -> int:
    """
    Run the expiry sweep immediately.

    WHY: Lets staff apply downgrades without waiting for the daily run,
    e.g. after fixing a misconfigured plan code.

    Args:
        session_factory: Session factory to sweep with (defaults to the
            scheduled service's)

    Returns:
        Number of subscribers downgraded
    """
    if session_factory is None:
        return await get_expiry_service().sweep()
    return await SubscriptionExpiryService(session_factory=session_factory).sweep()


def get_scheduler_status() -> dict:
    """
    Get scheduler status information.

    Returns:
        Dict with scheduler status and job details
    """
    global _scheduler

    if _scheduler is None:
        return {
            "running": False,
            "jobs": [],
            "message": "Scheduler not initialized",
        }

    jobs = []
    for job in _scheduler.get_jobs():
        jobs.append({
            "id": job.id,
            "name": job.name,
            "next_run_time": str(job.next_run_time) if job.next_run_time else None,
            "trigger": str(job.trigger),
        })

    return {
        "running": _scheduler.running,
        "jobs": jobs,
        "message": "Scheduler is running" if _scheduler.running else "Scheduler is paused",
    }
