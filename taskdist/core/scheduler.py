"""Periodic scheduler for the distribution tick."""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from taskdist.core.config import constants, settings
from taskdist.core.scheduler_tracker import retry_job_with_backoff
from taskdist.services.template_scheduler import distribution_tick


logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler = AsyncIOScheduler()


async def run_distribution_tick() -> None:
    """Run one tick with retries and job tracking."""
    await retry_job_with_backoff(distribution_tick, constants.TICK_JOB_ID)


def start_scheduler() -> None:
    """Register the distribution tick and start the scheduler.

    This should be called during FastAPI app startup.
    """
    if not settings.scheduler_enabled:
        logger.info("Scheduler disabled by configuration")
        return

    logger.info("Starting scheduler")

    # A slow tick is never overlapped by the next one, and missed runs collapse into one
    scheduler.add_job(
        run_distribution_tick,
        trigger=IntervalTrigger(minutes=settings.scheduler_interval_minutes),
        id=constants.TICK_JOB_ID,
        name="Distribute Template Tasks",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    logger.info("Scheduled distribution tick: every %d minutes", settings.scheduler_interval_minutes)

    scheduler.start()
    logger.info("Scheduler started successfully")


def stop_scheduler() -> None:
    """Stop the scheduler.

    This should be called during FastAPI app shutdown.
    """
    if not scheduler.running:
        return
    logger.info("Stopping scheduler")
    scheduler.shutdown(wait=False)
    logger.info("Scheduler stopped")
