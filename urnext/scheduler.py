from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from datetime import datetime
from typing import Optional
import logging

from urnext.config import settings

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()


def get_next_run_time() -> Optional[datetime]:
    """Get the next scheduled sweep time."""
    jobs = scheduler.get_jobs()
    if scheduler.running and jobs:
        return jobs[0].next_run_time
    return None


async def scheduled_dispatch():
    """Run the invite email sweep."""
    from urnext.services.dispatcher import dispatch_unsent_invites
    logger.info("Starting scheduled invite dispatch")
    await dispatch_unsent_invites()


def update_schedule(minutes: int):
    """Replace the sweep job with one running every ``minutes``."""
    scheduler.remove_all_jobs()

    if minutes <= 0:
        logger.info("Invite sweep disabled")
        return

    trigger = IntervalTrigger(minutes=minutes)
    scheduler.add_job(scheduled_dispatch, trigger, id="urnext_invite_sweep")
    logger.info(f"Scheduled invite sweep every {minutes} minute(s)")


def start_scheduler():
    """Start the scheduler."""
    if not scheduler.running:
        scheduler.start()
        logger.info("Scheduler started")
    update_schedule(settings.invite_sweep_minutes)


def stop_scheduler():
    """Stop the scheduler."""
    if scheduler.running:
        scheduler.shutdown()
        logger.info("Scheduler stopped")
