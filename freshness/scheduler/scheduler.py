import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from freshness.core.config import Config

logger = logging.getLogger(__name__)

FANOUT_JOB_ID = "flight_status_fanout"


async def fanout_job(fanout) -> None:
    """
    Scheduler job for one fan-out run.
    Errors are logged here so a bad run never kills the scheduler.
    """
    try:
        logger.info("[Scheduler] Starting flight status fan-out")
        report = await fanout.run()
        logger.info("[Scheduler] Fan-out finished: %s (%d owner call(s))", report.status, report.calls)
    except Exception:
        logger.exception("[Scheduler] Flight status fan-out crashed")


def start_scheduler(fanout, scheduler: Optional[AsyncIOScheduler] = None) -> AsyncIOScheduler:
    """Register the fan-out job and start the scheduler on the running loop."""
    scheduler = scheduler or AsyncIOScheduler(timezone="UTC")
    minutes = int(Config.get("fanout", "interval_minutes", default=15))

    scheduler.add_job(
        fanout_job,
        IntervalTrigger(minutes=minutes),
        args=[fanout],
        id=FANOUT_JOB_ID,
        max_instances=1,
        coalesce=True,
        misfire_grace_time=300,
        replace_existing=True,
    )
    if not scheduler.running:
        scheduler.start()
    logger.info("Flight status fan-out scheduled every %d minutes", minutes)
    return scheduler


def stop_scheduler(scheduler: AsyncIOScheduler) -> None:
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Flight status fan-out scheduler stopped")
