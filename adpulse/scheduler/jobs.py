"""AdPulse - Scheduler Jobs.

APScheduler interval job that refreshes the current-period cache for every
eligible tenant. Operator backfills go through
POST /collect/backfill.
"""

from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from adpulse.config import settings
from adpulse.core.logging import get_logger
from adpulse.models.run_models import RunReport
from adpulse.wiring import get_collector

logger = get_logger("scheduler")

scheduler = AsyncIOScheduler()


async def refresh_cache_job() -> Optional[RunReport]:
    """Run one refresh over all tenants; never lets an error escape to APScheduler."""
    logger.info("Scheduled cache refresh starting...")
    try:
        report = await get_collector().refresh_all()
        logger.info(
            f"Scheduled refresh complete: {report.succeeded} collected, {report.failed} failed"
        )
        return report
    except Exception as e:
        logger.error(f"Scheduled refresh failed: {e}", exc_info=True)
        return None


def start_scheduler():
    """Configure and start the scheduler."""
    if not settings.scheduler_enabled:
        logger.info("Scheduler disabled via config")
        return

    scheduler.add_job(
        refresh_cache_job,
        "interval",
        hours=settings.refresh_interval_hours,
        id="refresh_cache",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        misfire_grace_time=3600,
    )
    scheduler.start()
    logger.info(f"Scheduler started. Cache refresh every {settings.refresh_interval_hours}h")


def stop_scheduler():
    """Stop dispatching refresh work and shut the scheduler down."""
    get_collector().cancel()
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
