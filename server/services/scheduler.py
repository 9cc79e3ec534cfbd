"""
Cron Scheduler Service using APScheduler.
Runs the periodic insight extraction and schema-cache warming jobs.
"""
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from typing import Callable, List, Optional

from core.config import Settings
from core.logging import get_logger

logger = get_logger(__name__)

INSIGHTS_JOB_ID = "insights:process-recent"
CACHE_WARM_JOB_ID = "cache:warm-schemas"

_scheduler: Optional[AsyncIOScheduler] = None


def get_scheduler() -> AsyncIOScheduler:
    """Get or create the singleton scheduler instance."""
    global _scheduler
    if _scheduler is None:
        _scheduler = AsyncIOScheduler(timezone="UTC")
    return _scheduler


def start_scheduler():
    """Start the scheduler if not already running."""
    scheduler = get_scheduler()
    if not scheduler.running:
        scheduler.start()
        logger.info("Scheduler started", jobs=[job.id for job in scheduler.get_jobs()])


def shutdown_scheduler():
    """Shutdown the scheduler gracefully."""
    global _scheduler
    if _scheduler is not None and _scheduler.running:
        _scheduler.shutdown(wait=False)
        logger.info("Scheduler shutdown")
    _scheduler = None


def build_cron_trigger(cron_expression: str, timezone: str = "UTC") -> CronTrigger:
    """Build a trigger from a 5-field (minute first) or 6-field (second first) expression."""
    parts = cron_expression.split()

    if len(parts) >= 6:
        return CronTrigger(
            second=parts[0],
            minute=parts[1],
            hour=parts[2],
            day=parts[3],
            month=parts[4],
            day_of_week=parts[5],
            timezone=timezone
        )

    if len(parts) < 5:
        parts.extend(['*'] * (5 - len(parts)))
    return CronTrigger(
        second='0',
        minute=parts[0],
        hour=parts[1],
        day=parts[2],
        month=parts[3],
        day_of_week=parts[4],
        timezone=timezone
    )


def register_cron_job(
    job_id: str,
    cron_expression: str,
    callback: Callable,
    timezone: str = "UTC",
    **kwargs
) -> str:
    """
    Register a cron job with the scheduler.

    Args:
        job_id: Unique identifier for the job
        cron_expression: 5-field or 6-field cron expression
        callback: Async function to call when job fires
        timezone: Timezone for schedule (default: UTC)
        **kwargs: Additional arguments passed to the callback

    Returns:
        The job_id
    """
    scheduler = get_scheduler()
    scheduler.add_job(
        callback,
        trigger=build_cron_trigger(cron_expression, timezone),
        id=job_id,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        kwargs=kwargs
    )

    logger.info("Registered cron job", job_id=job_id, cron=cron_expression)
    return job_id


# =============================================================================
# JOBS
# =============================================================================

async def process_insights_job(limit: Optional[int] = None) -> None:
    """Hourly insight extraction over the most recent meetings."""
    from core.container import container

    try:
        summary = await container.insight_service().process_recent_meetings(limit)
        logger.info("Scheduled insight processing finished",
                    processed_meetings=summary.processed_meetings,
                    total_insights=summary.total_insights)
    except Exception as e:
        logger.error("Scheduled insight processing failed", error=str(e))


async def warm_cache_job(tables: Optional[List[str]] = None) -> None:
    """Re-read schemas of frequently browsed tables into the cache."""
    from core.container import container

    await container.table_browser().warm_schema_cache(tables or [])


def register_default_jobs(settings: Settings) -> List[str]:
    """Register the insight and cache-warming jobs from settings."""
    return [
        register_cron_job(INSIGHTS_JOB_ID, settings.insights_cron, process_insights_job,
                          limit=settings.insights_default_limit),
        register_cron_job(CACHE_WARM_JOB_ID, settings.cache_warm_cron, warm_cache_job,
                          tables=list(settings.cache_warm_tables)),
    ]
