import logging
from datetime import datetime
from zoneinfo import ZoneInfo

from apscheduler.events import EVENT_JOB_ERROR
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from samay_server.api_service.core.settings import settings
from samay_server.processing_service.runner import JobRunner

log = logging.getLogger(__name__)

# APScheduler logs every execution at INFO
for _name in ("apscheduler.scheduler", "apscheduler.executors.default"):
    logging.getLogger(_name).setLevel(logging.WARNING)


def _on_job_error(event) -> None:
    log.error(f"Scheduled job '{event.job_id}' raised: {event.exception!r}")


def build_scheduler(runner: JobRunner) -> AsyncIOScheduler:
    """Registers the merge, tagging and insight jobs on their cron schedules."""
    scheduler = AsyncIOScheduler(timezone=settings.REFERENCE_TZ)
    schedules = {
        "merge": settings.MERGE_CRON,
        "tagging": settings.TAGGING_CRON,
        "insights": settings.INSIGHTS_CRON,
    }
    for name, cron in schedules.items():
        job_kwargs = {}
        if name == "insights" and settings.INSIGHTS_RUN_ON_STARTUP:
            job_kwargs["next_run_time"] = datetime.now(ZoneInfo(settings.REFERENCE_TZ))
        scheduler.add_job(
            runner.run,
            trigger=CronTrigger.from_crontab(cron, timezone=settings.REFERENCE_TZ),
            args=[name],
            id=name,
            max_instances=1,  # Guard against overlaps
            misfire_grace_time=600,
            coalesce=True,
            **job_kwargs,
        )
    scheduler.add_listener(_on_job_error, EVENT_JOB_ERROR)
    log.info(f"Scheduler initialised with {len(scheduler.get_jobs())} job(s)")
    return scheduler
