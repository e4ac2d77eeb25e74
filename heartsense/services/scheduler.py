# heartsense/services/scheduler.py
import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from heartsense.services.passes import (
    cleanup_pass,
    daily_reminder_pass,
    health_sync_pass,
    inactivity_pass,
    insights_pass,
    monthly_recap_pass,
    rolling_window_pass,
)
from heartsense.settings.config import settings
try:
    from zoneinfo import ZoneInfo  # Python 3.9+
except Exception:
    ZoneInfo = None  # Fallback handled below

scheduler: AsyncIOScheduler | None = None
logger = logging.getLogger(__name__)

# (job id, pass, settings attribute holding the crontab, default crontab)
JOBS = (
    ("daily_reminder", daily_reminder_pass, "DAILY_REMINDER_CRON", "0 9 * * *"),
    ("inactivity", inactivity_pass, "INACTIVITY_CRON", "0 18 * * *"),
    ("rolling_windows", rolling_window_pass, "ROLLING_WINDOW_CRON", "0 2 * * *"),
    ("monthly_recap", monthly_recap_pass, "MONTHLY_RECAP_CRON", "0 1 1 * *"),
    ("cleanup", cleanup_pass, "CLEANUP_CRON", "0 3 * * *"),
    ("health_sync", health_sync_pass, "HEALTH_SYNC_CRON", "0 10 * * *"),
    # APScheduler numbers weekdays from Monday, so name the day
    ("insights", insights_pass, "INSIGHTS_CRON", "0 11 * * wed"),
)


def _pick_tz(name: str | None):
    tz = None
    if ZoneInfo and name:
        try:
            tz = ZoneInfo(name)
        except Exception:
            # Fallbacks if tzdata doesn't have the key
            try:
                tz = ZoneInfo("Etc/UTC")
            except Exception:
                tz = None  # Let APScheduler use its default
    return tz


def build_trigger(cron_expr: str | None, default: str, tz=None) -> CronTrigger:
    """Crontab trigger for `cron_expr`; an empty or invalid expression falls back to `default`."""
    expr = (cron_expr or "").strip()
    if expr:
        try:
            return CronTrigger.from_crontab(expr, timezone=tz)
        except ValueError:
            logger.warning("Invalid crontab '%s'; falling back to '%s'", expr, default)
    return CronTrigger.from_crontab(default, timezone=tz)


def start_scheduler() -> AsyncIOScheduler:
    global scheduler
    if scheduler:
        return scheduler
    tz = _pick_tz(settings.APP_TZ)
    scheduler = AsyncIOScheduler(timezone=tz)

    for job_id, func, attr, default in JOBS:
        expr = getattr(settings, attr, None)
        scheduler.add_job(
            func,
            build_trigger(expr, default, tz),
            id=job_id,
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )
        logger.info("Scheduled %s with '%s' tz=%s", job_id, expr or default, settings.APP_TZ)

    scheduler.start()
    logger.info("Engagement scheduler started")
    return scheduler


def shutdown_scheduler() -> None:
    global scheduler
    if scheduler:
        scheduler.shutdown(wait=False)
        scheduler = None
