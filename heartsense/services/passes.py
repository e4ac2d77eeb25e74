"""Scheduled scans over all users.

Each pass selects its candidate users up front, then handles every user in a
fresh session inside its own try/except: one broken user is logged and
counted, never fatal to the rest of the scan. Alert-producing passes check for
an existing alert of the same kind inside the window before writing, so
running a pass twice does not double-notify.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Iterable, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from heartsense.database import async_session_maker
from heartsense.models import AlertType, EngagementStats, HealthSample, User
from heartsense.services.alerts import AlertKind, create_from_template, has_recent_alert, purge_expired
from heartsense.services.engagement import refresh_rolling_windows
from heartsense.services.insights import generate_insights_for_user
from heartsense.services.utils_engagement import (
    _now,
    date_str_days_ago,
    days_since,
    get_preferences,
    start_of_day,
    today_str,
    wants,
)
from heartsense.settings.config import settings

logger = logging.getLogger(__name__)

UserHandler = Callable[[AsyncSession, int], Awaitable[int]]


@dataclass(slots=True)
class PassSummary:
    name: str
    users_scanned: int = 0
    alerts_created: int = 0
    errors: int = 0
    extra: dict[str, Any] = field(default_factory=dict)


async def _for_each_user(
    name: str,
    user_ids: Iterable[int],
    handler: UserHandler,
    session_factory,
) -> PassSummary:
    summary = PassSummary(name)
    for user_id in user_ids:
        summary.users_scanned += 1
        try:
            async with session_factory() as db:
                summary.alerts_created += await handler(db, user_id)
        except Exception:  # noqa: BLE001
            summary.errors += 1
            logger.exception("%s: failed for user %s", name, user_id)
    logger.info(
        "%s complete: scanned=%s alerts=%s errors=%s",
        name, summary.users_scanned, summary.alerts_created, summary.errors,
    )
    return summary


async def _ids(session_factory, stmt) -> list[int]:
    async with session_factory() as db:
        return list((await db.execute(stmt)).scalars().all())


def _active_users():
    return select(User.id).where(User.is_active.is_(True)).order_by(User.id)


def _users_with_stats():
    return select(EngagementStats.user_id).order_by(EngagementStats.user_id)


# ---------------------------
# Daily reminder (09:00)
# ---------------------------
async def daily_reminder_pass(*, session_factory=async_session_maker, now: Optional[datetime] = None) -> PassSummary:
    current = now or _now()
    today = today_str(current)
    since = start_of_day(current)

    async def handle(db: AsyncSession, user_id: int) -> int:
        if not wants(await get_preferences(db, user_id), "notify_daily_reminder"):
            return 0
        stats = await db.get(EngagementStats, user_id)
        if stats is not None and stats.last_activity_date == today:
            return 0
        if await has_recent_alert(db, user_id, AlertType.inactivity_warning, since, now=current):
            return 0
        await create_from_template(db, user_id, AlertKind.daily_reminder, now=current)
        await db.commit()
        return 1

    return await _for_each_user("daily_reminder", await _ids(session_factory, _active_users()), handle, session_factory)


# ---------------------------
# Inactivity (18:00)
# ---------------------------
async def inactivity_pass(
    *,
    session_factory=async_session_maker,
    now: Optional[datetime] = None,
    threshold_days: Optional[int] = None,
) -> PassSummary:
    current = now or _now()
    threshold = threshold_days if threshold_days is not None else settings.INACTIVITY_THRESHOLD_DAYS
    cutoff = date_str_days_ago(threshold, current)
    stmt = (
        select(EngagementStats.user_id)
        .where(
            EngagementStats.last_activity_date.is_not(None),
            EngagementStats.last_activity_date <= cutoff,
        )
        .order_by(EngagementStats.user_id)
    )

    async def handle(db: AsyncSession, user_id: int) -> int:
        if not wants(await get_preferences(db, user_id), "notify_daily_reminder"):
            return 0
        if await has_recent_alert(
            db, user_id, AlertType.inactivity_warning, current - timedelta(hours=24), now=current
        ):
            return 0
        stats = await db.get(EngagementStats, user_id)
        inactive = days_since(stats.last_activity_date, current) if stats else None
        if inactive is None or inactive < threshold:
            return 0
        await create_from_template(
            db,
            user_id,
            AlertKind.inactivity,
            meta={"daysInactive": inactive, "lastActivityDate": stats.last_activity_date},
            now=current,
            days_inactive=inactive,
        )
        await db.commit()
        return 1

    return await _for_each_user("inactivity", await _ids(session_factory, stmt), handle, session_factory)


# ---------------------------
# Rolling windows (02:00)
# ---------------------------
async def rolling_window_pass(*, session_factory=async_session_maker, now: Optional[datetime] = None) -> PassSummary:
    async def handle(db: AsyncSession, user_id: int) -> int:
        await refresh_rolling_windows(db, user_id, now=now)
        return 0

    return await _for_each_user("rolling_windows", await _ids(session_factory, _users_with_stats()), handle, session_factory)


# ---------------------------
# Monthly recap (1st of month, 01:00)
# ---------------------------
async def monthly_recap_pass(*, session_factory=async_session_maker, now: Optional[datetime] = None) -> PassSummary:
    current = now or _now()
    month_start = datetime(current.year, current.month, 1)

    async def handle(db: AsyncSession, user_id: int) -> int:
        created = 0
        stats = await db.get(EngagementStats, user_id)
        if stats is None:
            return 0
        prefs = await get_preferences(db, user_id)
        if wants(prefs, "notify_health_insights") and not await has_recent_alert(
            db, user_id, AlertType.health_insight, month_start, kind=AlertKind.monthly_recap, now=current
        ):
            await create_from_template(
                db,
                user_id,
                AlertKind.monthly_recap,
                meta={
                    "monthlyEntryCount": stats.monthly_entry_count,
                    "totalDaysActive": stats.total_days_active,
                },
                now=current,
                monthly_entry_count=stats.monthly_entry_count,
                total_days_active=stats.total_days_active,
            )
            await db.commit()
            created = 1
        # the monthly counter restarts from the daily log rather than from zero
        await refresh_rolling_windows(db, user_id, now=current)
        return created

    return await _for_each_user("monthly_recap", await _ids(session_factory, _users_with_stats()), handle, session_factory)


# ---------------------------
# Cleanup (03:00)
# ---------------------------
async def cleanup_pass(
    *,
    session_factory=async_session_maker,
    now: Optional[datetime] = None,
    batch_size: Optional[int] = None,
) -> PassSummary:
    summary = PassSummary("cleanup")
    try:
        async with session_factory() as db:
            deleted, batches = await purge_expired(
                db, batch_size=batch_size or settings.CLEANUP_BATCH_SIZE, now=now
            )
    except Exception:  # noqa: BLE001
        summary.errors += 1
        logger.exception("cleanup: purge of expired alerts failed")
        return summary
    summary.extra = {"deleted": deleted, "batches": batches}
    logger.info("cleanup complete: deleted %s expired alerts in %s batches", deleted, batches)
    return summary


# ---------------------------
# Health data sync staleness (10:00)
# ---------------------------
async def health_sync_pass(*, session_factory=async_session_maker, now: Optional[datetime] = None) -> PassSummary:
    current = now or _now()
    stale_before = current - timedelta(hours=settings.HEALTH_SYNC_STALE_HOURS)
    since = start_of_day(current)
    stmt = select(HealthSample.user_id).group_by(HealthSample.user_id).order_by(HealthSample.user_id)

    async def handle(db: AsyncSession, user_id: int) -> int:
        if not wants(await get_preferences(db, user_id), "notify_health_insights"):
            return 0
        last_sync = await db.scalar(
            select(func.max(HealthSample.synced_at)).where(HealthSample.user_id == user_id)
        )
        if last_sync is None or last_sync >= stale_before:
            return 0
        if await has_recent_alert(
            db, user_id, AlertType.health_insight, since, kind=AlertKind.sync_reminder, now=current
        ):
            return 0
        days = (current - last_sync) // timedelta(days=1)
        await create_from_template(
            db,
            user_id,
            AlertKind.sync_reminder,
            meta={"lastSyncTime": last_sync.isoformat(), "daysSinceSync": days},
            now=current,
            days_since_sync=days,
            plural="" if days == 1 else "s",
        )
        await db.commit()
        return 1

    return await _for_each_user("health_sync", await _ids(session_factory, stmt), handle, session_factory)


# ---------------------------
# Weekly insights (Wednesday 11:00)
# ---------------------------
async def insights_pass(*, session_factory=async_session_maker, now: Optional[datetime] = None) -> PassSummary:
    async def handle(db: AsyncSession, user_id: int) -> int:
        if not wants(await get_preferences(db, user_id), "notify_health_insights"):
            return 0
        return len(await generate_insights_for_user(db, user_id, now=now))

    return await _for_each_user("insights", await _ids(session_factory, _users_with_stats()), handle, session_factory)


PASSES: dict[str, Callable[..., Awaitable[PassSummary]]] = {
    "daily_reminder": daily_reminder_pass,
    "inactivity": inactivity_pass,
    "rolling_windows": rolling_window_pass,
    "monthly_recap": monthly_recap_pass,
    "cleanup": cleanup_pass,
    "health_sync": health_sync_pass,
    "insights": insights_pass,
}
