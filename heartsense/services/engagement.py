"""Event log and per-user engagement counters.

``record_event`` is the only writer of ``EngagementStats`` on the hot path: it
locks the user's stats row, bumps the counters and merges the day's
``DailyEngagementLog`` in one transaction, and reports which milestones the
increment crossed. The daily log is the source of truth; rolling windows and
streaks are recomputed from it rather than trusted incrementally.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Mapping, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from heartsense.database import async_session_maker
from heartsense.models import (
    DailyEngagementLog,
    EngagementEvent,
    EngagementStats,
    EntryCategory,
)
from heartsense.services.alerts import AlertKind, create_from_template
from heartsense.services.milestones import MilestoneType, evaluate, process_milestones
from heartsense.services.utils_engagement import (
    _now,
    date_str,
    date_str_days_ago,
    get_or_create_preferences,
    today_str,
)

logger = logging.getLogger(__name__)

WEEK_DAYS = 7
MONTH_DAYS = 30
# one retry covers the race where two first-ever events insert the same rows
_MAX_ATTEMPTS = 2
LEADERBOARD_SIZE = 10


@dataclass(slots=True)
class EventOutcome:
    stats: EngagementStats
    new_milestones: list[MilestoneType] = field(default_factory=list)
    first_event_of_day: bool = False


def _zero_stats(user_id: int, now: datetime) -> EngagementStats:
    return EngagementStats(
        user_id=user_id,
        total_entries_logged=0,
        total_days_active=0,
        last_activity_date=None,
        last_activity_at=None,
        weekly_entry_count=0,
        monthly_entry_count=0,
        current_streak=0,
        longest_streak=0,
        created_at=now,
        updated_at=now,
    )


def _bump_category(log: DailyEngagementLog, category: EntryCategory) -> None:
    if category == EntryCategory.symptom:
        log.symptom_count = (log.symptom_count or 0) + 1
    elif category == EntryCategory.activity:
        log.activity_count = (log.activity_count or 0) + 1
    elif category == EntryCategory.wellbeing:
        log.wellbeing_logged = True
    elif category == EntryCategory.medical_condition:
        log.medical_condition_logged = True


async def _locked_stats(db: AsyncSession, user_id: int) -> EngagementStats | None:
    return (await db.execute(
        select(EngagementStats)
        .where(EngagementStats.user_id == user_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )).scalars().first()


async def _locked_daily_log(db: AsyncSession, user_id: int, day: str) -> DailyEngagementLog | None:
    return (await db.execute(
        select(DailyEngagementLog)
        .where(DailyEngagementLog.user_id == user_id, DailyEngagementLog.date == day)
        .with_for_update()
        .execution_options(populate_existing=True)
    )).scalars().first()


async def _apply_event(
    db: AsyncSession,
    user_id: int,
    category: EntryCategory,
    day: str,
    now: datetime,
    details: Optional[Mapping[str, Any]],
    source_id: Optional[str],
) -> EventOutcome:
    stats = await _locked_stats(db, user_id)
    if stats is None:
        stats = _zero_stats(user_id, now)
        db.add(stats)

    previous_total = stats.total_entries_logged or 0
    previous_days = stats.total_days_active or 0

    stats.total_entries_logged = previous_total + 1
    stats.weekly_entry_count = (stats.weekly_entry_count or 0) + 1
    stats.monthly_entry_count = (stats.monthly_entry_count or 0) + 1

    log = await _locked_daily_log(db, user_id, day)
    first_of_day = log is None
    if first_of_day:
        log = DailyEngagementLog(
            user_id=user_id,
            date=day,
            entry_count=0,
            symptom_count=0,
            activity_count=0,
            wellbeing_logged=False,
            medical_condition_logged=False,
            created_at=now,
        )
        db.add(log)
        stats.total_days_active = previous_days + 1
    log.entry_count = (log.entry_count or 0) + 1
    _bump_category(log, category)
    log.updated_at = now

    # a late event for an earlier day never moves the activity date backwards
    if not stats.last_activity_date or day >= stats.last_activity_date:
        stats.last_activity_date = day
    stats.last_activity_at = now
    stats.updated_at = now

    db.add(EngagementEvent(
        user_id=user_id,
        category=category,
        occurred_on=day,
        source_id=source_id,
        details=dict(details or {}),
        created_at=now,
    ))

    crossed = evaluate(previous_total, stats.total_entries_logged, previous_days, stats.total_days_active)
    return EventOutcome(stats=stats, new_milestones=crossed, first_event_of_day=first_of_day)


async def record_event(
    db: AsyncSession,
    user_id: Optional[int],
    category: EntryCategory | str,
    occurred_on: Optional[str] = None,
    *,
    details: Optional[Mapping[str, Any]] = None,
    source_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> EventOutcome | None:
    """Count one entry for the user and return the stats plus newly crossed milestones.

    Stats, daily log and the event row commit together or not at all. An event
    without a user is dropped with a warning and returns None.
    """
    if not user_id:
        logger.warning("record_event: dropping %s event without a user id", category)
        return None

    category = EntryCategory(category)
    current = now or _now()
    day = occurred_on or today_str(current)

    for attempt in range(1, _MAX_ATTEMPTS + 1):
        try:
            outcome = await _apply_event(db, user_id, category, day, current, details, source_id)
            await db.commit()
            return outcome
        except IntegrityError:
            await db.rollback()
            if attempt == _MAX_ATTEMPTS:
                raise
            logger.info("record_event: concurrent first write for user %s on %s, retrying", user_id, day)
    return None


def _resolve_user_id(entry: Mapping[str, Any]) -> Optional[int]:
    raw = entry.get("userId") or entry.get("user_id")
    if raw in (None, ""):
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


def _resolve_day(entry: Mapping[str, Any]) -> Optional[str]:
    raw = entry.get("occurredAt") or entry.get("occurred_at") or entry.get("occurred_on")
    if isinstance(raw, datetime):
        return date_str(raw)
    if isinstance(raw, date):
        return raw.isoformat()
    if isinstance(raw, str) and len(raw) >= 10:
        try:
            return date.fromisoformat(raw[:10]).isoformat()
        except ValueError:
            return None
    return None


async def ingest_entry(
    entry: Mapping[str, Any],
    category: EntryCategory | str,
    *,
    session_factory=async_session_maker,
    now: Optional[datetime] = None,
) -> EventOutcome | None:
    """Hook for the health-record writers: count a freshly written entry.

    Never raises; engagement tracking must not block the write that produced the entry.
    """
    user_id = _resolve_user_id(entry)
    if not user_id:
        logger.warning("ingest_entry: no userId found in %s entry", category)
        return None

    logger.info("Processing %s entry for user %s", category, user_id)
    try:
        async with session_factory() as db:
            details = entry.get("details") if isinstance(entry.get("details"), Mapping) else {}
            outcome = await record_event(
                db,
                user_id,
                category,
                _resolve_day(entry),
                details=details,
                source_id=str(entry["id"]) if entry.get("id") is not None else None,
                now=now,
            )
            if outcome is None:
                return None
            logger.info(
                "Updated engagement stats for user %s: total=%s days_active=%s",
                user_id,
                outcome.stats.total_entries_logged,
                outcome.stats.total_days_active,
            )
            await process_milestones(db, user_id, outcome.new_milestones)
            return outcome
    except Exception:  # noqa: BLE001
        logger.exception("ingest_entry: failed to update engagement for user %s", user_id)
        return None


async def on_user_created(db: AsyncSession, user_id: int, *, now: Optional[datetime] = None) -> EngagementStats:
    """Zero-valued stats, default preferences and a welcome alert for a new account."""
    current = now or _now()
    stats = await db.get(EngagementStats, user_id)
    if stats is None:
        stats = _zero_stats(user_id, current)
        db.add(stats)
    await get_or_create_preferences(db, user_id)
    await create_from_template(db, user_id, AlertKind.welcome, now=current)
    await db.commit()
    logger.info("Engagement stats initialized for user %s", user_id)
    return stats


# ---------------------------
# Recomputation from the daily log
# ---------------------------
async def sum_entries_since(db: AsyncSession, user_id: int, start_day: str, end_day: str) -> int:
    total = await db.scalar(
        select(func.coalesce(func.sum(DailyEngagementLog.entry_count), 0)).where(
            DailyEngagementLog.user_id == user_id,
            DailyEngagementLog.date >= start_day,
            DailyEngagementLog.date <= end_day,
        )
    )
    return int(total or 0)


async def recompute_rolling_windows(
    db: AsyncSession, user_id: int, *, now: Optional[datetime] = None
) -> tuple[int, int]:
    """Weekly (today and the 6 days before) and monthly (30 days) entry counts."""
    current = now or _now()
    today = today_str(current)
    weekly = await sum_entries_since(db, user_id, date_str_days_ago(WEEK_DAYS - 1, current), today)
    monthly = await sum_entries_since(db, user_id, date_str_days_ago(MONTH_DAYS - 1, current), today)
    return weekly, monthly


async def refresh_rolling_windows(
    db: AsyncSession, user_id: int, *, now: Optional[datetime] = None
) -> EngagementStats | None:
    """Persist recomputed windows onto the stats row when they drifted."""
    stats = await db.get(EngagementStats, user_id)
    if stats is None:
        return None
    weekly, monthly = await recompute_rolling_windows(db, user_id, now=now)
    if weekly != stats.weekly_entry_count or monthly != stats.monthly_entry_count:
        stats.weekly_entry_count = weekly
        stats.monthly_entry_count = monthly
        stats.updated_at = now or _now()
        await db.commit()
    return stats


async def get_stats(db: AsyncSession, user_id: int, *, now: Optional[datetime] = None) -> EngagementStats:
    stats = await refresh_rolling_windows(db, user_id, now=now)
    if stats is None:
        stats = _zero_stats(user_id, now or _now())
        db.add(stats)
        await db.commit()
    return stats


def compute_streaks(days: list[str], today: str) -> tuple[int, int]:
    """(current, longest) runs of consecutive days in an ascending date list.

    The current streak only counts if the last active day is today or yesterday.
    """
    longest = run = 0
    previous: Optional[date] = None
    for raw in days:
        current = date.fromisoformat(raw)
        if previous is not None and (current - previous).days == 1:
            run += 1
        elif previous is None or current != previous:
            run = 1
        longest = max(longest, run)
        previous = current
    if previous is None:
        return 0, 0
    gap = (date.fromisoformat(today) - previous).days
    return (run if gap in (0, 1) else 0), longest


async def recalculate_stats(db: AsyncSession, user_id: int, *, now: Optional[datetime] = None) -> EngagementStats:
    """Rebuild every counter, streaks included, from the user's daily log."""
    current = now or _now()
    logs = (await db.execute(
        select(DailyEngagementLog)
        .where(DailyEngagementLog.user_id == user_id)
        .order_by(DailyEngagementLog.date.asc())
    )).scalars().all()

    days = [log.date for log in logs if (log.entry_count or 0) > 0]
    current_streak, longest_streak = compute_streaks(days, today_str(current))
    weekly, monthly = await recompute_rolling_windows(db, user_id, now=current)

    stats = await _locked_stats(db, user_id)
    if stats is None:
        stats = _zero_stats(user_id, current)
        db.add(stats)
    stats.total_entries_logged = sum(log.entry_count or 0 for log in logs)
    stats.total_days_active = len(days)
    stats.last_activity_date = days[-1] if days else None
    stats.current_streak = current_streak
    stats.longest_streak = longest_streak
    stats.weekly_entry_count = weekly
    stats.monthly_entry_count = monthly
    stats.updated_at = current
    await db.commit()
    return stats


async def daily_history(
    db: AsyncSession, user_id: int, days: int = 30, *, now: Optional[datetime] = None
) -> list[tuple[str, int]]:
    """(date, entry_count) pairs for charting, oldest first."""
    start = date_str_days_ago(max(days, 1) - 1, now)
    rows = (await db.execute(
        select(DailyEngagementLog.date, DailyEngagementLog.entry_count)
        .where(DailyEngagementLog.user_id == user_id, DailyEngagementLog.date >= start)
        .order_by(DailyEngagementLog.date.asc())
    )).all()
    return [(d, int(c or 0)) for d, c in rows]


# ---------------------------
# Leaderboard
# ---------------------------
@dataclass(slots=True)
class LeaderboardRow:
    rank: int
    value: int
    is_current_user: bool


@dataclass(slots=True)
class Leaderboard:
    top_streaks: list[LeaderboardRow]
    top_entries: list[LeaderboardRow]
    streak_rank: int
    entries_rank: int


async def _top(db: AsyncSession, column, user_id: int, size: int) -> list[LeaderboardRow]:
    rows = (await db.execute(
        select(EngagementStats.user_id, column)
        .order_by(column.desc(), EngagementStats.user_id.asc())
        .limit(size)
    )).all()
    return [LeaderboardRow(i, int(value or 0), uid == user_id) for i, (uid, value) in enumerate(rows, start=1)]


async def _rank(db: AsyncSession, column, value: int) -> int:
    higher = await db.scalar(select(func.count(EngagementStats.user_id)).where(column > value))
    return int(higher or 0) + 1


async def leaderboard(
    db: AsyncSession, user_id: int, *, size: int = LEADERBOARD_SIZE, now: Optional[datetime] = None
) -> Leaderboard:
    """Anonymous top lists by current streak and by total entries, plus the caller's ranks.

    A rank is one more than the number of users strictly ahead, so ties share a rank.
    """
    stats = await get_stats(db, user_id, now=now)
    return Leaderboard(
        top_streaks=await _top(db, EngagementStats.current_streak, user_id, size),
        top_entries=await _top(db, EngagementStats.total_entries_logged, user_id, size),
        streak_rank=await _rank(db, EngagementStats.current_streak, stats.current_streak or 0),
        entries_rank=await _rank(db, EngagementStats.total_entries_logged, stats.total_entries_logged or 0),
    )


__all__ = [
    "EventOutcome",
    "record_event",
    "ingest_entry",
    "on_user_created",
    "recompute_rolling_windows",
    "refresh_rolling_windows",
    "get_stats",
    "compute_streaks",
    "recalculate_stats",
    "daily_history",
    "leaderboard",
]
