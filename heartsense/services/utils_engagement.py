# heartsense/services/utils_engagement.py
from datetime import date, datetime, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from heartsense.models import NotificationPreferences, utcnow


def _now() -> datetime:
    # Return naive UTC to match DB columns (TIMESTAMP WITHOUT TIME ZONE)
    return utcnow()


def date_str(d: date | datetime) -> str:
    if isinstance(d, datetime):
        d = d.date()
    return d.isoformat()


def today_str(now: Optional[datetime] = None) -> str:
    return date_str(now or _now())


def date_str_days_ago(days: int, now: Optional[datetime] = None) -> str:
    return date_str((now or _now()) - timedelta(days=days))


def start_of_day(now: Optional[datetime] = None) -> datetime:
    n = now or _now()
    return datetime(n.year, n.month, n.day)


def start_of_week(now: Optional[datetime] = None) -> datetime:
    """Monday 00:00 of the ISO week containing `now`."""
    day = start_of_day(now)
    return day - timedelta(days=day.weekday())


def days_since(day: str, now: Optional[datetime] = None) -> Optional[int]:
    """Whole calendar days between a YYYY-MM-DD string and `now` (None if unparseable)."""
    try:
        then = date.fromisoformat(day)
    except (TypeError, ValueError):
        return None
    return ((now or _now()).date() - then).days


async def get_preferences(db: AsyncSession, user_id: int) -> NotificationPreferences | None:
    return (await db.execute(
        select(NotificationPreferences).where(NotificationPreferences.user_id == user_id)
    )).scalars().first()


async def get_or_create_preferences(db: AsyncSession, user_id: int) -> NotificationPreferences:
    prefs = await get_preferences(db, user_id)
    if prefs:
        return prefs
    prefs = NotificationPreferences(user_id=user_id)
    db.add(prefs)
    await db.flush()
    return prefs


def wants(prefs: NotificationPreferences | None, flag: str) -> bool:
    """A missing preferences row or unset flag means the user gets notified."""
    if prefs is None:
        return True
    return getattr(prefs, flag, None) is not False
