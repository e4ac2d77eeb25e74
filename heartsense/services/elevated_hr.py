"""Elevated heart rate check with a per-user cooldown.

The notification goes straight to the user's device; it is not stored as an
in-app alert. The cooldown lives in ``heartsense.cooldown``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from heartsense.cooldown import CooldownStore, get_cooldown_store
from heartsense.database import async_session_maker
from heartsense.services.push import NotificationDispatcher, get_dispatcher
from heartsense.services.utils_engagement import _now, get_preferences
from heartsense.services.wearables import WearableProvider, latest_heart_rate
from heartsense.settings.config import settings

logger = logging.getLogger(__name__)

TITLE = "Elevated Heart Rate Detected"
SCREEN = "symptom-entry"


@dataclass(slots=True)
class ElevatedCheckResult:
    is_elevated: bool
    heart_rate_bpm: Optional[float]
    threshold: int
    notification_sent: bool = False
    suppressed: bool = False
    push_error: Optional[str] = None


def _message(bpm: float) -> str:
    return f"Your heart rate is {bpm:g} bpm. Would you like to log a symptom?"


async def get_threshold(
    user_id: int, *, db: Optional[AsyncSession] = None, session_factory=None
) -> tuple[int, Optional[str]]:
    """(threshold, push token). Any read failure falls back to the default threshold and no token."""
    default = settings.DEFAULT_HR_THRESHOLD_BPM
    try:
        if db is not None:
            prefs = await get_preferences(db, user_id)
        else:
            async with (session_factory or async_session_maker)() as session:
                prefs = await get_preferences(session, user_id)
    except Exception:  # noqa: BLE001
        logger.exception("elevatedHR: preferences unavailable for user %s, using default", user_id)
        return default, None
    if prefs is None:
        return default, None
    threshold = prefs.elevated_heart_rate_threshold_bpm
    return (threshold if isinstance(threshold, int) and threshold > 0 else default), prefs.push_token


async def check_and_notify(
    user_id: int,
    latest_bpm: Optional[float],
    now: Optional[datetime] = None,
    *,
    db: Optional[AsyncSession] = None,
    session_factory=None,
    cooldowns: Optional[CooldownStore] = None,
    dispatcher: Optional[NotificationDispatcher] = None,
) -> ElevatedCheckResult:
    if latest_bpm is None:
        logger.info("elevatedHR: no heart rate sample for user %s, skipping", user_id)
        return ElevatedCheckResult(False, None, settings.DEFAULT_HR_THRESHOLD_BPM)

    threshold, token = await get_threshold(user_id, db=db, session_factory=session_factory)
    logger.info("elevatedHR: user %s HR %s bpm, threshold %s bpm", user_id, latest_bpm, threshold)
    if latest_bpm < threshold:
        return ElevatedCheckResult(False, latest_bpm, threshold)

    current = now or _now()
    store = cooldowns or get_cooldown_store()
    window = timedelta(minutes=settings.HR_COOLDOWN_MINUTES)
    last = store.get(user_id)
    if last is not None and current - last < window:
        remaining = window - (current - last)
        logger.info("elevatedHR: cooldown active for user %s, %s min remaining",
                    user_id, int(remaining.total_seconds() // 60) + 1)
        return ElevatedCheckResult(True, latest_bpm, threshold, suppressed=True)

    result = ElevatedCheckResult(True, latest_bpm, threshold, notification_sent=True)
    if token:
        push = await (dispatcher or get_dispatcher()).send(
            token, TITLE, _message(latest_bpm), {"screen": SCREEN, "bpm": latest_bpm}
        )
        if not push.success:
            logger.warning("elevatedHR: push failed for user %s: %s", user_id, push.error)
            result.push_error = push.error
    else:
        logger.info("elevatedHR: no push token for user %s", user_id)
        result.push_error = "No push token"

    store.set(user_id, current)
    return result


async def check_latest_from_provider(
    user_id: int,
    provider: WearableProvider,
    now: Optional[datetime] = None,
    **kwargs,
) -> ElevatedCheckResult:
    """Read the newest heart rate (bounded by the wearable timeout) and run the check."""
    reading = await latest_heart_rate(provider)
    return await check_and_notify(user_id, reading.value if reading else None, now, **kwargs)
