from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from heartsense.database import get_db
from heartsense.models import NotificationPreferences, utcnow
from heartsense.schemas import PreferencesRead, PreferencesUpdate, PushTokenUpdate, ThresholdUpdate
from heartsense.services.push import is_relay_token, token_prefix
from heartsense.services.utils_engagement import get_or_create_preferences
from heartsense.utils import require_authenticated_user


router = APIRouter(prefix="/api/preferences", tags=["preferences"])
logger = logging.getLogger(__name__)


def _read(prefs: NotificationPreferences) -> PreferencesRead:
    return PreferencesRead(
        notify_daily_reminder=prefs.notify_daily_reminder is not False,
        notify_messages=prefs.notify_messages is not False,
        notify_health_insights=prefs.notify_health_insights is not False,
        notify_activity_milestones=prefs.notify_activity_milestones is not False,
        elevated_heart_rate_threshold_bpm=prefs.elevated_heart_rate_threshold_bpm,
        has_push_token=bool(prefs.push_token),
    )


@router.get("", response_model=PreferencesRead)
async def get_preferences(user=Depends(require_authenticated_user), db: AsyncSession = Depends(get_db)):
    prefs = await get_or_create_preferences(db, user.id)
    await db.commit()
    return _read(prefs)


@router.put("", response_model=PreferencesRead)
async def update_preferences(
    payload: PreferencesUpdate,
    user=Depends(require_authenticated_user),
    db: AsyncSession = Depends(get_db),
):
    prefs = await get_or_create_preferences(db, user.id)
    for field, value in payload.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(prefs, field, value)
    await db.commit()
    return _read(prefs)


@router.put("/threshold", response_model=PreferencesRead)
async def update_threshold(
    payload: ThresholdUpdate,
    user=Depends(require_authenticated_user),
    db: AsyncSession = Depends(get_db),
):
    prefs = await get_or_create_preferences(db, user.id)
    prefs.elevated_heart_rate_threshold_bpm = payload.threshold_bpm
    await db.commit()
    return _read(prefs)


@router.post("/push-token", response_model=PreferencesRead)
async def register_push_token(
    payload: PushTokenUpdate,
    user=Depends(require_authenticated_user),
    db: AsyncSession = Depends(get_db),
):
    token = payload.token.strip()
    prefs = await get_or_create_preferences(db, user.id)
    prefs.push_token = token
    prefs.push_token_updated_at = utcnow()
    await db.commit()
    logger.info("Push token registered for user %s: %s relay=%s", user.id, token_prefix(token), is_relay_token(token))
    return _read(prefs)
