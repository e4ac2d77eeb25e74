"""Alert store: persisted, typed, expiring in-app notifications.

Every alert type the service produces is described once in ``ALERT_TEMPLATES``;
call sites pick a template kind and supply the format values. Creating an alert
only writes the row. Push fan-out happens after the surrounding transaction
commits (see ``heartsense.services.notifications``), so a failed push never
rolls back the in-app alert.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from heartsense.models import Alert, AlertPriority, AlertType
from heartsense.services.utils_engagement import _now

logger = logging.getLogger(__name__)

# session.info key holding ids of alerts created in the current transaction
PENDING_ALERTS_KEY = "heartsense.pending_alert_ids"


class AlertKind(str, enum.Enum):
    daily_reminder = "daily_reminder"
    inactivity = "inactivity"
    welcome = "welcome"
    milestone = "milestone"
    sync_reminder = "sync_reminder"
    monthly_recap = "monthly_recap"
    health_insight = "health_insight"


@dataclass(frozen=True, slots=True)
class AlertTemplate:
    alert_type: AlertType
    priority: AlertPriority
    title: str
    message: str
    ttl_hours: Optional[int]
    action_url: Optional[str] = None


ALERT_TEMPLATES: dict[AlertKind, AlertTemplate] = {
    AlertKind.daily_reminder: AlertTemplate(
        AlertType.inactivity_warning,
        AlertPriority.low,
        "Daily Health Check-in",
        "Take a moment to log how you're feeling today. "
        "Regular tracking helps you and your healthcare team spot patterns.",
        24,
        "/add",
    ),
    AlertKind.inactivity: AlertTemplate(
        AlertType.inactivity_warning,
        AlertPriority.medium,
        "We Miss You!",
        "It's been {days_inactive} days since your last health log. "
        "Even a quick check-in helps track your health journey.",
        48,
        "/add",
    ),
    AlertKind.welcome: AlertTemplate(
        AlertType.milestone_reached,
        AlertPriority.low,
        "Welcome to HeartSense!",
        "Start tracking your health by logging your first symptom or activity. "
        "Consistent logging helps you and your healthcare team understand your health better.",
        168,
        "/add",
    ),
    AlertKind.milestone: AlertTemplate(
        AlertType.milestone_reached,
        AlertPriority.medium,
        "{title}",
        "{message}",
        48,
        "/engagement",
    ),
    AlertKind.sync_reminder: AlertTemplate(
        AlertType.health_insight,
        AlertPriority.medium,
        "Health Data Sync Reminder",
        "Your wearable health data hasn't synced in {days_since_sync} day{plural}. "
        "Open the app to sync your latest health metrics.",
        24,
    ),
    AlertKind.monthly_recap: AlertTemplate(
        AlertType.health_insight,
        AlertPriority.low,
        "Monthly Health Recap",
        "Last month you logged {monthly_entry_count} entries across {total_days_active} active days. "
        "Keep up the great work this month!",
        168,
    ),
    AlertKind.health_insight: AlertTemplate(
        AlertType.health_insight,
        AlertPriority.low,
        "{title}",
        "{description}",
        168,
        "/insights",
    ),
}


async def create_alert(
    db: AsyncSession,
    user_id: int,
    alert_type: AlertType,
    title: str,
    message: str,
    priority: AlertPriority = AlertPriority.medium,
    meta: Optional[dict[str, Any]] = None,
    expires_in_hours: Optional[int] = None,
    action_url: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Alert:
    """Add an alert row and flush it. The caller owns the commit."""
    created = now or _now()
    alert = Alert(
        user_id=user_id,
        alert_type=alert_type,
        title=title,
        message=message,
        priority=priority,
        read=False,
        meta=meta,
        action_url=action_url,
        created_at=created,
        expires_at=(created + timedelta(hours=expires_in_hours)) if expires_in_hours else None,
    )
    db.add(alert)
    await db.flush()
    db.info.setdefault(PENDING_ALERTS_KEY, []).append(alert.id)
    return alert


async def create_from_template(
    db: AsyncSession,
    user_id: int,
    kind: AlertKind,
    *,
    meta: Optional[dict[str, Any]] = None,
    now: Optional[datetime] = None,
    **values: Any,
) -> Alert:
    tpl = ALERT_TEMPLATES[kind]
    payload = {"type": kind.value}
    payload.update(meta or {})
    return await create_alert(
        db,
        user_id,
        tpl.alert_type,
        tpl.title.format(**values),
        tpl.message.format(**values),
        priority=tpl.priority,
        meta=payload,
        expires_in_hours=tpl.ttl_hours,
        action_url=tpl.action_url,
        now=now,
    )


async def has_recent_alert(
    db: AsyncSession,
    user_id: int,
    alert_type: AlertType,
    since: datetime,
    *,
    kind: Optional[AlertKind] = None,
    now: Optional[datetime] = None,
) -> bool:
    """True when an unexpired alert of this type was created at or after `since`."""
    current = now or _now()
    stmt = (
        select(Alert.meta)
        .where(
            Alert.user_id == user_id,
            Alert.alert_type == alert_type,
            Alert.created_at >= since,
            or_(Alert.expires_at.is_(None), Alert.expires_at > current),
        )
        .order_by(Alert.created_at.desc())
    )
    if kind is None:
        return (await db.execute(stmt.limit(1))).first() is not None
    # kind lives in meta["type"]; scan every match in the window
    rows = (await db.execute(stmt)).scalars().all()
    return any((m or {}).get("type") == kind.value for m in rows)


def _visible(user_id: int, since: datetime, current: datetime):
    return (
        Alert.user_id == user_id,
        Alert.created_at >= since,
        or_(Alert.expires_at.is_(None), Alert.expires_at > current),
    )


async def list_alerts(
    db: AsyncSession,
    user_id: int,
    *,
    limit: int = 20,
    offset: int = 0,
    window_days: int = 7,
    now: Optional[datetime] = None,
) -> tuple[list[Alert], int]:
    """Newest-first page of recent alerts plus the unread count over the same window."""
    current = now or _now()
    since = current - timedelta(days=window_days)
    alerts = (await db.execute(
        select(Alert)
        .where(*_visible(user_id, since, current))
        .order_by(Alert.created_at.desc(), Alert.id.desc())
        .offset(offset)
        .limit(limit)
    )).scalars().all()
    unread = await db.scalar(
        select(func.count(Alert.id)).where(*_visible(user_id, since, current), Alert.read.is_(False))
    )
    return list(alerts), int(unread or 0)


async def get_owned_alert(db: AsyncSession, user_id: int, alert_id: int) -> Alert | None:
    """Return the alert, raising PermissionError if it belongs to someone else."""
    alert = await db.get(Alert, alert_id)
    if alert is None:
        return None
    if alert.user_id != user_id:
        raise PermissionError(f"alert {alert_id} does not belong to user {user_id}")
    return alert


async def mark_read(db: AsyncSession, user_id: int, alert_id: int) -> Alert | None:
    alert = await get_owned_alert(db, user_id, alert_id)
    if alert is None:
        return None
    if not alert.read:
        alert.read = True
        await db.flush()
    return alert


async def mark_all_read(db: AsyncSession, user_id: int) -> int:
    result = await db.execute(
        update(Alert)
        .where(Alert.user_id == user_id, Alert.read.is_(False))
        .values(read=True)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


async def dismiss(db: AsyncSession, user_id: int, alert_id: int) -> bool:
    alert = await get_owned_alert(db, user_id, alert_id)
    if alert is None:
        return False
    await db.delete(alert)
    await db.flush()
    return True


async def purge_expired(
    db: AsyncSession,
    *,
    batch_size: int = 500,
    now: Optional[datetime] = None,
) -> tuple[int, int]:
    """Delete expired alerts, committing once per batch. Returns (deleted, batches)."""
    current = now or _now()
    deleted = batches = 0
    while True:
        ids = (await db.execute(
            select(Alert.id)
            .where(Alert.expires_at.is_not(None), Alert.expires_at <= current)
            .order_by(Alert.id)
            .limit(batch_size)
        )).scalars().all()
        if not ids:
            break
        await db.execute(
            delete(Alert).where(Alert.id.in_(ids)).execution_options(synchronize_session=False)
        )
        await db.commit()
        deleted += len(ids)
        batches += 1
        logger.debug("purge_expired: batch %s deleted %s alerts", batches, len(ids))
        if len(ids) < batch_size:
            break
    return deleted, batches


__all__ = [
    "AlertKind",
    "AlertTemplate",
    "ALERT_TEMPLATES",
    "create_alert",
    "create_from_template",
    "has_recent_alert",
    "list_alerts",
    "mark_read",
    "mark_all_read",
    "dismiss",
    "purge_expired",
]
