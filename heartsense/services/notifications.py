"""Push fan-out for newly created alerts.

``create_alert`` parks each new alert id in ``session.info``. Once the
transaction commits, the listener below schedules ``notify_alert_created`` as
a supervised background task per alert; a rollback drops the parked ids. Push
delivery therefore never runs for an alert that was not persisted, and a push
failure cannot undo one that was.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from sqlalchemy import event
from sqlalchemy.orm import Session

from heartsense.background import spawn
from heartsense.database import async_session_maker
from heartsense.models import Alert
from heartsense.services.alerts import PENDING_ALERTS_KEY
from heartsense.services.push import NotificationDispatcher, PushResult, get_dispatcher
from heartsense.services.utils_engagement import get_preferences

logger = logging.getLogger(__name__)

_fanout = {
    "enabled": True,
    "session_factory": None,
    "dispatcher": None,
}


def configure_fanout(*, enabled: Optional[bool] = None, session_factory=None,
                     dispatcher: Optional[NotificationDispatcher] = None) -> None:
    """Override where the after-commit fan-out reads from and sends to."""
    if enabled is not None:
        _fanout["enabled"] = enabled
    if session_factory is not None:
        _fanout["session_factory"] = session_factory
    if dispatcher is not None:
        _fanout["dispatcher"] = dispatcher


async def notify_alert_created(alert_id: int, *, session_factory=None,
                               dispatcher: Optional[NotificationDispatcher] = None) -> Optional[PushResult]:
    """Send the push for one alert to its owner's registered token, if any."""
    factory = session_factory or _fanout["session_factory"] or async_session_maker
    sender = dispatcher or _fanout["dispatcher"] or get_dispatcher()

    async with factory() as db:
        alert = await db.get(Alert, alert_id)
        if alert is None:
            logger.warning("notify_alert_created: alert %s not found", alert_id)
            return None
        prefs = await get_preferences(db, alert.user_id)
        token = (prefs.push_token or "").strip() if prefs else ""
        user_id, title, message = alert.user_id, alert.title, alert.message
        alert_type = alert.alert_type.value if alert.alert_type else None

    if not token:
        logger.info("notify_alert_created: no push token for user %s (alert %s)", user_id, alert_id)
        return None

    result = await sender.send(
        token,
        title,
        message,
        {"screen": "engagement", "alertId": str(alert_id), "alertType": alert_type},
    )
    if result.success:
        logger.info("alert %s pushed to user %s: %s", alert_id, user_id, result.message_id)
    else:
        logger.warning("alert %s push failed for user %s: %s", alert_id, user_id, result.error)
    return result


@event.listens_for(Session, "after_commit")
def _dispatch_committed_alerts(session: Session) -> None:
    alert_ids = session.info.pop(PENDING_ALERTS_KEY, None)
    if not alert_ids or not _fanout["enabled"]:
        return
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        logger.warning("alert fan-out skipped for %s: no running event loop", alert_ids)
        return
    for alert_id in alert_ids:
        spawn(notify_alert_created(alert_id), name=f"push:alert:{alert_id}")


@event.listens_for(Session, "after_rollback")
def _drop_rolled_back_alerts(session: Session) -> None:
    session.info.pop(PENDING_ALERTS_KEY, None)


__all__ = ["configure_fanout", "notify_alert_created"]
