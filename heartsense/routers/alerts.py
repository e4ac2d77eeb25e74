from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from heartsense.database import get_db
from heartsense.schemas import AlertList, AlertRead
from heartsense.services import alerts as alert_store
from heartsense.settings.config import settings
from heartsense.utils import owner_or_403, require_authenticated_user


router = APIRouter(prefix="/api/alerts", tags=["alerts"])


@router.get("", response_model=AlertList)
async def list_alerts(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user=Depends(require_authenticated_user),
    db: AsyncSession = Depends(get_db),
):
    alerts, unread = await alert_store.list_alerts(
        db, user.id, limit=limit, offset=offset, window_days=settings.ALERT_LIST_WINDOW_DAYS
    )
    return AlertList(alerts=[AlertRead.model_validate(a) for a in alerts], unread_count=unread)


@router.post("/read-all")
async def read_all(user=Depends(require_authenticated_user), db: AsyncSession = Depends(get_db)):
    updated = await alert_store.mark_all_read(db, user.id)
    await db.commit()
    return {"ok": True, "updated": updated}


@router.post("/{alert_id}/read", response_model=AlertRead)
async def read_one(alert_id: int, user=Depends(require_authenticated_user), db: AsyncSession = Depends(get_db)):
    try:
        alert = await alert_store.mark_read(db, user.id, alert_id)
    except PermissionError as e:
        raise owner_or_403(e)
    if alert is None:
        raise HTTPException(status_code=404, detail="Alert not found")
    await db.commit()
    return alert


@router.delete("/{alert_id}")
async def dismiss(alert_id: int, user=Depends(require_authenticated_user), db: AsyncSession = Depends(get_db)):
    try:
        removed = await alert_store.dismiss(db, user.id, alert_id)
    except PermissionError as e:
        raise owner_or_403(e)
    if not removed:
        raise HTTPException(status_code=404, detail="Alert not found")
    await db.commit()
    return {"ok": True}
