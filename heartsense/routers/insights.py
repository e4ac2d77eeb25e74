from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from heartsense.database import get_db
from heartsense.schemas import InsightRead, InsightRequestResult
from heartsense.services.insights import dismiss_insight, generate_insights_for_user, list_insights
from heartsense.utils import owner_or_403, require_authenticated_user


router = APIRouter(prefix="/api/insights", tags=["insights"])
logger = logging.getLogger(__name__)


@router.get("", response_model=list[InsightRead])
async def get_insights(
    limit: int = Query(10, ge=1, le=50),
    user=Depends(require_authenticated_user),
    db: AsyncSession = Depends(get_db),
):
    return await list_insights(db, user.id, limit=limit)


@router.post("/request", response_model=InsightRequestResult)
async def request_insights(user=Depends(require_authenticated_user), db: AsyncSession = Depends(get_db)):
    try:
        rows = await generate_insights_for_user(db, user.id)
    except Exception:
        logger.exception("Insight generation failed for user %s", user.id)
        raise HTTPException(status_code=500, detail="Failed to generate insights")
    return InsightRequestResult(insights_generated=len(rows))


@router.post("/{insight_id}/dismiss")
async def dismiss(insight_id: int, user=Depends(require_authenticated_user), db: AsyncSession = Depends(get_db)):
    try:
        found = await dismiss_insight(db, user.id, insight_id)
    except PermissionError as e:
        raise owner_or_403(e)
    if not found:
        raise HTTPException(status_code=404, detail="Insight not found")
    return {"ok": True}
