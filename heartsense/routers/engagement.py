from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from heartsense.database import get_db
from heartsense.schemas import (
    DailyCount,
    EngagementStatsRead,
    EventCreate,
    EventResult,
    LeaderboardRead,
    MilestoneRead,
)
from heartsense.services.engagement import daily_history, get_stats, leaderboard, recalculate_stats, record_event
from heartsense.services.milestones import list_milestones, process_milestones
from heartsense.utils import require_authenticated_user


router = APIRouter(prefix="/api/engagement", tags=["engagement"])


@router.post("/events", response_model=EventResult)
async def post_event(
    payload: EventCreate,
    user=Depends(require_authenticated_user),
    db: AsyncSession = Depends(get_db),
):
    outcome = await record_event(
        db,
        user.id,
        payload.category,
        payload.occurred_on,
        details=payload.details,
        source_id=payload.source_id,
    )
    if outcome is None:
        raise HTTPException(status_code=400, detail="Event could not be recorded")
    inserted = await process_milestones(db, user.id, outcome.new_milestones)
    return EventResult(
        stats=EngagementStatsRead.model_validate(outcome.stats),
        new_milestones=[m.value for m in inserted],
    )


@router.get("/stats", response_model=EngagementStatsRead)
async def read_stats(user=Depends(require_authenticated_user), db: AsyncSession = Depends(get_db)):
    return await get_stats(db, user.id)


@router.post("/stats/recalculate", response_model=EngagementStatsRead)
async def recalculate(user=Depends(require_authenticated_user), db: AsyncSession = Depends(get_db)):
    return await recalculate_stats(db, user.id)


@router.get("/history", response_model=list[DailyCount])
async def history(
    days: int = Query(30, ge=1, le=365),
    user=Depends(require_authenticated_user),
    db: AsyncSession = Depends(get_db),
):
    rows = await daily_history(db, user.id, days)
    return [DailyCount(date=d, entry_count=c) for d, c in rows]


@router.get("/milestones", response_model=list[MilestoneRead])
async def milestones(user=Depends(require_authenticated_user), db: AsyncSession = Depends(get_db)):
    return await list_milestones(db, user.id)


@router.get("/leaderboard", response_model=LeaderboardRead)
async def read_leaderboard(user=Depends(require_authenticated_user), db: AsyncSession = Depends(get_db)):
    return await leaderboard(db, user.id)
