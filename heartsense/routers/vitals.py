from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from heartsense.database import get_db
from heartsense.schemas import ElevatedCheckRead, HeartRateReading, SampleBatch, SampleSyncResult
from heartsense.services.elevated_hr import check_and_notify
from heartsense.services.wearables import HEART_RATE, VitalsReading, store_samples
from heartsense.utils import require_authenticated_user


router = APIRouter(prefix="/api/vitals", tags=["vitals"])


@router.post("/heart-rate", response_model=ElevatedCheckRead)
async def submit_heart_rate(
    payload: HeartRateReading,
    user=Depends(require_authenticated_user),
    db: AsyncSession = Depends(get_db),
):
    if payload.recorded_at is not None:
        await store_samples(db, user.id, [VitalsReading(HEART_RATE, payload.bpm, "bpm", payload.recorded_at)])
    return await check_and_notify(user.id, payload.bpm, db=db)


@router.post("/samples", response_model=SampleSyncResult)
async def sync_samples(
    payload: SampleBatch,
    user=Depends(require_authenticated_user),
    db: AsyncSession = Depends(get_db),
):
    readings = [VitalsReading(s.metric, s.value, s.unit, s.recorded_at) for s in payload.samples]
    stored = await store_samples(db, user.id, readings)
    return SampleSyncResult(received=len(readings), stored=stored)
