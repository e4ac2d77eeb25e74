"""Wearable vitals: provider protocol, bounded reads and idempotent sample storage."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Iterable, Optional, Protocol, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from heartsense.models import HealthSample
from heartsense.services.utils_engagement import _now
from heartsense.settings.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

HEART_RATE = "heartRate"
METRICS = ("heartRate", "restingHeartRate", "heartRateVariability", "respiratoryRate", "stepCount")


@dataclass(slots=True)
class VitalsReading:
    metric: str
    value: float
    unit: Optional[str]
    recorded_at: datetime


class WearableProvider(Protocol):
    async def latest_reading(self, metric: str) -> Optional[VitalsReading]:
        ...

    async def samples_in_range(self, metric: str, start: datetime, end: datetime) -> list[VitalsReading]:
        ...


async def read_with_timeout(aw: Awaitable[T], timeout: Optional[float] = None) -> Optional[T]:
    """Await a provider call; a timeout or provider error reads as "no data"."""
    limit = settings.WEARABLE_TIMEOUT_SECONDS if timeout is None else timeout
    try:
        return await asyncio.wait_for(aw, timeout=limit)
    except asyncio.TimeoutError:
        logger.warning("wearable read timed out after %ss", limit)
    except Exception:  # noqa: BLE001
        logger.exception("wearable read failed")
    return None


async def latest_heart_rate(provider: WearableProvider, *, timeout: Optional[float] = None) -> Optional[VitalsReading]:
    return await read_with_timeout(provider.latest_reading(HEART_RATE), timeout)


async def _existing_keys(db: AsyncSession, user_id: int, readings: list[VitalsReading]) -> set[tuple[str, datetime]]:
    metrics = {r.metric for r in readings}
    rows = (await db.execute(
        select(HealthSample.data_type, HealthSample.recorded_at).where(
            HealthSample.user_id == user_id,
            HealthSample.data_type.in_(metrics),
            HealthSample.recorded_at >= min(r.recorded_at for r in readings),
            HealthSample.recorded_at <= max(r.recorded_at for r in readings),
        )
    )).all()
    return {(t, at) for t, at in rows}


async def store_samples(
    db: AsyncSession,
    user_id: int,
    readings: Iterable[VitalsReading],
    *,
    now: Optional[datetime] = None,
) -> int:
    """Insert samples not stored yet. Re-sending a batch is a no-op; returns rows added."""
    readings = list(readings)
    if not readings:
        return 0
    synced = now or _now()

    for attempt in (1, 2):
        seen = await _existing_keys(db, user_id, readings)
        added = 0
        for r in readings:
            key = (r.metric, r.recorded_at)
            if key in seen:
                continue
            seen.add(key)
            db.add(HealthSample(
                user_id=user_id,
                data_type=r.metric,
                value=float(r.value),
                unit=r.unit,
                recorded_at=r.recorded_at,
                synced_at=synced,
            ))
            added += 1
        try:
            await db.commit()
            return added
        except IntegrityError:
            # overlapping sync from another device; the second pass skips its rows
            await db.rollback()
            if attempt == 2:
                raise
    return 0


async def sync_from_provider(
    db: AsyncSession,
    user_id: int,
    provider: WearableProvider,
    start: datetime,
    end: datetime,
    *,
    metrics: Iterable[str] = METRICS,
    timeout: Optional[float] = None,
    now: Optional[datetime] = None,
) -> int:
    """Pull each metric's samples for [start, end] and store the new ones.

    Every provider read is bounded by the wearable timeout; a metric that
    times out or fails contributes nothing. Returns rows added.
    """
    readings: list[VitalsReading] = []
    for metric in metrics:
        batch = await read_with_timeout(provider.samples_in_range(metric, start, end), timeout)
        if batch:
            readings.extend(batch)
    stored = await store_samples(db, user_id, readings, now=now)
    logger.info("wearable sync for user %s: %s read, %s stored", user_id, len(readings), stored)
    return stored
