from datetime import timedelta

from sqlalchemy import select

from heartsense.models import HealthSample
from heartsense.services.wearables import (
    VitalsReading,
    latest_heart_rate,
    read_with_timeout,
    store_samples,
    sync_from_provider,
)

from fakes import FakeProvider


async def test_provider_error_reads_as_no_data():
    async def broken():
        raise ConnectionError("bluetooth dropped")

    assert await read_with_timeout(broken(), timeout=1) is None


async def test_latest_heart_rate_within_timeout(now):
    reading = VitalsReading("heartRate", 88, "bpm", now)
    assert await latest_heart_rate(FakeProvider(reading), timeout=1) == reading
    assert await latest_heart_rate(FakeProvider(reading, delay=0.5), timeout=0.01) is None


async def test_store_samples_skips_known_rows(db, make_user, now):
    user = await make_user()
    batch = [VitalsReading("heartRate", 70 + i, "bpm", now - timedelta(minutes=i)) for i in range(4)]

    assert await store_samples(db, user.id, batch[:2], now=now) == 2
    assert await store_samples(db, user.id, batch, now=now) == 2
    assert await store_samples(db, user.id, [], now=now) == 0

    rows = (await db.execute(select(HealthSample).where(HealthSample.user_id == user.id))).scalars().all()
    assert len(rows) == 4
    assert {r.synced_at for r in rows} == {now}


async def test_sync_from_provider_reads_every_metric_in_range(db, make_user, now):
    user = await make_user()
    samples = [
        VitalsReading("heartRate", 71, "bpm", now - timedelta(hours=1)),
        VitalsReading("heartRate", 74, "bpm", now - timedelta(hours=2)),
        VitalsReading("stepCount", 5400, "count", now - timedelta(hours=1)),
        VitalsReading("heartRate", 90, "bpm", now - timedelta(days=3)),  # before the window
    ]
    provider = FakeProvider(samples=samples)
    start = now - timedelta(days=1)

    assert await sync_from_provider(db, user.id, provider, start, now, timeout=1, now=now) == 3
    assert await sync_from_provider(db, user.id, provider, start, now, timeout=1, now=now) == 0

    metrics = (await db.execute(select(HealthSample.data_type).where(HealthSample.user_id == user.id))).scalars().all()
    assert sorted(metrics) == ["heartRate", "heartRate", "stepCount"]


async def test_sync_from_slow_provider_stores_nothing(db, make_user, now):
    user = await make_user()
    provider = FakeProvider(samples=[VitalsReading("heartRate", 71, "bpm", now)], delay=0.5)

    stored = await sync_from_provider(db, user.id, provider, now - timedelta(days=1), now, timeout=0.01, now=now)

    assert stored == 0
    assert (await db.execute(select(HealthSample))).scalars().all() == []
