from datetime import datetime, timedelta

import httpx
import pytest

from heartsense.cooldown import CooldownStore
from heartsense.database import get_db
from heartsense.main import app
from heartsense.models import Alert, AlertPriority, AlertType, HealthInsight, InsightType
from heartsense.services import elevated_hr
from heartsense.utils import require_authenticated_user


@pytest.fixture
async def api(session_factory, make_user):
    """An HTTP client acting as ``client.state["user"]``; reassign it to switch callers."""
    owner = await make_user()

    async def override_db():
        async with session_factory() as session:
            yield session

    state = {"user": owner}
    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[require_authenticated_user] = lambda: state["user"]
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        client.state = state
        yield client
    app.dependency_overrides.clear()


async def test_healthz(api):
    r = await api.get("/healthz")
    assert r.status_code == 200
    assert r.json() == {"ok": True}


async def test_first_event_updates_stats_and_milestones(api):
    r = await api.post("/api/engagement/events", json={"category": "symptom", "details": {"severity": 4}})
    assert r.status_code == 200
    body = r.json()
    assert body["stats"]["total_entries_logged"] == 1
    assert body["stats"]["total_days_active"] == 1
    assert body["new_milestones"] == ["first_entry"]

    stats = (await api.get("/api/engagement/stats")).json()
    assert stats["total_entries_logged"] == 1

    milestones = (await api.get("/api/engagement/milestones")).json()
    assert [m["milestone_type"] for m in milestones] == ["first_entry"]


async def test_second_event_same_day_reports_no_new_milestones(api):
    payload = {"category": "activity", "source_id": "watch-123", "details": {}}
    await api.post("/api/engagement/events", json=payload)
    r = await api.post("/api/engagement/events", json=payload)
    assert r.status_code == 200
    assert r.json()["stats"]["total_entries_logged"] == 2
    assert r.json()["stats"]["total_days_active"] == 1
    assert r.json()["new_milestones"] == []

    milestones = (await api.get("/api/engagement/milestones")).json()
    assert len(milestones) == 1


async def test_event_validation(api):
    r = await api.post("/api/engagement/events", json={"category": "sleep"})
    assert r.status_code == 422
    r = await api.post("/api/engagement/events", json={"category": "symptom", "occurred_on": "yesterday"})
    assert r.status_code == 422


async def test_history_and_recalculate(api):
    today = datetime.utcnow().date()
    for offset in (0, 0, 2):
        day = (today - timedelta(days=offset)).isoformat()
        await api.post("/api/engagement/events", json={"category": "wellbeing", "occurred_on": day})

    r = await api.get("/api/engagement/history", params={"days": 7})
    assert r.status_code == 200
    counts = {row["date"]: row["entry_count"] for row in r.json()}
    assert counts[today.isoformat()] == 2
    assert counts[(today - timedelta(days=2)).isoformat()] == 1

    assert (await api.get("/api/engagement/history", params={"days": 0})).status_code == 422

    r = await api.post("/api/engagement/stats/recalculate")
    assert r.status_code == 200
    assert r.json()["total_entries_logged"] == 3
    assert r.json()["total_days_active"] == 2


async def test_alert_lifecycle(api, session_factory, make_user):
    owner = api.state["user"]
    async with session_factory() as db:
        mine = Alert(user_id=owner.id, alert_type=AlertType.health_insight, title="Mine",
                     message="m", priority=AlertPriority.low, read=False, created_at=datetime.utcnow())
        db.add(mine)
        await db.commit()

    listing = (await api.get("/api/alerts")).json()
    assert listing["unread_count"] == 1
    assert [a["title"] for a in listing["alerts"]] == ["Mine"]

    r = await api.post(f"/api/alerts/{mine.id}/read")
    assert r.status_code == 200
    assert r.json()["read"] is True
    assert (await api.post("/api/alerts/99999/read")).status_code == 404

    api.state["user"] = await make_user()
    assert (await api.post(f"/api/alerts/{mine.id}/read")).status_code == 403
    assert (await api.delete(f"/api/alerts/{mine.id}")).status_code == 403

    api.state["user"] = owner
    r = await api.delete(f"/api/alerts/{mine.id}")
    assert r.status_code == 200
    assert (await api.delete(f"/api/alerts/{mine.id}")).status_code == 404


async def test_read_all(api, session_factory):
    owner = api.state["user"]
    async with session_factory() as db:
        db.add_all([
            Alert(user_id=owner.id, alert_type=AlertType.inactivity_warning, title=f"a{i}", message="m",
                  priority=AlertPriority.low, read=False, created_at=datetime.utcnow())
            for i in range(3)
        ])
        await db.commit()

    r = await api.post("/api/alerts/read-all")
    assert r.json() == {"ok": True, "updated": 3}
    assert (await api.get("/api/alerts")).json()["unread_count"] == 0


async def test_preferences_roundtrip(api):
    defaults = (await api.get("/api/preferences")).json()
    assert defaults["notify_daily_reminder"] is True
    assert defaults["has_push_token"] is False

    r = await api.put("/api/preferences", json={"notify_daily_reminder": False})
    assert r.json()["notify_daily_reminder"] is False
    assert r.json()["notify_health_insights"] is True

    assert (await api.put("/api/preferences/threshold", json={"threshold_bpm": 30})).status_code == 422
    r = await api.put("/api/preferences/threshold", json={"threshold_bpm": 115})
    assert r.json()["elevated_heart_rate_threshold_bpm"] == 115

    r = await api.post("/api/preferences/push-token", json={"token": " ExponentPushToken[api] "})
    assert r.json()["has_push_token"] is True


async def test_sample_sync_is_idempotent(api):
    samples = [
        {"metric": "heartRate", "value": 72, "unit": "bpm", "recorded_at": "2026-03-18T10:00:00Z"},
        {"metric": "heartRate", "value": 75, "unit": "bpm", "recorded_at": "2026-03-18T10:05:00Z"},
        {"metric": "heartRate", "value": 75, "unit": "bpm", "recorded_at": "2026-03-18T10:05:00Z"},
    ]
    first = await api.post("/api/vitals/samples", json={"samples": samples})
    assert first.json() == {"received": 3, "stored": 2}
    again = await api.post("/api/vitals/samples", json={"samples": samples})
    assert again.json() == {"received": 3, "stored": 0}


async def test_heart_rate_check(api, monkeypatch):
    store = CooldownStore()
    monkeypatch.setattr(elevated_hr, "get_cooldown_store", lambda: store)

    calm = (await api.post("/api/vitals/heart-rate", json={"bpm": 72})).json()
    assert calm["is_elevated"] is False
    assert calm["threshold"] == 100

    high = (await api.post("/api/vitals/heart-rate", json={"bpm": 124})).json()
    assert high["is_elevated"] is True
    assert high["notification_sent"] is True
    assert store.get(api.state["user"].id) is not None

    again = (await api.post("/api/vitals/heart-rate", json={"bpm": 130})).json()
    assert again["suppressed"] is True


async def test_insights_endpoints(api, session_factory, make_user):
    owner = api.state["user"]
    r = await api.post("/api/insights/request")
    assert r.json() == {"insights_generated": 0}

    async with session_factory() as db:
        insight = HealthInsight(user_id=owner.id, insight_type=InsightType.recommendation,
                                title="Hydrate", description="Drink water", generated_at=datetime.utcnow())
        db.add(insight)
        await db.commit()

    assert [i["title"] for i in (await api.get("/api/insights")).json()] == ["Hydrate"]
    assert (await api.post("/api/insights/99999/dismiss")).status_code == 404

    api.state["user"] = await make_user()
    assert (await api.post(f"/api/insights/{insight.id}/dismiss")).status_code == 403

    api.state["user"] = owner
    assert (await api.post(f"/api/insights/{insight.id}/dismiss")).json() == {"ok": True}
    assert (await api.get("/api/insights")).json() == []


async def test_leaderboard_endpoint(api):
    await api.post("/api/engagement/events", json={"category": "symptom"})

    r = await api.get("/api/engagement/leaderboard")
    assert r.status_code == 200
    body = r.json()
    assert body["entries_rank"] == 1
    assert body["top_entries"] == [{"rank": 1, "value": 1, "is_current_user": True}]
    assert body["streak_rank"] == 1
