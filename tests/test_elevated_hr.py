from datetime import timedelta

from heartsense.cooldown import CooldownStore, cooldown_key
from heartsense.services.elevated_hr import check_and_notify, check_latest_from_provider
from heartsense.services.push import NotificationDispatcher, PushResult
from heartsense.services.wearables import VitalsReading
from heartsense.settings.config import settings

from fakes import FakeProvider, FakeTransport

TOKEN = "ExponentPushToken[heart-rate-test]"


def _dispatcher(relay=None):
    relay = relay or FakeTransport()
    return NotificationDispatcher(relay, FakeTransport()), relay


async def test_threshold_and_cooldown_sequence(session_factory, make_user, now):
    user = await make_user(prefs={"push_token": TOKEN})
    store = CooldownStore()
    dispatcher, relay = _dispatcher()
    kw = {"session_factory": session_factory, "cooldowns": store, "dispatcher": dispatcher}

    below = await check_and_notify(user.id, 99, now, **kw)
    assert not below.is_elevated
    assert relay.calls == []

    at = await check_and_notify(user.id, 100, now, **kw)
    assert at.is_elevated and at.notification_sent
    assert len(relay.calls) == 1
    assert relay.calls[0]["title"] == "Elevated Heart Rate Detected"
    assert relay.calls[0]["body"] == "Your heart rate is 100 bpm. Would you like to log a symptom?"
    assert relay.calls[0]["data"]["screen"] == "symptom-entry"

    soon = await check_and_notify(user.id, 130, now + timedelta(minutes=5), **kw)
    assert soon.suppressed and not soon.notification_sent
    assert len(relay.calls) == 1

    later = await check_and_notify(user.id, 120, now + timedelta(minutes=31), **kw)
    assert later.notification_sent
    assert len(relay.calls) == 2


async def test_custom_threshold_from_preferences(session_factory, make_user, now):
    user = await make_user(prefs={"push_token": TOKEN, "elevated_heart_rate_threshold_bpm": 120})
    dispatcher, relay = _dispatcher()

    result = await check_and_notify(
        user.id, 110, now, session_factory=session_factory, cooldowns=CooldownStore(), dispatcher=dispatcher
    )
    assert result.threshold == 120
    assert not result.is_elevated
    assert relay.calls == []


async def test_no_reading_is_a_no_op(now):
    store = CooldownStore()
    result = await check_and_notify(1, None, now, cooldowns=store, dispatcher=_dispatcher()[0])
    assert not result.is_elevated
    assert store.get(1) is None


async def test_preference_read_failure_uses_default_threshold(now):
    def broken_factory():
        raise RuntimeError("preferences unavailable")

    store = CooldownStore()
    dispatcher, relay = _dispatcher()
    result = await check_and_notify(
        7, 105, now, session_factory=broken_factory, cooldowns=store, dispatcher=dispatcher
    )
    assert result.threshold == settings.DEFAULT_HR_THRESHOLD_BPM
    assert result.notification_sent
    # no token could be read, so nothing was pushed
    assert relay.calls == []
    assert store.get(7) == now


async def test_push_failure_still_starts_cooldown(session_factory, make_user, now):
    user = await make_user(prefs={"push_token": TOKEN})
    store = CooldownStore()
    dispatcher, _ = _dispatcher(FakeTransport(PushResult(False, error="DeviceNotRegistered")))

    result = await check_and_notify(
        user.id, 140, now, session_factory=session_factory, cooldowns=store, dispatcher=dispatcher
    )
    assert result.notification_sent
    assert result.push_error == "DeviceNotRegistered"
    assert store.get(user.id) == now


async def test_cooldown_store_survives_restart(tmp_path, now):
    path = str(tmp_path / "cooldowns.json")
    CooldownStore(path).set(42, now)

    reopened = CooldownStore(path)
    assert reopened.get(42) == now
    assert cooldown_key(42) == "elevated_hr_last_notified_42"

    reopened.clear(42)
    assert CooldownStore(path).get(42) is None


async def test_provider_reading_drives_the_check(session_factory, make_user, now):
    user = await make_user(prefs={"push_token": TOKEN})
    dispatcher, relay = _dispatcher()
    provider = FakeProvider(VitalsReading("heartRate", 128, "bpm", now))

    result = await check_latest_from_provider(
        user.id, provider, now, session_factory=session_factory, cooldowns=CooldownStore(), dispatcher=dispatcher
    )
    assert result.notification_sent
    assert len(relay.calls) == 1


async def test_slow_provider_counts_as_no_data(monkeypatch, now):
    monkeypatch.setattr(settings, "WEARABLE_TIMEOUT_SECONDS", 0.05)
    dispatcher, relay = _dispatcher()
    provider = FakeProvider(VitalsReading("heartRate", 150, "bpm", now), delay=1.0)

    result = await check_latest_from_provider(7, provider, now, cooldowns=CooldownStore(), dispatcher=dispatcher)
    assert not result.is_elevated
    assert result.heart_rate_bpm is None
    assert relay.calls == []
