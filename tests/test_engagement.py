from datetime import timedelta

from sqlalchemy import func, select

from heartsense.models import (
    Alert,
    DailyEngagementLog,
    EngagementEvent,
    EngagementStats,
    NotificationPreferences,
    UserMilestone,
)
from heartsense.services.engagement import (
    compute_streaks,
    daily_history,
    ingest_entry,
    leaderboard,
    on_user_created,
    recalculate_stats,
    record_event,
    recompute_rolling_windows,
    refresh_rolling_windows,
)
from heartsense.services.milestones import MilestoneType


async def test_same_day_events_count_one_active_day(db, make_user, now):
    user = await make_user()
    for _ in range(4):
        outcome = await record_event(db, user.id, "symptom", now=now)

    stats = outcome.stats
    assert stats.total_entries_logged == 4
    assert stats.total_days_active == 1
    assert stats.weekly_entry_count == 4
    assert stats.last_activity_date == "2026-03-18"

    log = (await db.execute(select(DailyEngagementLog))).scalars().one()
    assert log.entry_count == 4
    assert log.symptom_count == 4
    assert await db.scalar(select(func.count(EngagementEvent.id))) == 4


async def test_first_event_of_day_flag_and_category_counters(db, make_user, now):
    user = await make_user()
    first = await record_event(db, user.id, "activity", now=now)
    second = await record_event(db, user.id, "wellbeing", now=now)
    third = await record_event(db, user.id, "medical_condition", now=now)

    assert first.first_event_of_day is True
    assert second.first_event_of_day is False
    assert third.first_event_of_day is False
    log = (await db.execute(select(DailyEngagementLog))).scalars().one()
    assert log.activity_count == 1
    assert log.wellbeing_logged is True
    assert log.medical_condition_logged is True


async def test_late_event_counts_but_keeps_latest_activity_date(db, make_user, now):
    user = await make_user()
    await record_event(db, user.id, "symptom", now=now)
    outcome = await record_event(db, user.id, "symptom", "2026-03-15", now=now)

    assert outcome.stats.total_entries_logged == 2
    assert outcome.stats.total_days_active == 2
    assert outcome.stats.last_activity_date == "2026-03-18"

    # a second late event on the same earlier day is not a new active day
    outcome = await record_event(db, user.id, "activity", "2026-03-15", now=now)
    assert outcome.stats.total_days_active == 2


async def test_event_without_user_is_dropped(db, now):
    assert await record_event(db, None, "symptom", now=now) is None
    assert await db.scalar(select(func.count(EngagementEvent.id))) == 0


async def test_record_event_reports_crossed_milestones(db, make_user, now):
    user = await make_user()
    first = await record_event(db, user.id, "symptom", now=now)
    assert first.new_milestones == [MilestoneType.first_entry]

    for i in range(8):
        await record_event(db, user.id, "symptom", now=now)
    tenth = await record_event(db, user.id, "symptom", now=now)
    assert tenth.new_milestones == [MilestoneType.entries_10]


async def test_seventh_active_day_crosses_days_milestone(db, make_user, now):
    user = await make_user()
    outcome = None
    for back in range(6, -1, -1):
        day = (now - timedelta(days=back)).date().isoformat()
        outcome = await record_event(db, user.id, "symptom", day, now=now)
    assert outcome.stats.total_days_active == 7
    assert MilestoneType.days_active_7 in outcome.new_milestones


async def test_weekly_window_equals_sum_of_last_seven_days(db, make_user, now):
    user = await make_user()
    per_day = {0: 2, 1: 1, 3: 4, 6: 1, 7: 5, 12: 3, 29: 2, 31: 6}
    for back, count in per_day.items():
        day = (now - timedelta(days=back)).date().isoformat()
        for _ in range(count):
            await record_event(db, user.id, "activity", day, now=now)

    weekly, monthly = await recompute_rolling_windows(db, user.id, now=now)
    assert weekly == sum(c for back, c in per_day.items() if back <= 6)
    assert monthly == sum(c for back, c in per_day.items() if back <= 29)

    stats = await refresh_rolling_windows(db, user.id, now=now)
    assert stats.weekly_entry_count == weekly
    assert stats.monthly_entry_count == monthly


async def test_ingest_entry_resolves_user_and_day(session_factory, make_user, now):
    user = await make_user()
    outcome = await ingest_entry(
        {"id": "sym-1", "userId": str(user.id), "occurredAt": "2026-03-17T22:15:00Z",
         "details": {"symptom_type": "dizziness", "severity": 4}},
        "symptom",
        session_factory=session_factory,
        now=now,
    )
    assert outcome is not None
    assert outcome.stats.last_activity_date == "2026-03-17"

    async with session_factory() as db:
        event = (await db.execute(select(EngagementEvent))).scalars().one()
        assert event.source_id == "sym-1"
        assert event.details["symptom_type"] == "dizziness"
        milestone = (await db.execute(select(UserMilestone))).scalars().one()
        assert milestone.milestone_type == "first_entry"
        assert milestone.notified is True


async def test_ingest_entry_never_raises(session_factory, now):
    def broken_factory():
        raise RuntimeError("database unavailable")

    assert await ingest_entry({"userId": 1}, "symptom", session_factory=broken_factory, now=now) is None
    assert await ingest_entry({"title": "no owner"}, "symptom", session_factory=session_factory) is None


async def test_on_user_created_sets_up_stats_prefs_and_welcome(db, make_user, now):
    user = await make_user()
    stats = await on_user_created(db, user.id, now=now)

    assert stats.total_entries_logged == 0
    assert await db.get(NotificationPreferences, user.id) is not None
    alert = (await db.execute(select(Alert))).scalars().one()
    assert alert.title == "Welcome to HeartSense!"
    assert alert.meta["type"] == "welcome"
    assert alert.expires_at == now + timedelta(hours=168)


def test_compute_streaks():
    days = ["2026-03-01", "2026-03-02", "2026-03-03", "2026-03-07", "2026-03-08"]
    assert compute_streaks(days, "2026-03-09") == (2, 3)
    assert compute_streaks(days, "2026-03-08") == (2, 3)
    assert compute_streaks(days, "2026-03-11") == (0, 3)
    assert compute_streaks([], "2026-03-11") == (0, 0)
    assert compute_streaks(["2026-03-11"], "2026-03-11") == (1, 1)


async def test_recalculate_stats_rebuilds_from_daily_log(db, make_user, now):
    user = await make_user()
    for back in (0, 1, 2, 5):
        day = (now - timedelta(days=back)).date().isoformat()
        await record_event(db, user.id, "symptom", day, now=now)
        await record_event(db, user.id, "activity", day, now=now)

    # simulate drift in the incremental counters
    stats = await db.get(EngagementStats, user.id)
    stats.total_entries_logged = 99
    stats.total_days_active = 1
    await db.commit()

    stats = await recalculate_stats(db, user.id, now=now)
    assert stats.total_entries_logged == 8
    assert stats.total_days_active == 4
    assert stats.last_activity_date == "2026-03-18"
    assert stats.current_streak == 3
    assert stats.longest_streak == 3
    assert stats.weekly_entry_count == 8


async def test_daily_history(db, make_user, now):
    user = await make_user()
    await record_event(db, user.id, "symptom", "2026-03-10", now=now)
    await record_event(db, user.id, "symptom", "2026-03-17", now=now)
    await record_event(db, user.id, "symptom", "2026-03-17", now=now)

    assert await daily_history(db, user.id, 7, now=now) == [("2026-03-17", 2)]
    assert await daily_history(db, user.id, 30, now=now) == [("2026-03-10", 1), ("2026-03-17", 2)]


async def test_leaderboard_ranks_and_flags_caller(db, make_user, now):
    me = await make_user(stats={"current_streak": 4, "total_entries_logged": 30})
    await make_user(stats={"current_streak": 9, "total_entries_logged": 12})
    await make_user(stats={"current_streak": 4, "total_entries_logged": 55})
    for i in range(10):
        await make_user(stats={"current_streak": 0, "total_entries_logged": i})

    board = await leaderboard(db, me.id, now=now)

    assert len(board.top_streaks) == 10
    assert [r.value for r in board.top_streaks[:3]] == [9, 4, 4]
    assert [r.rank for r in board.top_streaks[:3]] == [1, 2, 3]
    assert [r.is_current_user for r in board.top_streaks[:3]] == [False, True, False]
    assert [r.value for r in board.top_entries[:3]] == [55, 30, 12]
    assert board.top_entries[1].is_current_user
    # ties share a rank: one user has a longer streak
    assert board.streak_rank == 2
    assert board.entries_rank == 2


async def test_leaderboard_for_user_without_stats(db, make_user, now):
    await make_user(stats={"current_streak": 2, "total_entries_logged": 5})
    newcomer = await make_user()

    board = await leaderboard(db, newcomer.id, now=now)

    assert board.streak_rank == 2
    assert board.entries_rank == 2
    assert [r.is_current_user for r in board.top_entries] == [False, True]
