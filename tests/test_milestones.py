from sqlalchemy import func, select

from heartsense.models import Alert, AlertType, UserMilestone
from heartsense.services.milestones import (
    MILESTONE_DISPLAY,
    MilestoneType,
    evaluate,
    list_milestones,
    process_milestones,
    record_milestone,
)


def test_entry_thresholds_fire_when_crossed():
    assert evaluate(0, 1, 0, 1) == [MilestoneType.first_entry]
    assert evaluate(9, 10, 3, 3) == [MilestoneType.entries_10]
    assert evaluate(10, 11, 3, 3) == []
    # a jump across several thresholds reports each of them
    assert evaluate(5, 60, 3, 3) == [MilestoneType.entries_10, MilestoneType.entries_50]


def test_days_thresholds_need_a_changed_day_count():
    assert evaluate(20, 21, 6, 7) == [MilestoneType.days_active_7]
    assert evaluate(21, 22, 7, 7) == []
    assert evaluate(99, 100, 29, 30) == [MilestoneType.entries_100, MilestoneType.days_active_30]


def test_every_milestone_has_display_text():
    assert set(MILESTONE_DISPLAY) == set(MilestoneType)


async def test_duplicate_crossing_records_once_and_alerts_once(db, make_user):
    user = await make_user()
    first = await process_milestones(db, user.id, [MilestoneType.first_entry])
    again = await process_milestones(db, user.id, [MilestoneType.first_entry])

    assert first == [MilestoneType.first_entry]
    assert again == []
    assert await db.scalar(select(func.count(UserMilestone.id))) == 1
    alerts = (await db.execute(select(Alert))).scalars().all()
    assert len(alerts) == 1
    assert alerts[0].alert_type == AlertType.milestone_reached
    assert alerts[0].title == "First Entry!"
    assert alerts[0].meta == {"type": "milestone", "milestone_type": "first_entry"}


async def test_record_milestone_is_write_once(db, make_user):
    user = await make_user()
    assert await record_milestone(db, user.id, MilestoneType.entries_10) is not None
    assert await record_milestone(db, user.id, MilestoneType.entries_10) is None


async def test_opted_out_user_gets_milestone_but_no_alert(db, make_user):
    user = await make_user(prefs={"notify_activity_milestones": False})
    inserted = await process_milestones(db, user.id, [MilestoneType.entries_50])

    assert inserted == [MilestoneType.entries_50]
    rows = await list_milestones(db, user.id)
    assert [r.milestone_type for r in rows] == ["entries_50"]
    assert rows[0].notified is False
    assert await db.scalar(select(func.count(Alert.id))) == 0
