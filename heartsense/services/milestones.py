"""Milestone detection and the write-once milestone table."""

from __future__ import annotations

import enum
import logging
from typing import Iterable, NamedTuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from heartsense.models import UserMilestone
from heartsense.services.alerts import AlertKind, create_from_template
from heartsense.services.utils_engagement import _now, get_preferences, wants

logger = logging.getLogger(__name__)

ENTRY_MILESTONES = (1, 10, 50, 100, 500)
DAYS_ACTIVE_MILESTONES = (7, 30, 100)


class MilestoneType(str, enum.Enum):
    first_entry = "first_entry"
    entries_10 = "entries_10"
    entries_50 = "entries_50"
    entries_100 = "entries_100"
    entries_500 = "entries_500"
    days_active_7 = "days_active_7"
    days_active_30 = "days_active_30"
    days_active_100 = "days_active_100"


class MilestoneDisplay(NamedTuple):
    title: str
    message: str


MILESTONE_DISPLAY: dict[MilestoneType, MilestoneDisplay] = {
    MilestoneType.first_entry: MilestoneDisplay(
        "First Entry!",
        "You've logged your first entry. Great start on your health journey!",
    ),
    MilestoneType.entries_10: MilestoneDisplay(
        "10 Entries!",
        "You've logged 10 entries. You're getting into the groove!",
    ),
    MilestoneType.entries_50: MilestoneDisplay(
        "50 Entries!",
        "50 entries logged! That's a wealth of health data.",
    ),
    MilestoneType.entries_100: MilestoneDisplay(
        "100 Entries!",
        "100 entries! You're a dedicated health tracker.",
    ),
    MilestoneType.entries_500: MilestoneDisplay(
        "500 Entries!",
        "500 entries! You've built an incredible health record.",
    ),
    MilestoneType.days_active_7: MilestoneDisplay(
        "7 Days Active!",
        "You've been active on 7 different days. Great engagement!",
    ),
    MilestoneType.days_active_30: MilestoneDisplay(
        "30 Days Active!",
        "30 unique days of activity! You're a regular user.",
    ),
    MilestoneType.days_active_100: MilestoneDisplay(
        "100 Days Active!",
        "100 days of using HeartSense! Thank you for your dedication.",
    ),
}


def _entry_milestone(n: int) -> MilestoneType:
    return MilestoneType.first_entry if n == 1 else MilestoneType(f"entries_{n}")


def evaluate(
    previous_entries: int,
    new_entries: int,
    previous_days_active: int,
    new_days_active: int,
) -> list[MilestoneType]:
    """Milestones crossed by moving from the previous to the new counter state."""
    crossed: list[MilestoneType] = []
    for n in ENTRY_MILESTONES:
        if previous_entries < n <= new_entries:
            crossed.append(_entry_milestone(n))
    if new_days_active != previous_days_active:
        for n in DAYS_ACTIVE_MILESTONES:
            if new_days_active == n:
                crossed.append(MilestoneType(f"days_active_{n}"))
    return crossed


async def record_milestone(
    db: AsyncSession, user_id: int, milestone: MilestoneType
) -> UserMilestone | None:
    """Insert and commit the milestone once. Returns None when it was already recorded."""
    existing = (await db.execute(
        select(UserMilestone.id).where(
            UserMilestone.user_id == user_id,
            UserMilestone.milestone_type == milestone.value,
        )
    )).scalars().first()
    if existing:
        return None
    row = UserMilestone(user_id=user_id, milestone_type=milestone.value, achieved_at=_now())
    db.add(row)
    try:
        await db.commit()
    except IntegrityError:
        # a concurrent delivery of the same event got there first
        await db.rollback()
        logger.info("milestone %s for user %s already recorded", milestone.value, user_id)
        return None
    return row


async def process_milestones(
    db: AsyncSession,
    user_id: int,
    milestones: Iterable[MilestoneType],
) -> list[MilestoneType]:
    """Record milestones and raise a `milestone_reached` alert for each new one."""
    milestones = list(milestones)
    if not milestones:
        return []

    prefs = await get_preferences(db, user_id)
    notify = wants(prefs, "notify_activity_milestones")
    inserted: list[MilestoneType] = []

    for milestone in milestones:
        row = await record_milestone(db, user_id, milestone)
        if row is None:
            continue
        inserted.append(milestone)
        if notify:
            display = MILESTONE_DISPLAY[milestone]
            await create_from_template(
                db,
                user_id,
                AlertKind.milestone,
                meta={"milestone_type": milestone.value},
                title=display.title,
                message=display.message,
            )
            row.notified = True
            await db.commit()
        logger.info("Milestone achieved for user %s: %s", user_id, milestone.value)

    return inserted


async def list_milestones(db: AsyncSession, user_id: int) -> list[UserMilestone]:
    return list((await db.execute(
        select(UserMilestone)
        .where(UserMilestone.user_id == user_id)
        .order_by(UserMilestone.achieved_at.desc())
    )).scalars().all())
