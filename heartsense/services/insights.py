"""Weekly health insights drawn from the last two weeks of logged entries.

The analyzers are pure functions over the ``details`` of symptom and activity
events; ``generate_insights_for_user`` feeds them, stores what they find and
raises one low-priority alert per insight.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from heartsense.models import EngagementEvent, EntryCategory, HealthInsight, InsightType
from heartsense.services.alerts import AlertKind, create_from_template
from heartsense.services.utils_engagement import _now, date_str_days_ago, start_of_week

logger = logging.getLogger(__name__)

LOOKBACK_DAYS = 14
INSIGHT_TTL_HOURS = 168
WEEKLY_ACTIVITY_GOAL = 150


@dataclass(slots=True)
class SymptomPoint:
    symptom_type: str
    severity: float
    day: str


@dataclass(slots=True)
class ActivityPoint:
    activity_type: str
    duration_minutes: float
    day: str


@dataclass(slots=True)
class InsightDraft:
    insight_type: InsightType
    title: str
    description: str
    data_points: dict[str, Any] = field(default_factory=dict)
    confidence: str = "medium"


def _mean(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _pick(details: dict, *keys: str) -> Any:
    for k in keys:
        if details.get(k) not in (None, ""):
            return details[k]
    return None


def _number(raw: Any) -> Optional[float]:
    try:
        return float(raw)
    except (TypeError, ValueError):
        return None


def symptom_point(event: EngagementEvent) -> Optional[SymptomPoint]:
    details = event.details or {}
    kind = _pick(details, "symptom_type", "symptomType")
    severity = _number(_pick(details, "severity"))
    if not kind or severity is None:
        return None
    return SymptomPoint(str(kind), severity, event.occurred_on)


def activity_point(event: EngagementEvent) -> Optional[ActivityPoint]:
    details = event.details or {}
    kind = _pick(details, "activity_type", "activityType")
    minutes = _number(_pick(details, "duration_minutes", "durationMinutes"))
    if not kind or minutes is None:
        return None
    return ActivityPoint(str(kind), minutes, event.occurred_on)


# ---------------------------
# Analyzers
# ---------------------------
def analyze_symptom_patterns(symptoms: list[SymptomPoint]) -> Optional[InsightDraft]:
    """Most frequent symptom type with its mean severity and recent trend."""
    if len(symptoms) < 3:
        return None

    severities: dict[str, list[float]] = defaultdict(list)
    for s in symptoms:
        severities[s.symptom_type].append(s.severity)
    top = max(severities, key=lambda k: len(severities[k]))
    values = severities[top]
    count = len(values)
    if count < 3:
        return None

    avg = _mean(values)
    recent = _mean(values[-3:])
    older = sum(values[:-3]) / max(1, count - 3)
    if recent > older + 1:
        trend = "increasing"
    elif recent < older - 1:
        trend = "decreasing"
    else:
        trend = "stable"

    description = (
        f'You\'ve logged "{top}" {count} times in the past 2 weeks '
        f"with an average severity of {avg:.1f}/10. "
    )
    if trend == "increasing":
        description += ("The severity appears to be trending upward. "
                        "Consider discussing this with your healthcare provider.")
    elif trend == "decreasing":
        description += "Good news - the severity seems to be improving!"
    else:
        description += "The severity has been relatively stable."

    return InsightDraft(
        InsightType.symptom_pattern,
        f"Pattern Detected: {top}",
        description,
        {"symptomType": top, "count": count, "averageSeverity": avg, "trend": trend},
        "high" if count >= 5 else "medium",
    )


def analyze_activity_patterns(activities: list[ActivityPoint]) -> Optional[InsightDraft]:
    if len(activities) < 3:
        return None

    total = sum(a.duration_minutes for a in activities)
    weekly = total / 2  # two weeks of data
    counts: dict[str, int] = defaultdict(int)
    for a in activities:
        counts[a.activity_type] += 1
    favourite = max(counts, key=counts.get)
    rounded = round(weekly)

    if weekly >= WEEKLY_ACTIVITY_GOAL:
        title = "Great Activity Level!"
        description = (
            f"You're averaging {rounded} minutes of activity per week. "
            "That's meeting the recommended 150 minutes of weekly exercise! "
            f'Your most frequent activity is "{favourite}". Keep it up!'
        )
    elif weekly >= WEEKLY_ACTIVITY_GOAL / 2:
        title = "Good Progress on Activity"
        description = (
            f"You're averaging {rounded} minutes of activity per week. "
            "You're halfway to the recommended 150 minutes! "
            f'Try adding one more session of "{favourite}" to boost your total.'
        )
    else:
        title = "Activity Opportunity"
        description = (
            f"You've logged {rounded} minutes of weekly activity. "
            "Small increases can make a big difference. "
            f'Even 10-15 minute sessions of "{favourite}" add up over time!'
        )

    return InsightDraft(
        InsightType.trend_analysis,
        title,
        description,
        {
            "weeklyAverage": rounded,
            "totalMinutes": total,
            "mostCommonActivity": favourite,
            "activityCount": len(activities),
        },
        "high" if len(activities) >= 5 else "medium",
    )


def analyze_symptom_activity_correlation(
    symptoms: list[SymptomPoint], activities: list[ActivityPoint]
) -> Optional[InsightDraft]:
    """Compare symptom severity on days with and without logged activity."""
    if len(symptoms) < 5 or len(activities) < 5:
        return None

    active_days = {a.day for a in activities}
    on_active = [s.severity for s in symptoms if s.day in active_days]
    on_rest = [s.severity for s in symptoms if s.day not in active_days]
    if len(on_active) < 3 or len(on_rest) < 3:
        return None

    active_avg, rest_avg = _mean(on_active), _mean(on_rest)
    diff = rest_avg - active_avg
    if abs(diff) < 0.5:
        return None

    if diff > 0:
        title = "Activity May Help Your Symptoms"
        description = (
            "On days when you're active, your average symptom severity is "
            f"{active_avg:.1f}/10, compared to {rest_avg:.1f}/10 on inactive days. "
            "This suggests physical activity might help manage your symptoms."
        )
    else:
        title = "Rest Days Matter"
        description = (
            "On rest days, your average symptom severity is "
            f"{rest_avg:.1f}/10, compared to {active_avg:.1f}/10 on active days. "
            "Consider balancing activity with adequate rest."
        )

    return InsightDraft(
        InsightType.activity_correlation,
        title,
        description,
        {
            "activeDayAvgSeverity": active_avg,
            "inactiveDayAvgSeverity": rest_avg,
            "activeDaySamples": len(on_active),
            "inactiveDaySamples": len(on_rest),
        },
        "high" if len(on_active) >= 5 and len(on_rest) >= 5 else "medium",
    )


def analyze(symptoms: list[SymptomPoint], activities: list[ActivityPoint]) -> list[InsightDraft]:
    found = [
        analyze_symptom_patterns(symptoms),
        analyze_activity_patterns(activities),
        analyze_symptom_activity_correlation(symptoms, activities),
    ]
    return [d for d in found if d is not None]


# ---------------------------
# Storage
# ---------------------------
async def _recent_points(
    db: AsyncSession, user_id: int, now: datetime
) -> tuple[list[SymptomPoint], list[ActivityPoint]]:
    events = (await db.execute(
        select(EngagementEvent)
        .where(
            EngagementEvent.user_id == user_id,
            EngagementEvent.occurred_on >= date_str_days_ago(LOOKBACK_DAYS, now),
            EngagementEvent.category.in_([EntryCategory.symptom, EntryCategory.activity]),
        )
        .order_by(EngagementEvent.occurred_on.asc(), EngagementEvent.id.asc())
    )).scalars().all()

    symptoms: list[SymptomPoint] = []
    activities: list[ActivityPoint] = []
    for ev in events:
        if ev.category == EntryCategory.symptom:
            point = symptom_point(ev)
            if point:
                symptoms.append(point)
        else:
            point = activity_point(ev)
            if point:
                activities.append(point)
    return symptoms, activities


async def generate_insights_for_user(
    db: AsyncSession, user_id: int, *, now: Optional[datetime] = None
) -> list[HealthInsight]:
    """Analyze, store and alert. Commits once for the whole batch.

    Runs at most once per ISO week: if insights were already stored this week,
    nothing is generated and an empty list is returned.
    """
    current = now or _now()
    week_start = start_of_week(current)
    already = await db.scalar(
        select(func.count(HealthInsight.id)).where(
            HealthInsight.user_id == user_id,
            HealthInsight.generated_at >= week_start,
        )
    )
    if already:
        logger.info("Insights for user %s already generated since %s", user_id, week_start.date())
        return []
    symptoms, activities = await _recent_points(db, user_id, current)
    rows: list[HealthInsight] = []
    for draft in analyze(symptoms, activities):
        row = HealthInsight(
            user_id=user_id,
            insight_type=draft.insight_type,
            title=draft.title,
            description=draft.description,
            data_points=draft.data_points,
            confidence=draft.confidence,
            generated_at=current,
            expires_at=current + timedelta(hours=INSIGHT_TTL_HOURS),
            dismissed=False,
        )
        db.add(row)
        rows.append(row)
        await create_from_template(
            db,
            user_id,
            AlertKind.health_insight,
            meta={"insightType": draft.insight_type.value, "confidence": draft.confidence},
            now=current,
            title=draft.title,
            description=draft.description,
        )
    if rows:
        await db.commit()
        logger.info("Generated %s insights for user %s", len(rows), user_id)
    return rows


async def list_insights(db: AsyncSession, user_id: int, *, limit: int = 10) -> list[HealthInsight]:
    return list((await db.execute(
        select(HealthInsight)
        .where(HealthInsight.user_id == user_id, HealthInsight.dismissed.is_(False))
        .order_by(HealthInsight.generated_at.desc(), HealthInsight.id.desc())
        .limit(limit)
    )).scalars().all())


async def dismiss_insight(db: AsyncSession, user_id: int, insight_id: int) -> bool:
    """False if the insight does not exist; PermissionError if someone else owns it."""
    row = await db.get(HealthInsight, insight_id)
    if row is None:
        return False
    if row.user_id != user_id:
        raise PermissionError(f"insight {insight_id} does not belong to user {user_id}")
    row.dismissed = True
    await db.commit()
    return True
