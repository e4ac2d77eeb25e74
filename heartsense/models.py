from sqlalchemy import (
    Column, Integer, String, Boolean, ForeignKey, Text, DateTime, Float,
    UniqueConstraint, Index,
)
from sqlalchemy.orm import relationship
import sqlalchemy as sa
from .database import Base
from datetime import datetime, timezone
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.mutable import MutableDict
from sqlalchemy import Enum as SAEnum
import enum

# JSONB on Postgres, plain JSON elsewhere (sqlite in tests)
JSON = sa.JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    # naive UTC; all DateTime columns are TIMESTAMP WITHOUT TIME ZONE
    return datetime.now(timezone.utc).replace(tzinfo=None)


class EntryCategory(str, enum.Enum):
    symptom = "symptom"
    activity = "activity"
    wellbeing = "wellbeing"
    medical_condition = "medical_condition"


class AlertType(str, enum.Enum):
    inactivity_warning = "inactivity_warning"
    streak_at_risk = "streak_at_risk"
    streak_achieved = "streak_achieved"
    milestone_reached = "milestone_reached"
    weekly_summary = "weekly_summary"
    health_insight = "health_insight"


class AlertPriority(str, enum.Enum):
    low = "low"
    medium = "medium"
    high = "high"


class InsightType(str, enum.Enum):
    symptom_pattern = "symptom_pattern"
    activity_correlation = "activity_correlation"
    trend_analysis = "trend_analysis"
    recommendation = "recommendation"


# ---------------------------
# USER MODEL
# ---------------------------
class User(Base):
    __tablename__ = "user"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    display_name = Column(String, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    is_superuser = Column(Boolean, default=False, nullable=False)
    is_verified = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow)

    preferences = relationship(
        "NotificationPreferences",
        back_populates="user",
        uselist=False,
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    engagement_stats = relationship(
        "EngagementStats",
        back_populates="user",
        uselist=False,
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


# ---------------------------
# PREFERENCES
# ---------------------------
class NotificationPreferences(Base):
    __tablename__ = "notification_preferences"

    user_id = Column(Integer, ForeignKey("user.id", ondelete="CASCADE"), primary_key=True)
    notify_daily_reminder = Column(Boolean, default=True, nullable=False)
    notify_messages = Column(Boolean, default=True, nullable=False)
    notify_health_insights = Column(Boolean, default=True, nullable=False)
    notify_activity_milestones = Column(Boolean, default=True, nullable=False)
    elevated_heart_rate_threshold_bpm = Column(Integer, nullable=True)  # NULL -> settings default
    push_token = Column(String(255), nullable=True)
    push_token_updated_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="preferences")


# ---------------------------
# ENGAGEMENT COUNTERS
# ---------------------------
class EngagementStats(Base):
    __tablename__ = "engagement_stats"

    user_id = Column(Integer, ForeignKey("user.id", ondelete="CASCADE"), primary_key=True)
    total_entries_logged = Column(Integer, default=0, nullable=False)
    total_days_active = Column(Integer, default=0, nullable=False)
    last_activity_date = Column(String(10), nullable=True, index=True)  # YYYY-MM-DD
    last_activity_at = Column(DateTime, nullable=True)
    weekly_entry_count = Column(Integer, default=0, nullable=False)
    monthly_entry_count = Column(Integer, default=0, nullable=False)
    # only maintained by a full recalculation
    current_streak = Column(Integer, default=0, nullable=False)
    longest_streak = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="engagement_stats")


class DailyEngagementLog(Base):
    __tablename__ = "daily_engagement_log"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("user.id", ondelete="CASCADE"), index=True, nullable=False)
    date = Column(String(10), nullable=False, index=True)  # YYYY-MM-DD
    entry_count = Column(Integer, default=0, nullable=False)
    symptom_count = Column(Integer, default=0, nullable=False)
    activity_count = Column(Integer, default=0, nullable=False)
    wellbeing_logged = Column(Boolean, default=False, nullable=False)
    medical_condition_logged = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (UniqueConstraint("user_id", "date", name="uq_daily_log_user_date"),)


class EngagementEvent(Base):
    """Append-only log of entries a user created."""
    __tablename__ = "engagement_event"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("user.id", ondelete="CASCADE"), index=True, nullable=False)
    category = Column(SAEnum(EntryCategory), nullable=False)
    occurred_on = Column(String(10), nullable=False, index=True)
    source_id = Column(String(128), nullable=True)  # id of the health record that produced it
    details = Column(MutableDict.as_mutable(JSON), default=dict, nullable=False)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        Index("ix_engagement_event_user_day", "user_id", "occurred_on"),
    )


# ---------------------------
# ALERTS
# ---------------------------
class Alert(Base):
    __tablename__ = "alert"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("user.id", ondelete="CASCADE"), index=True, nullable=False)
    alert_type = Column(SAEnum(AlertType), nullable=False)
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    priority = Column(SAEnum(AlertPriority), default=AlertPriority.medium, nullable=False)
    read = Column(Boolean, default=False, nullable=False)
    action_url = Column(String(255), nullable=True)  # deep link
    meta = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=True, index=True)

    __table_args__ = (
        Index("ix_alert_user_type_created", "user_id", "alert_type", "created_at"),
    )


class UserMilestone(Base):
    __tablename__ = "user_milestone"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("user.id", ondelete="CASCADE"), index=True, nullable=False)
    milestone_type = Column(String(32), nullable=False)
    achieved_at = Column(DateTime, default=utcnow, nullable=False)
    notified = Column(Boolean, default=False, nullable=False)

    # write-once per (user, milestone)
    __table_args__ = (UniqueConstraint("user_id", "milestone_type", name="uq_user_milestone_once"),)


# ---------------------------
# INSIGHTS & WEARABLE DATA
# ---------------------------
class HealthInsight(Base):
    __tablename__ = "health_insight"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("user.id", ondelete="CASCADE"), index=True, nullable=False)
    insight_type = Column(SAEnum(InsightType), nullable=False)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False)
    data_points = Column(JSON, nullable=True)
    confidence = Column(String(8), default="medium", nullable=False)  # low|medium|high
    generated_at = Column(DateTime, default=utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=True)
    dismissed = Column(Boolean, default=False, nullable=False)


class HealthSample(Base):
    __tablename__ = "health_sample"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("user.id", ondelete="CASCADE"), index=True, nullable=False)
    data_type = Column(String(48), nullable=False)  # heartRate, restingHeartRate, hrv, steps ...
    value = Column(Float, nullable=False)
    unit = Column(String(16), nullable=True)
    recorded_at = Column(DateTime, nullable=False)
    synced_at = Column(DateTime, default=utcnow, nullable=False)

    # re-syncing the same sample is a no-op
    __table_args__ = (
        UniqueConstraint("user_id", "data_type", "recorded_at", name="uq_health_sample_once"),
        Index("ix_health_sample_user_synced", "user_id", "synced_at"),
    )
