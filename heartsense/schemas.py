from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi_users import schemas
from pydantic import BaseModel, Field, field_validator

from .models import AlertPriority, AlertType, EntryCategory, InsightType


# =========================
# USER SCHEMAS
# =========================
class UserRead(schemas.BaseUser[int]):
    display_name: Optional[str] = None


class UserCreate(schemas.BaseUserCreate):
    display_name: Optional[str] = None


class UserUpdate(schemas.BaseUserUpdate):
    display_name: Optional[str] = None


# =========================
# ENGAGEMENT SCHEMAS
# =========================
class EventCreate(BaseModel):
    category: EntryCategory
    occurred_on: Optional[str] = Field(default=None, description="YYYY-MM-DD; defaults to today")
    source_id: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("occurred_on")
    @classmethod
    def normalize_day(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        # accepts full timestamps too; only the calendar day is kept
        return datetime.fromisoformat(v[:10]).date().isoformat()


class EngagementStatsRead(BaseModel):
    user_id: int
    total_entries_logged: int = 0
    total_days_active: int = 0
    last_activity_date: Optional[str] = None
    weekly_entry_count: int = 0
    monthly_entry_count: int = 0
    current_streak: int = 0
    longest_streak: int = 0
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class EventResult(BaseModel):
    stats: EngagementStatsRead
    new_milestones: List[str] = []


class DailyCount(BaseModel):
    date: str
    entry_count: int


class MilestoneRead(BaseModel):
    id: int
    milestone_type: str
    achieved_at: datetime
    notified: bool

    class Config:
        from_attributes = True


class LeaderboardRowRead(BaseModel):
    rank: int
    value: int
    is_current_user: bool


class LeaderboardRead(BaseModel):
    top_streaks: List[LeaderboardRowRead]
    top_entries: List[LeaderboardRowRead]
    streak_rank: int
    entries_rank: int


# =========================
# ALERT SCHEMAS
# =========================
class AlertRead(BaseModel):
    id: int
    alert_type: AlertType
    title: str
    message: str
    priority: AlertPriority
    read: bool
    action_url: Optional[str] = None
    meta: Optional[Dict[str, Any]] = None
    created_at: datetime
    expires_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class AlertList(BaseModel):
    alerts: List[AlertRead]
    unread_count: int


# =========================
# PREFERENCE SCHEMAS
# =========================
class PreferencesRead(BaseModel):
    notify_daily_reminder: bool = True
    notify_messages: bool = True
    notify_health_insights: bool = True
    notify_activity_milestones: bool = True
    elevated_heart_rate_threshold_bpm: Optional[int] = None
    has_push_token: bool = False

    class Config:
        from_attributes = True


class PreferencesUpdate(BaseModel):
    notify_daily_reminder: Optional[bool] = None
    notify_messages: Optional[bool] = None
    notify_health_insights: Optional[bool] = None
    notify_activity_milestones: Optional[bool] = None


class ThresholdUpdate(BaseModel):
    threshold_bpm: int = Field(ge=40, le=220)


class PushTokenUpdate(BaseModel):
    token: str = Field(min_length=1, max_length=255)


# =========================
# VITALS SCHEMAS
# =========================
def _naive_utc(v: datetime) -> datetime:
    if v.tzinfo is not None:
        v = v.astimezone(timezone.utc).replace(tzinfo=None)
    return v


class HeartRateReading(BaseModel):
    bpm: float = Field(gt=0, lt=300)
    recorded_at: Optional[datetime] = None

    @field_validator("recorded_at")
    @classmethod
    def to_naive_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _naive_utc(v) if v else v


class ElevatedCheckRead(BaseModel):
    is_elevated: bool
    heart_rate_bpm: Optional[float] = None
    threshold: int
    notification_sent: bool
    suppressed: bool

    class Config:
        from_attributes = True


class SampleIn(BaseModel):
    metric: str = Field(min_length=1, max_length=48)
    value: float
    unit: Optional[str] = None
    recorded_at: datetime

    @field_validator("recorded_at")
    @classmethod
    def to_naive_utc(cls, v: datetime) -> datetime:
        return _naive_utc(v)


class SampleBatch(BaseModel):
    samples: List[SampleIn]


class SampleSyncResult(BaseModel):
    received: int
    stored: int


# =========================
# INSIGHT SCHEMAS
# =========================
class InsightRead(BaseModel):
    id: int
    insight_type: InsightType
    title: str
    description: str
    data_points: Optional[Dict[str, Any]] = None
    confidence: str
    generated_at: datetime
    expires_at: Optional[datetime] = None
    dismissed: bool

    class Config:
        from_attributes = True


class InsightRequestResult(BaseModel):
    insights_generated: int
