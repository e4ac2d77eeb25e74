"""Engagement baseline: users, preferences, counters, alerts, milestones, insights, samples

Revision ID: 3f6a0c1d9e2b
Revises:
Create Date: 2026-02-02 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "3f6a0c1d9e2b"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")

entry_category = sa.Enum("symptom", "activity", "wellbeing", "medical_condition", name="entrycategory")
alert_type = sa.Enum(
    "inactivity_warning", "streak_at_risk", "streak_achieved",
    "milestone_reached", "weekly_summary", "health_insight",
    name="alerttype",
)
alert_priority = sa.Enum("low", "medium", "high", name="alertpriority")
insight_type = sa.Enum(
    "symptom_pattern", "activity_correlation", "trend_analysis", "recommendation",
    name="insighttype",
)


def _user_fk() -> sa.ForeignKey:
    return sa.ForeignKey("user.id", ondelete="CASCADE")


def upgrade() -> None:
    op.create_table(
        "user",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("hashed_password", sa.String(), nullable=False),
        sa.Column("display_name", sa.String(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_superuser", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_user_id", "user", ["id"])
    op.create_index("ix_user_email", "user", ["email"], unique=True)

    op.create_table(
        "notification_preferences",
        sa.Column("user_id", sa.Integer(), _user_fk(), primary_key=True),
        sa.Column("notify_daily_reminder", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("notify_messages", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("notify_health_insights", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("notify_activity_milestones", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("elevated_heart_rate_threshold_bpm", sa.Integer(), nullable=True),
        sa.Column("push_token", sa.String(length=255), nullable=True),
        sa.Column("push_token_updated_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    )

    op.create_table(
        "engagement_stats",
        sa.Column("user_id", sa.Integer(), _user_fk(), primary_key=True),
        sa.Column("total_entries_logged", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_days_active", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_activity_date", sa.String(length=10), nullable=True),
        sa.Column("last_activity_at", sa.DateTime(), nullable=True),
        sa.Column("weekly_entry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("monthly_entry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("current_streak", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("longest_streak", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_engagement_stats_last_activity_date", "engagement_stats", ["last_activity_date"])

    op.create_table(
        "daily_engagement_log",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), _user_fk(), nullable=False),
        sa.Column("date", sa.String(length=10), nullable=False),
        sa.Column("entry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("symptom_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("activity_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("wellbeing_logged", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("medical_condition_logged", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("user_id", "date", name="uq_daily_log_user_date"),
    )
    op.create_index("ix_daily_engagement_log_user_id", "daily_engagement_log", ["user_id"])
    op.create_index("ix_daily_engagement_log_date", "daily_engagement_log", ["date"])

    op.create_table(
        "engagement_event",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), _user_fk(), nullable=False),
        sa.Column("category", entry_category, nullable=False),
        sa.Column("occurred_on", sa.String(length=10), nullable=False),
        sa.Column("source_id", sa.String(length=128), nullable=True),
        sa.Column("details", JSON, nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_engagement_event_user_id", "engagement_event", ["user_id"])
    op.create_index("ix_engagement_event_occurred_on", "engagement_event", ["occurred_on"])
    op.create_index("ix_engagement_event_user_day", "engagement_event", ["user_id", "occurred_on"])

    op.create_table(
        "alert",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), _user_fk(), nullable=False),
        sa.Column("alert_type", alert_type, nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("priority", alert_priority, nullable=False),
        sa.Column("read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("action_url", sa.String(length=255), nullable=True),
        sa.Column("meta", JSON, nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_alert_id", "alert", ["id"])
    op.create_index("ix_alert_user_id", "alert", ["user_id"])
    op.create_index("ix_alert_expires_at", "alert", ["expires_at"])
    op.create_index("ix_alert_user_type_created", "alert", ["user_id", "alert_type", "created_at"])

    op.create_table(
        "user_milestone",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), _user_fk(), nullable=False),
        sa.Column("milestone_type", sa.String(length=32), nullable=False),
        sa.Column("achieved_at", sa.DateTime(), nullable=False),
        sa.Column("notified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.UniqueConstraint("user_id", "milestone_type", name="uq_user_milestone_once"),
    )
    op.create_index("ix_user_milestone_user_id", "user_milestone", ["user_id"])

    op.create_table(
        "health_insight",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), _user_fk(), nullable=False),
        sa.Column("insight_type", insight_type, nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("data_points", JSON, nullable=True),
        sa.Column("confidence", sa.String(length=8), nullable=False, server_default="medium"),
        sa.Column("generated_at", sa.DateTime(), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=True),
        sa.Column("dismissed", sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.create_index("ix_health_insight_user_id", "health_insight", ["user_id"])

    op.create_table(
        "health_sample",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), _user_fk(), nullable=False),
        sa.Column("data_type", sa.String(length=48), nullable=False),
        sa.Column("value", sa.Float(), nullable=False),
        sa.Column("unit", sa.String(length=16), nullable=True),
        sa.Column("recorded_at", sa.DateTime(), nullable=False),
        sa.Column("synced_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("user_id", "data_type", "recorded_at", name="uq_health_sample_once"),
    )
    op.create_index("ix_health_sample_user_id", "health_sample", ["user_id"])
    op.create_index("ix_health_sample_user_synced", "health_sample", ["user_id", "synced_at"])


def downgrade() -> None:
    for table in (
        "health_sample",
        "health_insight",
        "user_milestone",
        "alert",
        "engagement_event",
        "daily_engagement_log",
        "engagement_stats",
        "notification_preferences",
        "user",
    ):
        op.drop_table(table)
    bind = op.get_bind()
    for enum in (insight_type, alert_priority, alert_type, entry_category):
        enum.drop(bind, checkfirst=True)
