# heartsense/settings/config.py  (Pydantic v2)
from typing import Literal, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    # ---------- Engagement rules ----------
    INACTIVITY_THRESHOLD_DAYS: int = Field(default=2, env=["INACTIVITY_THRESHOLD_DAYS"])
    CLEANUP_BATCH_SIZE: int = Field(default=500, env=["CLEANUP_BATCH_SIZE"])
    ALERT_LIST_WINDOW_DAYS: int = Field(default=7, env=["ALERT_LIST_WINDOW_DAYS"])

    # ---------- Elevated heart rate ----------
    DEFAULT_HR_THRESHOLD_BPM: int = Field(default=100, env=["DEFAULT_HR_THRESHOLD_BPM"])
    HR_COOLDOWN_MINUTES: int = Field(default=30, env=["HR_COOLDOWN_MINUTES"])
    # on-device style key/value store for the cooldown timestamps
    COOLDOWN_STORE_PATH: Optional[str] = Field(default=None, env=["COOLDOWN_STORE_PATH"])

    # ---------- Wearables ----------
    WEARABLE_TIMEOUT_SECONDS: float = Field(default=10.0, env=["WEARABLE_TIMEOUT_SECONDS"])
    HEALTH_SYNC_STALE_HOURS: int = Field(default=24, env=["HEALTH_SYNC_STALE_HOURS"])

    # ---------- Push delivery ----------
    PUSH_RELAY_URL: str = Field(
        default="https://exp.host/--/api/v2/push/send",
        env=["PUSH_RELAY_URL"],
    )
    PUSH_RELAY_TIMEOUT: float = Field(default=15.0, env=["PUSH_RELAY_TIMEOUT"])
    # "fcm" = firebase-admin messaging, "dummy" = log only
    PUSH_GATEWAY: Literal["fcm", "dummy"] = Field(default="fcm", env=["PUSH_GATEWAY"])
    FIREBASE_CREDENTIALS: Optional[str] = Field(default=None, env=["FIREBASE_CREDENTIALS"])

    # ---------- Scheduler ----------
    SCHEDULER_ENABLED: bool = Field(default=True, env=["SCHEDULER_ENABLED"])
    APP_TZ: str = Field(default="America/Los_Angeles", env=["APP_TZ", "TZ"])
    DAILY_REMINDER_CRON: str = Field(default="0 9 * * *", env=["DAILY_REMINDER_CRON"])
    INACTIVITY_CRON: str = Field(default="0 18 * * *", env=["INACTIVITY_CRON"])
    CLEANUP_CRON: str = Field(default="0 3 * * *", env=["CLEANUP_CRON"])
    ROLLING_WINDOW_CRON: str = Field(default="0 2 * * *", env=["ROLLING_WINDOW_CRON"])
    MONTHLY_RECAP_CRON: str = Field(default="0 1 1 * *", env=["MONTHLY_RECAP_CRON"])
    HEALTH_SYNC_CRON: str = Field(default="0 10 * * *", env=["HEALTH_SYNC_CRON"])
    INSIGHTS_CRON: str = Field(default="0 11 * * wed", env=["INSIGHTS_CRON"])

    # ---------- pydantic-settings config ----------
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,  # allow lower/upper env names
        extra="ignore",
    )


settings = Settings()
