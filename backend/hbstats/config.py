from pydantic import Field, field_validator
from pydantic_settings import BaseSettings
from typing import Optional

from hbstats.services.cron import CronSchedule


class Settings(BaseSettings):
    # Application
    APP_NAME: str = "Heartbeat Stats"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "postgresql+asyncpg://hbstats:hbstats@db:5432/hbstats"

    # Scheduler (five-field cron, evaluated in UTC)
    SCHEDULER_ENABLED: bool = True
    HOURLY_ROLLUP_CRON: str = "5 * * * *"        # minute 5, after the hour's heartbeats landed
    DAILY_ROLLUP_CRON: str = "0 2 * * *"
    HEARTBEAT_RETENTION_CRON: str = "14 3 * * *"
    SUMMARY_RETENTION_CRON: str = "30 3 * * *"
    COMPACTION_CRON: str = "30 2 * * 0"          # Sunday

    # Retention defaults for accounts without a stored policy, within the
    # same ranges a stored policy is held to (models/retention.py)
    DEFAULT_HEARTBEAT_RETENTION_DAYS: int = Field(90, ge=7, le=365)
    DEFAULT_HOURLY_RETENTION_DAYS: int = Field(365, ge=30, le=730)
    DEFAULT_DAILY_RETENTION_DAYS: int = Field(730, ge=90, le=1825)
    IMPORTANT_HEARTBEAT_RETENTION_DAYS: Optional[int] = Field(None, ge=1)  # None = keep transition markers forever

    @field_validator(
        "HOURLY_ROLLUP_CRON",
        "DAILY_ROLLUP_CRON",
        "HEARTBEAT_RETENTION_CRON",
        "SUMMARY_RETENTION_CRON",
        "COMPACTION_CRON",
    )
    @classmethod
    def cron_must_parse(cls, value: str) -> str:
        CronSchedule.parse(value)
        return value

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
