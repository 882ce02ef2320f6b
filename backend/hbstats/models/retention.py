from sqlalchemy import Column, Integer, DateTime
from sqlalchemy.orm import validates
from sqlalchemy.sql import func
from hbstats.database import Base
from hbstats.exceptions import ConfigurationError

# Allowed range (inclusive) per retention column, in days
RETENTION_LIMITS = {
    "heartbeat_retention_days": (7, 365),
    "hourly_retention_days": (30, 730),
    "daily_retention_days": (90, 1825),
}


def check_retention_days(field: str, days: int) -> int:
    low, high = RETENTION_LIMITS[field]
    if days is None or not low <= days <= high:
        raise ConfigurationError(f"{field} must be between {low} and {high} days, got {days}")
    return days


class RetentionPolicy(Base):
    """Per-account retention horizons. Accounts without a row use the configured defaults."""
    __tablename__ = "retention_policies"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(Integer, unique=True, nullable=False, index=True)
    heartbeat_retention_days = Column(Integer, nullable=False, default=90)
    hourly_retention_days = Column(Integer, nullable=False, default=365)
    daily_retention_days = Column(Integer, nullable=False, default=730)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    @validates("heartbeat_retention_days", "hourly_retention_days", "daily_retention_days")
    def _validate_days(self, key, value):
        return check_retention_days(key, value)
