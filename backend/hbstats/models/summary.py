from sqlalchemy import Column, Integer, Float, DateTime, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import declared_attr
from hbstats.database import Base


class SummaryColumns:
    """Columns shared by the hourly and daily rollup tables."""

    id = Column(Integer, primary_key=True, index=True)
    period_start = Column(DateTime(timezone=True), nullable=False)
    ping_min = Column(Integer, nullable=True)
    ping_max = Column(Integer, nullable=True)
    ping_avg = Column(Float, nullable=True)
    up_count = Column(Integer, nullable=False, default=0)
    down_count = Column(Integer, nullable=False, default=0)
    total_count = Column(Integer, nullable=False, default=0)
    uptime_percentage = Column(Float, nullable=False, default=0.0)
    computed_at = Column(DateTime(timezone=True), nullable=False)

    @declared_attr
    def target_id(cls):
        return Column(Integer, ForeignKey("targets.id", ondelete="CASCADE"), nullable=False)


class StatHourly(SummaryColumns, Base):
    """One row per target per UTC hour that had up/down heartbeats."""
    __tablename__ = "stat_hourly"

    __table_args__ = (
        UniqueConstraint("target_id", "period_start", name="uq_stat_hourly_target_period"),
        Index("ix_stat_hourly_period", "period_start"),
    )


class StatDaily(SummaryColumns, Base):
    """One row per target per UTC calendar day that had up/down heartbeats."""
    __tablename__ = "stat_daily"

    __table_args__ = (
        UniqueConstraint("target_id", "period_start", name="uq_stat_daily_target_period"),
        Index("ix_stat_daily_period", "period_start"),
    )
