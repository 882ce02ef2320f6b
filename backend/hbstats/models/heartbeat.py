"""Raw heartbeat model."""
import enum

from sqlalchemy import Column, Integer, SmallInteger, Text, DateTime, Boolean, ForeignKey, Index
from sqlalchemy.sql import func
from hbstats.database import Base


class HeartbeatStatus(enum.IntEnum):
    DOWN = 0
    UP = 1
    PENDING = 2
    MAINTENANCE = 3


class Heartbeat(Base):
    """Append-only health-check results per target.

    Rows are written by the probing subsystem and only ever deleted here,
    by the retention sweep.
    """
    __tablename__ = "heartbeats"

    id = Column(Integer, primary_key=True, index=True)
    target_id = Column(Integer, ForeignKey("targets.id", ondelete="CASCADE"), nullable=False)
    status = Column(SmallInteger, nullable=False)      # HeartbeatStatus
    latency_ms = Column(Integer, nullable=True)        # only when a response was measured
    important = Column(Boolean, default=False, nullable=False)  # state transition marker
    message = Column(Text, default="")
    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("ix_heartbeats_target_ts", "target_id", "timestamp"),
    )
