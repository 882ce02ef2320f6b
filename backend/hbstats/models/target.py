from sqlalchemy import Column, Integer, String, DateTime, Boolean
from sqlalchemy.sql import func
from hbstats.database import Base


class Target(Base):
    """A monitored endpoint. Written by the target configuration subsystem."""
    __tablename__ = "targets"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(Integer, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
