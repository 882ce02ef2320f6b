from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime


class UptimeStats(BaseModel):
    target_id: int
    uptime_percentage: float = Field(ge=0.0, le=100.0)
    total_count: int
    up_count: int
    down_count: int
    ping_avg: Optional[float] = None    # None when the window has no up heartbeat with latency
    start_time: datetime
    end_time: datetime


class UptimePoint(BaseModel):
    bucket: str                         # "2024-05-01" or "2024-05-01 13:00:00", UTC
    uptime_percentage: float = Field(ge=0.0, le=100.0)
    total_count: int
    up_count: int


class SummaryRowResponse(BaseModel):
    target_id: int
    period_start: datetime
    ping_min: Optional[int] = None
    ping_max: Optional[int] = None
    ping_avg: Optional[float] = None
    up_count: int
    down_count: int
    total_count: int
    uptime_percentage: float
    computed_at: datetime

    model_config = {"from_attributes": True}
