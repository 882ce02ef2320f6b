from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime


class RetentionPolicyUpdate(BaseModel):
    heartbeat_retention_days: int = Field(ge=7, le=365)
    hourly_retention_days: int = Field(ge=30, le=730)
    daily_retention_days: int = Field(ge=90, le=1825)


class RetentionPolicyResponse(BaseModel):
    account_id: int
    heartbeat_retention_days: int
    hourly_retention_days: int
    daily_retention_days: int
    is_default: bool = False
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}
