from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from hbstats.config import settings
from hbstats.database import get_db
from hbstats.schemas.retention import RetentionPolicyResponse, RetentionPolicyUpdate
from hbstats.services.retention import get_policy, save_policy

router = APIRouter(prefix="/api/accounts", tags=["Retention"])


@router.get("/{account_id}/retention", response_model=RetentionPolicyResponse)
async def read_retention_policy(account_id: int, db: AsyncSession = Depends(get_db)):
    policy = await get_policy(db, account_id, settings)
    return RetentionPolicyResponse(**vars(policy))


@router.put("/{account_id}/retention", response_model=RetentionPolicyResponse)
async def update_retention_policy(
    account_id: int,
    payload: RetentionPolicyUpdate,
    db: AsyncSession = Depends(get_db),
):
    policy = await save_policy(db, account_id, **payload.model_dump())
    return RetentionPolicyResponse.model_validate(policy)
