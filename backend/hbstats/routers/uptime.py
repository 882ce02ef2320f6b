"""
Uptime API: on-demand uptime statistics and bucketed history per target.
"""
from datetime import timedelta
from typing import Dict, List

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hbstats.database import get_db, get_session_factory
from hbstats.models.target import Target
from hbstats.schemas.uptime import SummaryRowResponse, UptimePoint, UptimeStats
from hbstats.services.calculator import PERIODS, UptimeCalculator
from hbstats.services.periods import Grain

router = APIRouter(prefix="/api", tags=["Uptime"])


def get_calculator(session_factory: async_sessionmaker = Depends(get_session_factory)) -> UptimeCalculator:
    return UptimeCalculator(session_factory)


async def _require_target(db: AsyncSession, target_id: int) -> Target:
    target = await db.get(Target, target_id)
    if not target:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Target not found")
    return target


@router.get("/targets/{target_id}/uptime", response_model=UptimeStats)
async def target_uptime(
    target_id: int,
    period: str = Query("24h", pattern="^(24h|7d|30d|90d)$"),
    db: AsyncSession = Depends(get_db),
    calculator: UptimeCalculator = Depends(get_calculator),
):
    await _require_target(db, target_id)
    return await calculator.uptime_for_period(target_id, PERIODS[period])


@router.get("/targets/{target_id}/uptime/history", response_model=List[UptimePoint])
async def target_daily_history(
    target_id: int,
    days: int = Query(30, ge=1, le=365),
    db: AsyncSession = Depends(get_db),
    calculator: UptimeCalculator = Depends(get_calculator),
):
    """Daily uptime; days without heartbeats are omitted."""
    await _require_target(db, target_id)
    return list(await calculator.daily_history(target_id, days))


@router.get("/targets/{target_id}/uptime/hourly", response_model=List[UptimePoint])
async def target_hourly_history(
    target_id: int,
    db: AsyncSession = Depends(get_db),
    calculator: UptimeCalculator = Depends(get_calculator),
):
    """Hourly uptime for the last 24 hours; hours without heartbeats are omitted."""
    await _require_target(db, target_id)
    return list(await calculator.hourly_history(target_id))


@router.get("/targets/{target_id}/summaries", response_model=List[SummaryRowResponse])
async def target_summaries(
    target_id: int,
    grain: Grain = Query(Grain.HOURLY),
    days: int = Query(7, ge=1, le=1825),
    db: AsyncSession = Depends(get_db),
    calculator: UptimeCalculator = Depends(get_calculator),
):
    """Stored rollup rows, as written by the aggregator."""
    await _require_target(db, target_id)
    since = calculator.clock() - timedelta(days=days)
    return await calculator.summary_rows(target_id, grain, since)


@router.get("/uptime", response_model=Dict[int, UptimeStats])
async def all_targets_uptime(
    period: str = Query("24h", pattern="^(24h|7d|30d|90d)$"),
    calculator: UptimeCalculator = Depends(get_calculator),
):
    return await calculator.uptime_for_all_active_targets(PERIODS[period])
