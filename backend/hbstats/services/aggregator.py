"""
Stats aggregator: rolls raw heartbeats up into stat_hourly / stat_daily rows.

Runs from the maintenance scheduler shortly after each hour and once a day.
Rows are written with INSERT ... ON CONFLICT DO UPDATE so re-running a period
replaces the row rather than adding to it, which also corrects rows after
late-arriving heartbeats.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy import select, func, case
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hbstats.exceptions import StoreError
from hbstats.models.heartbeat import Heartbeat, HeartbeatStatus
from hbstats.models.target import Target
from hbstats.services.periods import Grain, as_utc, utcnow

logger = logging.getLogger(__name__)

SUMMARY_KEY = ("target_id", "period_start")


@dataclass
class AggregationReport:
    grain: Grain
    period_start: datetime
    period_end: datetime
    written: int = 0
    skipped: int = 0
    failed: int = 0


def _insert_for(session: AsyncSession):
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise StoreError(f"upsert not supported on dialect {dialect!r}")
    return insert


def upsert_summary(session: AsyncSession, model, values: dict):
    """Build an upsert that replaces every non-key column of an existing row."""
    insert = _insert_for(session)
    stmt = insert(model).values(**values)
    return stmt.on_conflict_do_update(
        index_elements=list(SUMMARY_KEY),
        set_={col: stmt.excluded[col] for col in values if col not in SUMMARY_KEY},
    )


def rollup_query(target_id: int, start: datetime, end: datetime):
    """Aggregate a target's heartbeats in [start, end).

    Pending and maintenance heartbeats match neither CASE and so count
    towards nothing. Latency is only taken from up heartbeats.
    """
    is_up = Heartbeat.status == int(HeartbeatStatus.UP)
    is_down = Heartbeat.status == int(HeartbeatStatus.DOWN)
    up_latency = case((is_up, Heartbeat.latency_ms), else_=None)
    return select(
        func.min(up_latency),
        func.max(up_latency),
        func.avg(up_latency),
        func.coalesce(func.sum(case((is_up, 1), else_=0)), 0),
        func.coalesce(func.sum(case((is_down, 1), else_=0)), 0),
    ).where(
        Heartbeat.target_id == target_id,
        Heartbeat.timestamp >= start,
        Heartbeat.timestamp < end,
    )


class StatsAggregator:
    def __init__(self, session_factory: async_sessionmaker,
                 clock: Callable[[], datetime] = utcnow):
        self.session_factory = session_factory
        self.clock = clock

    async def aggregate_hourly(self, now: Optional[datetime] = None) -> AggregationReport:
        """Aggregate the previous full UTC hour."""
        start, _ = Grain.HOURLY.previous_period(now or self.clock())
        return await self.aggregate_period(Grain.HOURLY, start)

    async def aggregate_daily(self, now: Optional[datetime] = None) -> AggregationReport:
        """Aggregate the previous UTC calendar day."""
        start, _ = Grain.DAILY.previous_period(now or self.clock())
        return await self.aggregate_period(Grain.DAILY, start)

    async def aggregate_period(self, grain: Grain, period_start: datetime) -> AggregationReport:
        start, end = grain.period_containing(period_start)
        report = AggregationReport(grain=grain, period_start=start, period_end=end)
        logger.info("Starting %s aggregation for %s", grain.value, start.isoformat())

        async with self.session_factory() as db:
            result = await db.execute(select(Target.id).order_by(Target.id))
            target_ids = list(result.scalars().all())

        for target_id in target_ids:
            try:
                async with self.session_factory() as db:
                    row = await self.aggregate_target(db, grain, target_id, start, end)
                    await db.commit()
            except Exception as e:
                report.failed += 1
                logger.warning("Failed to aggregate %s stats for target %d: %s",
                               grain.value, target_id, e)
                continue
            if row is None:
                report.skipped += 1
            else:
                report.written += 1

        logger.info(
            "%s aggregation for %s completed: %d written, %d without data, %d failed",
            grain.value.capitalize(), start.isoformat(),
            report.written, report.skipped, report.failed,
        )
        return report

    async def aggregate_target(self, db: AsyncSession, grain: Grain, target_id: int,
                               start: datetime, end: datetime) -> Optional[dict]:
        """Compute and upsert one summary row. Returns its values, or None if nothing was written.

        The caller owns the transaction.
        """
        result = await db.execute(rollup_query(target_id, start, end))
        ping_min, ping_max, ping_avg, up_count, down_count = result.one()

        up_count, down_count = int(up_count), int(down_count)
        total_count = up_count + down_count
        if total_count == 0:
            return None

        values = {
            "target_id": target_id,
            "period_start": as_utc(start),
            "ping_min": ping_min,
            "ping_max": ping_max,
            "ping_avg": float(ping_avg) if ping_avg is not None else None,
            "up_count": up_count,
            "down_count": down_count,
            "total_count": total_count,
            "uptime_percentage": 100.0 * up_count / total_count,
            "computed_at": self.clock(),
        }
        await db.execute(upsert_summary(db, grain.model, values))
        return values
