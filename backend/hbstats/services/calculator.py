"""
Uptime calculator: on-demand uptime statistics and bucketed history.

Reads raw heartbeats rather than the summary tables so results are correct
between scheduler runs. Pending and maintenance heartbeats are left out of
every count, matching the aggregator.
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Tuple

from sqlalchemy import select, func, case
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from hbstats.exceptions import StoreError
from hbstats.models.heartbeat import Heartbeat, HeartbeatStatus
from hbstats.models.target import Target
from hbstats.schemas.uptime import UptimePoint, UptimeStats
from hbstats.services.periods import Grain, as_utc, utcnow

logger = logging.getLogger(__name__)

PERIODS = {
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
    "90d": timedelta(days=90),
}

COUNTED_STATUSES = (int(HeartbeatStatus.DOWN), int(HeartbeatStatus.UP))


def uptime_percentage(up_count: int, total_count: int) -> float:
    if total_count <= 0:
        return 0.0
    return 100.0 * up_count / total_count


def bucket_expression(dialect: str, grain: Grain):
    """SQL expression grouping heartbeat timestamps into UTC hour/day buckets."""
    if dialect == "postgresql":
        unit = "hour" if grain is Grain.HOURLY else "day"
        return func.date_trunc(unit, func.timezone("UTC", Heartbeat.timestamp))
    if dialect == "sqlite":
        return func.strftime(grain.label_format, Heartbeat.timestamp)
    raise StoreError(f"bucketing not supported on dialect {dialect!r}")


def bucket_label(value, grain: Grain) -> str:
    if isinstance(value, datetime):
        return value.strftime(grain.label_format)
    return str(value)


class UptimeHistory:
    """Finite, re-iterable sequence of per-bucket uptime points.

    The (bucket, total, up) counts are read in full when the history is built;
    only the ``UptimePoint`` objects are created lazily, on each iteration.
    Buckets without heartbeats are absent, so a
    missing bucket means "no data", not 0%.
    """

    def __init__(self, grain: Grain, buckets: Iterable[Tuple[str, int, int]]):
        self.grain = grain
        self._buckets = tuple(buckets)

    def __iter__(self) -> Iterator[UptimePoint]:
        for label, total_count, up_count in self._buckets:
            yield UptimePoint(
                bucket=label,
                uptime_percentage=uptime_percentage(up_count, total_count),
                total_count=total_count,
                up_count=up_count,
            )

    def __len__(self) -> int:
        return len(self._buckets)

    def __repr__(self) -> str:
        return f"<UptimeHistory {self.grain.value} buckets={len(self._buckets)}>"


class UptimeCalculator:
    def __init__(self, session_factory: async_sessionmaker,
                 clock: Callable[[], datetime] = utcnow):
        self.session_factory = session_factory
        self.clock = clock

    async def uptime_for_period(self, target_id: int, duration: timedelta) -> UptimeStats:
        """Uptime over [now - duration, now]."""
        end = as_utc(self.clock())
        return await self.uptime_for_range(target_id, end - duration, end)

    async def uptime_for_range(self, target_id: int, start: datetime, end: datetime) -> UptimeStats:
        """Uptime over the inclusive window [start, end]. Zero heartbeats yields 0%."""
        start, end = as_utc(start), as_utc(end)
        if start > end:
            raise ValueError(f"start {start.isoformat()} is after end {end.isoformat()}")

        is_up = Heartbeat.status == int(HeartbeatStatus.UP)
        is_down = Heartbeat.status == int(HeartbeatStatus.DOWN)
        query = select(
            func.coalesce(func.sum(case((is_up, 1), else_=0)), 0),
            func.coalesce(func.sum(case((is_down, 1), else_=0)), 0),
            func.avg(case((is_up, Heartbeat.latency_ms), else_=None)),
        ).where(
            Heartbeat.target_id == target_id,
            Heartbeat.timestamp >= start,
            Heartbeat.timestamp <= end,
        )

        try:
            async with self.session_factory() as db:
                up_count, down_count, ping_avg = (await db.execute(query)).one()
        except SQLAlchemyError as e:
            raise StoreError(f"uptime query failed for target {target_id}: {e}") from e

        up_count, down_count = int(up_count), int(down_count)
        total_count = up_count + down_count
        return UptimeStats(
            target_id=target_id,
            uptime_percentage=uptime_percentage(up_count, total_count),
            total_count=total_count,
            up_count=up_count,
            down_count=down_count,
            ping_avg=float(ping_avg) if ping_avg is not None else None,
            start_time=start,
            end_time=end,
        )

    async def uptime_for_all_active_targets(self, duration: timedelta) -> Dict[int, UptimeStats]:
        """Per-target uptime for every active target. Targets that fail are left out."""
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    select(Target.id).where(Target.is_active == True).order_by(Target.id)
                )
                target_ids = list(result.scalars().all())
        except SQLAlchemyError as e:
            raise StoreError(f"could not list active targets: {e}") from e

        results = {}
        for target_id in target_ids:
            try:
                results[target_id] = await self.uptime_for_period(target_id, duration)
            except Exception as e:
                logger.warning("Uptime calculation failed for target %d: %s", target_id, e)
        return results

    async def daily_history(self, target_id: int, days: int = 30) -> UptimeHistory:
        """Per UTC calendar day over the trailing ``days`` days."""
        end = as_utc(self.clock())
        return await self._history(target_id, Grain.DAILY, end - timedelta(days=days), end)

    async def hourly_history(self, target_id: int, hours: int = 24) -> UptimeHistory:
        """Per UTC wall-clock hour over the trailing ``hours`` hours."""
        end = as_utc(self.clock())
        return await self._history(target_id, Grain.HOURLY, end - timedelta(hours=hours), end)

    async def _history(self, target_id: int, grain: Grain,
                       start: datetime, end: datetime) -> UptimeHistory:
        try:
            async with self.session_factory() as db:
                bucket = bucket_expression(db.get_bind().dialect.name, grain).label("bucket")
                query = (
                    select(
                        bucket,
                        func.count(),
                        func.sum(case((Heartbeat.status == int(HeartbeatStatus.UP), 1), else_=0)),
                    )
                    .where(
                        Heartbeat.target_id == target_id,
                        Heartbeat.timestamp >= start,
                        Heartbeat.timestamp <= end,
                        Heartbeat.status.in_(COUNTED_STATUSES),
                    )
                    .group_by(bucket)
                    .order_by(bucket)
                )
                rows = (await db.execute(query)).all()
        except SQLAlchemyError as e:
            raise StoreError(f"{grain.value} history query failed for target {target_id}: {e}") from e

        return UptimeHistory(
            grain,
            ((bucket_label(label, grain), int(total), int(up)) for label, total, up in rows),
        )

    async def summary_rows(self, target_id: int, grain: Grain, since: datetime) -> List:
        """Stored rollup rows for a target with period_start >= since, oldest first."""
        model = grain.model
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    select(model)
                    .where(model.target_id == target_id, model.period_start >= as_utc(since))
                    .order_by(model.period_start)
                )
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise StoreError(f"{grain.value} summary query failed for target {target_id}: {e}") from e

    async def summary_history(self, target_id: int, grain: Grain,
                              since: Optional[datetime] = None) -> UptimeHistory:
        """History from the rollup tables instead of raw heartbeats. Excludes periods not yet aggregated."""
        if since is None:
            since = as_utc(self.clock()) - (timedelta(days=30) if grain is Grain.DAILY else timedelta(hours=24))
        rows = await self.summary_rows(target_id, grain, since)
        return UptimeHistory(
            grain,
            ((as_utc(r.period_start).strftime(grain.label_format), r.total_count, r.up_count) for r in rows),
        )
