"""
Retention enforcement: per-account cleanup of heartbeats and rollup rows,
plus periodic storage compaction.

Horizons are strict: a row is deleted when its timestamp (or period_start)
is older than ``now - retention_days``. A row exactly at the horizon stays.
"""
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from sqlalchemy import select, delete, text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from hbstats.models.heartbeat import Heartbeat
from hbstats.models.retention import RetentionPolicy, check_retention_days
from hbstats.models.summary import StatHourly, StatDaily
from hbstats.models.target import Target
from hbstats.services.periods import as_utc, utcnow

logger = logging.getLogger(__name__)

COMPACTED_TABLES = ("heartbeats", "stat_hourly", "stat_daily")


@dataclass
class PolicyValues:
    account_id: int
    heartbeat_retention_days: int
    hourly_retention_days: int
    daily_retention_days: int
    is_default: bool = False


@dataclass
class RetentionReport:
    deleted: Dict[str, int] = field(default_factory=lambda: defaultdict(int))
    failed: List[str] = field(default_factory=list)

    @property
    def total_deleted(self) -> int:
        return sum(self.deleted.values())


def default_policy(account_id: int, settings) -> PolicyValues:
    return PolicyValues(
        account_id=account_id,
        heartbeat_retention_days=settings.DEFAULT_HEARTBEAT_RETENTION_DAYS,
        hourly_retention_days=settings.DEFAULT_HOURLY_RETENTION_DAYS,
        daily_retention_days=settings.DEFAULT_DAILY_RETENTION_DAYS,
        is_default=True,
    )


async def get_policy(db: AsyncSession, account_id: int, settings) -> PolicyValues:
    result = await db.execute(select(RetentionPolicy).where(RetentionPolicy.account_id == account_id))
    policy = result.scalar_one_or_none()
    if policy is None:
        return default_policy(account_id, settings)
    return PolicyValues(
        account_id=account_id,
        heartbeat_retention_days=policy.heartbeat_retention_days,
        hourly_retention_days=policy.hourly_retention_days,
        daily_retention_days=policy.daily_retention_days,
    )


async def save_policy(db: AsyncSession, account_id: int, heartbeat_retention_days: int,
                      hourly_retention_days: int, daily_retention_days: int) -> RetentionPolicy:
    """Create or update an account's policy. Raises ConfigurationError on out-of-range values."""
    # Validate everything before touching the row so a bad value leaves it unchanged
    check_retention_days("heartbeat_retention_days", heartbeat_retention_days)
    check_retention_days("hourly_retention_days", hourly_retention_days)
    check_retention_days("daily_retention_days", daily_retention_days)

    result = await db.execute(select(RetentionPolicy).where(RetentionPolicy.account_id == account_id))
    policy = result.scalar_one_or_none()
    if policy is None:
        policy = RetentionPolicy(account_id=account_id)
        db.add(policy)
    policy.heartbeat_retention_days = heartbeat_retention_days
    policy.hourly_retention_days = hourly_retention_days
    policy.daily_retention_days = daily_retention_days
    await db.commit()
    await db.refresh(policy)
    logger.info(
        "Retention policy for account %d set to %d/%d/%d days (heartbeat/hourly/daily)",
        account_id, heartbeat_retention_days, hourly_retention_days, daily_retention_days,
    )
    return policy


class RetentionEnforcer:
    def __init__(self, session_factory: async_sessionmaker, settings,
                 clock: Callable[[], datetime] = utcnow, engine: Optional[AsyncEngine] = None):
        self.session_factory = session_factory
        self.settings = settings
        self.clock = clock
        self.engine = engine or session_factory.kw.get("bind")

    async def _targets_by_account(self) -> Dict[int, List[int]]:
        async with self.session_factory() as db:
            result = await db.execute(select(Target.account_id, Target.id).order_by(Target.id))
            grouped = defaultdict(list)
            for account_id, target_id in result.all():
                grouped[account_id].append(target_id)
        return grouped

    async def _policies(self, account_ids) -> Dict[int, PolicyValues]:
        async with self.session_factory() as db:
            return {account_id: await get_policy(db, account_id, self.settings)
                    for account_id in account_ids}

    async def _delete(self, report: RetentionReport, category: str, stmt, context: str) -> None:
        """Run one bulk delete in its own transaction; failures are logged and recorded."""
        try:
            async with self.session_factory() as db:
                result = await db.execute(stmt.execution_options(synchronize_session=False))
                await db.commit()
        except Exception as e:
            report.failed.append(f"{category}:{context}")
            logger.error("Failed to clean up %s for %s: %s", category, context, e)
            return
        if result.rowcount:
            report.deleted[category] += result.rowcount

    async def sweep_heartbeats(self, now: Optional[datetime] = None) -> RetentionReport:
        """Delete non-important heartbeats older than each account's horizon."""
        now = as_utc(now or self.clock())
        report = RetentionReport()
        grouped = await self._targets_by_account()
        policies = await self._policies(grouped)

        for account_id, target_ids in grouped.items():
            days = policies[account_id].heartbeat_retention_days
            cutoff = now - timedelta(days=days)
            before = report.deleted["heartbeats"]
            await self._delete(
                report, "heartbeats",
                delete(Heartbeat).where(
                    Heartbeat.important == False,
                    Heartbeat.target_id.in_(target_ids),
                    Heartbeat.timestamp < cutoff,
                ),
                f"account {account_id}",
            )
            cleaned = report.deleted["heartbeats"] - before
            if cleaned:
                logger.info("Account %d: cleaned up %d heartbeats (retention: %d days)",
                            account_id, cleaned, days)

        important_days = self.settings.IMPORTANT_HEARTBEAT_RETENTION_DAYS
        if important_days:
            await self._delete(
                report, "important_heartbeats",
                delete(Heartbeat).where(
                    Heartbeat.important == True,
                    Heartbeat.timestamp < now - timedelta(days=important_days),
                ),
                "all accounts",
            )

        logger.info("Total heartbeats cleaned up: %d (important: %d)",
                    report.deleted["heartbeats"], report.deleted["important_heartbeats"])
        return report

    async def sweep_summaries(self, now: Optional[datetime] = None) -> RetentionReport:
        """Delete hourly and daily rollup rows past their independent horizons."""
        now = as_utc(now or self.clock())
        report = RetentionReport()
        grouped = await self._targets_by_account()
        policies = await self._policies(grouped)

        for account_id, target_ids in grouped.items():
            policy = policies[account_id]
            # Separate transactions: a failed hourly delete must not block the daily one
            for category, model, days in (
                ("stat_hourly", StatHourly, policy.hourly_retention_days),
                ("stat_daily", StatDaily, policy.daily_retention_days),
            ):
                await self._delete(
                    report, category,
                    delete(model).where(
                        model.target_id.in_(target_ids),
                        model.period_start < now - timedelta(days=days),
                    ),
                    f"account {account_id}",
                )

        logger.info("Total stats cleaned up: %d hourly, %d daily",
                    report.deleted["stat_hourly"], report.deleted["stat_daily"])
        return report

    async def compact(self) -> None:
        """Reclaim space freed by the sweeps. VACUUM cannot run inside a transaction."""
        if self.engine is None:
            raise RuntimeError("compaction needs an engine; none bound to the session factory")
        conn_engine = self.engine.execution_options(isolation_level="AUTOCOMMIT")
        async with conn_engine.connect() as conn:
            if conn.dialect.name == "postgresql":
                for table in COMPACTED_TABLES:
                    await conn.execute(text(f"VACUUM ANALYZE {table}"))
            else:
                await conn.execute(text("VACUUM"))
        logger.info("Database compaction completed")
