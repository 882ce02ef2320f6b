"""Shared test fixtures."""

from __future__ import annotations

import os

# Settings are read at import time; keep tests off the production database.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["SCHEDULER_ENABLED"] = "false"

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from hbstats.database import Base
from hbstats.models import Heartbeat, HeartbeatStatus, Target

# Wednesday, half past noon UTC
NOW = datetime(2024, 5, 15, 12, 30, tzinfo=timezone.utc)

UP = HeartbeatStatus.UP
DOWN = HeartbeatStatus.DOWN
PENDING = HeartbeatStatus.PENDING
MAINTENANCE = HeartbeatStatus.MAINTENANCE


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


class Seeder:
    def __init__(self, session_factory: async_sessionmaker) -> None:
        self.session_factory = session_factory

    async def target(self, account_id: int = 1, name: str = "api", is_active: bool = True) -> int:
        async with self.session_factory() as db:
            target = Target(account_id=account_id, name=name, is_active=is_active)
            db.add(target)
            await db.commit()
            return target.id

    async def heartbeat(self, target_id: int, timestamp: datetime, status=UP,
                        latency_ms: int | None = None, important: bool = False) -> None:
        await self.heartbeats(target_id, [(timestamp, status, latency_ms, important)])

    async def heartbeats(self, target_id: int, rows) -> None:
        """rows: (timestamp, status[, latency_ms[, important]]) tuples."""
        async with self.session_factory() as db:
            for row in rows:
                timestamp, status = row[0], row[1]
                latency_ms = row[2] if len(row) > 2 else None
                important = row[3] if len(row) > 3 else False
                db.add(Heartbeat(
                    target_id=target_id,
                    status=int(status),
                    latency_ms=latency_ms,
                    important=important,
                    message="",
                    timestamp=timestamp,
                ))
            await db.commit()

    async def all(self, model):
        async with self.session_factory() as db:
            result = await db.execute(select(model).order_by(model.id))
            return list(result.scalars().all())


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'hbstats.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker:
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(NOW)


@pytest.fixture
def seed(session_factory) -> Seeder:
    return Seeder(session_factory)
