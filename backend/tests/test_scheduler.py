"""Tests for the maintenance scheduler lifecycle and job wrapper."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from conftest import NOW, UP
from hbstats.config import Settings
from hbstats.exceptions import CronParseError, UnknownJobError
from hbstats.models import StatHourly
from hbstats.services.scheduler import MaintenanceScheduler, build_scheduler

# far enough away that the clock never fires it during a test
NEVER_SOON = "0 0 1 1 *"


@pytest.fixture
def scheduler(clock) -> MaintenanceScheduler:
    return MaintenanceScheduler(clock=clock)


class TestRunJob:
    async def test_success(self, scheduler) -> None:
        calls = []

        async def job():
            calls.append("ran")

        scheduler.register("noop", NEVER_SOON, job)
        result = await scheduler.run_job("noop")

        assert calls == ["ran"]
        assert result.ok
        assert result.error is None
        assert result.started_at == NOW
        assert scheduler.last_results["noop"] is result

    async def test_failure_is_captured(self, scheduler) -> None:
        async def broken():
            raise RuntimeError("database went away")

        async def fine():
            return None

        scheduler.register("broken", NEVER_SOON, broken)
        scheduler.register("fine", NEVER_SOON, fine)

        failed = await scheduler.run_job("broken")
        ok = await scheduler.run_job("fine")

        assert not failed.ok
        assert failed.error == "RuntimeError: database went away"
        assert ok.ok
        assert scheduler.last_results["broken"].ok is False

    async def test_unknown_job(self, scheduler) -> None:
        with pytest.raises(UnknownJobError):
            await scheduler.run_job("missing")

    async def test_same_job_never_overlaps(self, scheduler) -> None:
        active = []
        peak = []

        async def job():
            active.append(1)
            peak.append(len(active))
            await asyncio.sleep(0.05)
            active.pop()

        scheduler.register("job", NEVER_SOON, job)
        first, second = await asyncio.gather(scheduler.run_job("job"), scheduler.run_job("job"))

        assert max(peak) == 1
        assert first.ok and not first.skipped
        assert second.skipped
        assert second.error == "already running"
        assert scheduler.last_results["job"] is first

    async def test_different_jobs_may_overlap(self, scheduler) -> None:
        active = []
        peak = []

        async def job():
            active.append(1)
            peak.append(len(active))
            await asyncio.sleep(0.05)
            active.pop()

        scheduler.register("a", NEVER_SOON, job)
        scheduler.register("b", NEVER_SOON, job)
        results = await asyncio.gather(scheduler.run_job("a"), scheduler.run_job("b"))

        assert all(r.ok for r in results)
        assert max(peak) == 2


class TestRegistration:
    def test_duplicate_name_rejected(self, scheduler) -> None:
        async def job():
            return None

        scheduler.register("job", NEVER_SOON, job)
        with pytest.raises(ValueError):
            scheduler.register("job", NEVER_SOON, job)

    def test_invalid_cadence_rejected(self, scheduler) -> None:
        async def job():
            return None

        with pytest.raises(CronParseError):
            scheduler.register("job", "whenever", job)
        assert scheduler.jobs == {}


class TestLifecycle:
    async def test_start_twice_is_noop(self, scheduler) -> None:
        async def job():
            return None

        scheduler.register("a", NEVER_SOON, job)
        scheduler.register("b", NEVER_SOON, job)

        await scheduler.start()
        inner = scheduler._scheduler
        await scheduler.start()
        try:
            assert scheduler.is_running
            assert scheduler._scheduler is inner
            assert {j.id for j in inner.get_jobs()} == {"a", "b"}
        finally:
            await scheduler.stop()
        assert not scheduler.is_running

    async def test_register_while_running(self, scheduler) -> None:
        async def job():
            return None

        await scheduler.start()
        try:
            scheduler.register("late", NEVER_SOON, job)
            assert [j.id for j in scheduler._scheduler.get_jobs()] == ["late"]
        finally:
            await scheduler.stop()

    async def test_stop_waits_for_in_flight_job(self, scheduler) -> None:
        started = asyncio.Event()
        finished = []

        async def slow():
            started.set()
            await asyncio.sleep(0.05)
            finished.append(True)

        scheduler.register("slow", NEVER_SOON, slow)
        await scheduler.start()
        task = asyncio.create_task(scheduler.run_job("slow"))
        await started.wait()

        await scheduler.stop()

        assert finished == [True]
        assert task.done()
        assert task.result().ok

    async def test_stop_lets_scheduled_firing_finish(self, scheduler) -> None:
        started = asyncio.Event()
        finished = []

        async def slow():
            started.set()
            await asyncio.sleep(0.1)
            finished.append(True)

        scheduler.register("slow", NEVER_SOON, slow)
        await scheduler.start()
        scheduler._scheduler.modify_job("slow", next_run_time=datetime.now(timezone.utc))
        await asyncio.wait_for(started.wait(), timeout=5)

        # the trigger has already moved the job on to its next cron slot
        next_run = scheduler._scheduler.get_job("slow").next_run_time
        assert (next_run.month, next_run.day, next_run.hour, next_run.minute) == (1, 1, 0, 0)

        await scheduler.stop()

        assert finished == [True]
        assert scheduler.last_results["slow"].ok
        assert not scheduler.is_running

    async def test_no_new_runs_after_stop(self, scheduler) -> None:
        calls = []

        async def job():
            calls.append(1)

        scheduler.register("job", NEVER_SOON, job)
        await scheduler.start()
        await scheduler.stop()

        assert await scheduler._fire("job") is None
        assert calls == []

    async def test_stop_when_not_started(self, scheduler) -> None:
        await scheduler.stop()
        assert not scheduler.is_running


class TestDefaultJobs:
    def test_registered_cadences(self, session_factory) -> None:
        scheduler = build_scheduler(session_factory, Settings())
        cadences = {name: job.schedule.expression for name, job in scheduler.jobs.items()}
        assert cadences == {
            "hourly_rollup": "5 * * * *",
            "daily_rollup": "0 2 * * *",
            "heartbeat_retention": "14 3 * * *",
            "summary_retention": "30 3 * * *",
            "compaction": "30 2 * * 0",
        }

    async def test_hourly_rollup_job_body(self, session_factory, seed, clock) -> None:
        scheduler = build_scheduler(session_factory, Settings(), clock=clock)
        t = await seed.target()
        await seed.heartbeat(t, NOW - timedelta(hours=1), UP, 10)

        result = await scheduler.run_job("hourly_rollup")

        assert result.ok
        rows = await seed.all(StatHourly)
        assert len(rows) == 1
        assert rows[0].uptime_percentage == 100.0

    async def test_retention_jobs_run(self, session_factory, seed, clock) -> None:
        scheduler = build_scheduler(session_factory, Settings(), clock=clock)
        await seed.target()

        assert (await scheduler.run_job("heartbeat_retention")).ok
        assert (await scheduler.run_job("summary_retention")).ok
        assert (await scheduler.run_job("compaction")).ok
