"""
Maintenance scheduler: fires rollup, retention and compaction jobs on
cron cadences.

Each job is a plain async callable closed over its dependencies. Every
invocation, scheduled or manual, goes through ``run_job`` which turns the
outcome into a ``JobResult`` and logs it; job exceptions never reach
APScheduler or the caller.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional, Set, Union

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.asyncio import AsyncIOExecutor
from sqlalchemy.ext.asyncio import async_sessionmaker

from hbstats.exceptions import UnknownJobError
from hbstats.services.aggregator import StatsAggregator
from hbstats.services.cron import CronSchedule, CronScheduleTrigger
from hbstats.services.periods import utcnow
from hbstats.services.retention import RetentionEnforcer

logger = logging.getLogger(__name__)

JobFunc = Callable[[], Awaitable[Any]]


@dataclass
class JobResult:
    name: str
    ok: bool
    started_at: datetime
    finished_at: datetime
    error: Optional[str] = None
    skipped: bool = False   # another run of the same job was still in progress

    @property
    def duration_seconds(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()


@dataclass
class ScheduledJob:
    name: str
    schedule: CronSchedule
    func: JobFunc


class MaintenanceScheduler:
    """Owns one AsyncIOScheduler and the set of registered maintenance jobs."""

    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self.clock = clock
        self._jobs: Dict[str, ScheduledJob] = {}
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False
        self._in_flight: Set[asyncio.Task] = set()
        self._locks: Dict[str, asyncio.Lock] = {}
        self.last_results: Dict[str, JobResult] = {}

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def jobs(self) -> Dict[str, ScheduledJob]:
        return dict(self._jobs)

    def register(self, name: str, cron: Union[str, CronSchedule], func: JobFunc) -> ScheduledJob:
        if name in self._jobs:
            raise ValueError(f"job {name!r} is already registered")
        schedule = cron if isinstance(cron, CronSchedule) else CronSchedule.parse(cron)
        job = ScheduledJob(name=name, schedule=schedule, func=func)
        self._jobs[name] = job
        self._locks[name] = asyncio.Lock()
        if self._running:
            self._schedule(job)
        return job

    def _create_scheduler(self) -> AsyncIOScheduler:
        return AsyncIOScheduler(
            jobstores={"default": MemoryJobStore()},
            executors={"default": AsyncIOExecutor()},
            job_defaults={
                "coalesce": True,           # a backlog of missed firings runs once
                "max_instances": 1,         # a job never overlaps itself
                "misfire_grace_time": 300,
            },
            timezone="UTC",
        )

    def _schedule(self, job: ScheduledJob) -> None:
        self._scheduler.add_job(
            self._fire,
            CronScheduleTrigger(job.schedule),
            args=[job.name],
            id=job.name,
            name=job.name,
            replace_existing=True,
        )

    async def start(self) -> None:
        if self._running:
            logger.warning("Maintenance scheduler already running")
            return
        self._scheduler = self._create_scheduler()
        for job in self._jobs.values():
            self._schedule(job)
        self._scheduler.start()
        self._running = True
        for job in self._jobs.values():
            logger.info("Job %s scheduled (%s), next run %s", job.name, job.schedule,
                        job.schedule.next_fire_time(self.clock()))
        logger.info("Maintenance scheduler started with %d jobs", len(self._jobs))

    async def stop(self) -> None:
        """Stop firing new jobs and wait for running ones to finish."""
        if not self._running:
            return
        self._running = False
        # AsyncIOExecutor.shutdown cancels the futures it still holds, so
        # stop firing first and only shut down once running jobs are done
        self._scheduler.pause()

        current = asyncio.current_task()
        pending = [t for t in self._in_flight if t is not current]
        if pending:
            logger.info("Waiting for %d in-flight job(s) to finish", len(pending))
            await asyncio.gather(*pending, return_exceptions=True)

        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("Maintenance scheduler stopped")

    async def _fire(self, name: str) -> Optional[JobResult]:
        # A firing already queued when stop() ran must not start the job
        if not self._running:
            return None
        # The job runs in a task of our own so cancelling the executor's
        # future never interrupts the job body
        firing = asyncio.current_task()
        self._in_flight.add(firing)
        try:
            return await asyncio.shield(asyncio.ensure_future(self.run_job(name)))
        finally:
            self._in_flight.discard(firing)

    async def run_job(self, name: str) -> JobResult:
        """Run a job body now, bypassing the clock.

        A job never overlaps itself: while one run is in progress, another
        request for the same job returns a skipped result without running it.
        """
        job = self._jobs.get(name)
        if job is None:
            raise UnknownJobError(name)

        lock = self._locks[name]
        if lock.locked():
            now = self.clock()
            logger.warning("Job %s is already running, skipping", name)
            return JobResult(name=name, ok=False, started_at=now, finished_at=now,
                             error="already running", skipped=True)

        task = asyncio.current_task()
        self._in_flight.add(task)
        try:
            async with lock:
                started_at = self.clock()
                try:
                    await job.func()
                except Exception as e:
                    result = JobResult(name=name, ok=False, started_at=started_at,
                                       finished_at=self.clock(), error=f"{type(e).__name__}: {e}")
                    logger.error("Job %s failed after %.1fs: %s", name, result.duration_seconds,
                                 result.error, exc_info=True)
                else:
                    result = JobResult(name=name, ok=True, started_at=started_at,
                                       finished_at=self.clock())
                    logger.info("Job %s completed in %.1fs", name, result.duration_seconds)
        finally:
            self._in_flight.discard(task)

        self.last_results[name] = result
        return result


def build_scheduler(session_factory: async_sessionmaker, settings,
                    clock: Callable[[], datetime] = utcnow) -> MaintenanceScheduler:
    """The production job set: rollups, retention sweeps and weekly compaction."""
    aggregator = StatsAggregator(session_factory, clock=clock)
    enforcer = RetentionEnforcer(session_factory, settings, clock=clock)

    scheduler = MaintenanceScheduler(clock=clock)
    scheduler.register("hourly_rollup", settings.HOURLY_ROLLUP_CRON, aggregator.aggregate_hourly)
    scheduler.register("daily_rollup", settings.DAILY_ROLLUP_CRON, aggregator.aggregate_daily)
    scheduler.register("heartbeat_retention", settings.HEARTBEAT_RETENTION_CRON, enforcer.sweep_heartbeats)
    scheduler.register("summary_retention", settings.SUMMARY_RETENTION_CRON, enforcer.sweep_summaries)
    scheduler.register("compaction", settings.COMPACTION_CRON, enforcer.compact)
    return scheduler
