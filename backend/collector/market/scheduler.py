"""Minimal asyncio job scheduler: fixed-period and fixed-local-time jobs."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from datetime import datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

logger = logging.getLogger(__name__)

Action = Callable[[], Awaitable[None]]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def next_daily_run(now: datetime, at: time, tz: ZoneInfo) -> datetime:
    """First instant strictly after ``now`` whose wall-clock time in ``tz`` is ``at``."""
    local = now.astimezone(tz)
    candidate = datetime.combine(local.date(), at, tzinfo=tz)
    if candidate <= local:
        candidate = datetime.combine(local.date() + timedelta(days=1), at, tzinfo=tz)
    return candidate


def next_periodic_run(now: datetime, interval: float, anchor: datetime | None = None) -> datetime:
    """Next tick of a fixed-period schedule.

    With ``anchor`` (the previous due time) the schedule keeps its phase:
    the result is the first anchor + k*interval after ``now``. Without one,
    the next tick is ``interval`` seconds from now.
    """
    step = timedelta(seconds=interval)
    if anchor is None:
        return now + step
    due = anchor + step
    if due <= now:
        missed = int((now - due) / step) + 1
        due += step * missed
    return due


class Job(ABC):
    """A named async action with its own due-time rule."""

    def __init__(self, name: str, action: Action) -> None:
        self.name = name
        self._action = action
        self.last_run: datetime | None = None
        self.last_error: str | None = None
        self.next_due: datetime | None = None
        self.runs = 0
        self._lock = asyncio.Lock()

    @abstractmethod
    def next_run(self, now: datetime) -> datetime:
        """When the job should next run, given that it is ``now``."""

    def first_run(self, now: datetime) -> datetime:
        return self.next_run(now)

    async def run(self, now: datetime | None = None) -> None:
        """Run the action once. Failures are logged and recorded, never raised.

        Runs of the same job are serialized: a manual run that arrives while
        the scheduled one is in progress waits for it to finish.
        """
        async with self._lock:
            self.last_run = now or utc_now()
            self.runs += 1
            try:
                await self._action()
                self.last_error = None
            except Exception as e:
                self.last_error = str(e)
                logger.exception("Job %s failed", self.name)

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def describe(self) -> dict:
        return {
            "name": self.name,
            "runs": self.runs,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "next_due": self.next_due.isoformat() if self.next_due else None,
            "last_error": self.last_error,
            "busy": self.busy,
        }


class PeriodicJob(Job):
    """Runs every ``interval`` seconds, optionally once right at start."""

    def __init__(self, name: str, action: Action, interval: float, run_at_start: bool = False) -> None:
        super().__init__(name, action)
        self.interval = interval
        self.run_at_start = run_at_start

    def first_run(self, now: datetime) -> datetime:
        return now if self.run_at_start else self.next_run(now)

    def next_run(self, now: datetime) -> datetime:
        return next_periodic_run(now, self.interval, anchor=self.next_due)


class DailyJob(Job):
    """Runs once a day at a fixed wall-clock time in a fixed timezone."""

    def __init__(self, name: str, action: Action, at: time, tz: ZoneInfo) -> None:
        super().__init__(name, action)
        self.at = at
        self.tz = tz

    def next_run(self, now: datetime) -> datetime:
        return next_daily_run(now, self.at, self.tz)


class Scheduler:
    """Runs each registered job in its own asyncio task.

    Each loop sleeps until the job's next due time, runs it to completion and
    computes the following due time. Jobs do not overlap with themselves;
    different jobs run concurrently.
    """

    def __init__(
        self,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._clock = clock
        self._sleep = sleep
        self._jobs: dict[str, Job] = {}
        self._tasks: dict[str, asyncio.Task] = {}

    def add(self, job: Job) -> Job:
        if job.name in self._jobs:
            raise ValueError(f"Duplicate job name: {job.name}")
        self._jobs[job.name] = job
        return job

    def get(self, name: str) -> Job | None:
        return self._jobs.get(name)

    @property
    def jobs(self) -> list[Job]:
        return list(self._jobs.values())

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks.values())

    async def start(self) -> None:
        for job in self._jobs.values():
            if job.name not in self._tasks:
                self._tasks[job.name] = asyncio.create_task(self._run_loop(job), name=f"job-{job.name}")
        logger.info("Scheduler started with %d jobs", len(self._tasks))

    async def stop(self) -> None:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            if not task.done():
                task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("Scheduler stopped")

    async def run_now(self, name: str) -> Job:
        """Run a job immediately, outside its schedule. Raises KeyError for unknown names."""
        job = self._jobs[name]
        await job.run(self._clock())
        return job

    async def _run_loop(self, job: Job) -> None:
        job.next_due = job.first_run(self._clock())
        while True:
            delay = (job.next_due - self._clock()).total_seconds()
            if delay > 0:
                await self._sleep(delay)
            await job.run(self._clock())
            job.next_due = job.next_run(self._clock())
