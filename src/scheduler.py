"""Fetch Scheduler - Recurring named jobs on APScheduler.

Each registered job runs independently on its own interval. Overlapping
ticks of the same job are skipped (skip-if-running): feed data is
superseded by the next fetch anyway.
"""

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScheduledJob:
    """A job registered with the scheduler.

    Attributes:
        name: Unique job name (also the APScheduler job id)
        interval_seconds: Seconds between ticks
        func: Coroutine function invoked on each tick
        args: Positional arguments for func
    """
    name: str
    interval_seconds: float
    func: Callable[..., Awaitable[Any]]
    args: tuple = ()


class FetchScheduler:
    """Registry of named interval jobs run on the asyncio event loop."""

    def __init__(self, scheduler: AsyncIOScheduler | None = None) -> None:
        self.scheduler = scheduler or AsyncIOScheduler()
        self._jobs: dict[str, ScheduledJob] = {}
        self._in_flight: set[str] = set()
        self.skipped_ticks: dict[str, int] = {}

    def register(
        self,
        name: str,
        interval_seconds: float,
        func: Callable[..., Awaitable[Any]],
        *args: Any,
    ) -> None:
        """Register (or replace) a named job.

        Takes effect on the next start().
        """
        self._jobs[name] = ScheduledJob(name, interval_seconds, func, args)

    def job_names(self) -> list[str]:
        return list(self._jobs)

    def is_running(self, name: str) -> bool:
        return name in self._in_flight

    async def run_job(self, name: str) -> bool:
        """Run one tick of a job unless the previous tick is still running.

        Exceptions are logged and never propagate into the scheduler.

        Returns:
            True if the tick ran, False if it was skipped
        """
        job = self._jobs[name]

        if name in self._in_flight:
            self.skipped_ticks[name] = self.skipped_ticks.get(name, 0) + 1
            logger.warning("Job %s still running, skipping tick", name)
            return False

        self._in_flight.add(name)
        try:
            await job.func(*job.args)
        except Exception:
            logger.exception("Job %s failed", name)
        finally:
            self._in_flight.discard(name)

        return True

    def start(self) -> None:
        """Clear previously scheduled jobs, register all jobs, and start.

        Re-registration replaces existing jobs by id, so calling start()
        again never accumulates duplicate schedules.
        """
        self.scheduler.remove_all_jobs()

        for job in self._jobs.values():
            self.scheduler.add_job(
                self.run_job,
                IntervalTrigger(seconds=job.interval_seconds),
                args=[job.name],
                id=job.name,
                name=job.name,
                max_instances=1,
                coalesce=True,
                replace_existing=True,
            )
            logger.info("Scheduled %s every %ss", job.name, job.interval_seconds)

        if not self.scheduler.running:
            self.scheduler.start()
        logger.info("Fetch scheduler started with %d jobs", len(self._jobs))

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        logger.info("Fetch scheduler stopped")
