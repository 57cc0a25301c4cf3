"""Cron-driven periodic task runner.

Each registered job runs in its own asyncio task: it sleeps until the next
cron fire time, runs its callback to completion, then computes the next fire
time from the current clock (missed fires are skipped, a job never overlaps
itself). Jobs are independent, so two jobs whose fire times coincide run
concurrently.

Stopping is cooperative: stop() prevents new invocations and waits for the
ones already in flight to finish. Nothing is cancelled mid-callback.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timezone

from croniter import croniter

from klinefeed.exceptions import CronExpressionError, PersistenceError
from klinefeed.logging import get_logger

logger = get_logger(__name__)

JobCallback = Callable[[], Awaitable[object]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CronJob:
    name: str
    cron: str
    callback: JobCallback


class CronScheduler:
    """Invoke async callbacks on cron expressions (evaluated in UTC).

    Args:
        clock: Returns the current UTC-aware time. Injected by tests.
        fatal_errors: Exception types that end the job and surface from
            wait(). Any other exception is logged and the job keeps its
            schedule.
    """

    def __init__(
        self,
        clock: Callable[[], datetime] = _utcnow,
        fatal_errors: tuple[type[BaseException], ...] = (PersistenceError,),
    ) -> None:
        self._clock = clock
        self._fatal_errors = fatal_errors
        self._jobs: list[CronJob] = []
        self._tasks: list[asyncio.Task] = []  # type: ignore[type-arg]
        self._stop_event = asyncio.Event()
        self._in_flight: set[str] = set()

    @property
    def jobs(self) -> list[CronJob]:
        return list(self._jobs)

    @property
    def running(self) -> bool:
        return bool(self._tasks) and not self._stop_event.is_set()

    @property
    def in_flight(self) -> frozenset[str]:
        """Names of jobs whose callback is currently executing."""
        return frozenset(self._in_flight)

    def add_job(self, name: str, cron: str, callback: JobCallback) -> CronJob:
        """Register a callback. Raises CronExpressionError on an invalid expression."""
        if not croniter.is_valid(cron):
            raise CronExpressionError(f"invalid cron expression for job {name!r}: {cron!r}")
        if self._tasks:
            raise RuntimeError("cannot add jobs after the scheduler has started")
        job = CronJob(name=name, cron=cron, callback=callback)
        self._jobs.append(job)
        logger.info("cron_job_registered", job=name, cron=cron)
        return job

    def next_fire_time(self, job: CronJob, now: datetime | None = None) -> datetime:
        base = now if now is not None else self._clock()
        return croniter(job.cron, base).get_next(datetime)

    async def start(self) -> None:
        """Launch one task per job. A no-op if stop() was already requested."""
        if self._tasks:
            logger.warning("cron_scheduler_already_running")
            return
        if self._stop_event.is_set():
            logger.info("cron_scheduler_start_skipped", reason="stop requested")
            return
        self._tasks = [
            asyncio.create_task(self._run_job(job), name=f"cron:{job.name}")
            for job in self._jobs
        ]
        logger.info("cron_scheduler_started", jobs=[j.name for j in self._jobs])

    async def stop(self) -> None:
        """Request a stop and wait for in-flight invocations to finish."""
        self._stop_event.set()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        logger.info("cron_scheduler_stopped")

    async def wait(self) -> None:
        """Block until every job has ended.

        If a job ends with a fatal error, the remaining jobs are stopped
        cooperatively and the error is re-raised.
        """
        if not self._tasks:
            return
        done, _ = await asyncio.wait(self._tasks, return_when=asyncio.FIRST_EXCEPTION)
        failed = [t for t in done if not t.cancelled() and t.exception() is not None]
        if failed:
            await self.stop()
            raise failed[0].exception()  # type: ignore[misc]
        await asyncio.gather(*self._tasks)

    async def _run_job(self, job: CronJob) -> None:
        while not self._stop_event.is_set():
            now = self._clock()
            fire_at = self.next_fire_time(job, now)
            delay = max(0.0, (fire_at - now).total_seconds())
            logger.debug("cron_job_sleeping", job=job.name, next_run=fire_at.isoformat())

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
                break  # stop requested while sleeping
            except asyncio.TimeoutError:
                pass

            self._in_flight.add(job.name)
            try:
                await job.callback()
            except self._fatal_errors:
                logger.critical("cron_job_fatal", job=job.name, exc_info=True)
                raise
            except Exception:
                logger.error("cadence_failed", job=job.name, exc_info=True)
            finally:
                self._in_flight.discard(job.name)
