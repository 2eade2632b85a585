"""Timer registry backed by APScheduler.

The TimerRegistry owns exactly one APScheduler job per scheduled job id.
Fire times come from the cron module through ScheduleTrigger, which is
asked again after every firing, so irregular schedules stay exact.

Replacing or removing a timer bumps a per-job generation counter. A
firing that was already handed to the executor but has not started yet
carries the old generation and is dropped, so nothing from a replaced
timer runs after upsert() or remove() returns.

APScheduler only dispatches: each firing's callback runs in a task of its
own, so a slow firing never makes APScheduler skip the next fire instant
of the same job. drain() waits for those tasks on shutdown.
"""

import asyncio
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, tzinfo
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set
from zoneinfo import ZoneInfo

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_MISSED
from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.base import JobLookupError
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.base import BaseTrigger

from cronpost.scheduler.cron import CronSchedule
from cronpost.scheduler.exceptions import UnreachableScheduleError
from cronpost.scheduler.models import Clock, utc_now

logger = logging.getLogger(__name__)

FireCallback = Callable[[], Awaitable[None]]


class ScheduleTrigger(BaseTrigger):
    """APScheduler trigger driven by a parsed CronSchedule.

    Fields are matched against wall-clock time in ``timezone``.
    """

    def __init__(self, schedule: CronSchedule, timezone: tzinfo) -> None:
        self.schedule = schedule
        self.timezone = timezone

    def get_next_fire_time(
        self,
        previous_fire_time: Optional[datetime],
        now: datetime,
    ) -> Optional[datetime]:
        after = now if previous_fire_time is None else max(previous_fire_time, now)
        try:
            return self.schedule.next_fire_time(after.astimezone(self.timezone))
        except UnreachableScheduleError as e:
            # Returning None makes APScheduler retire the job
            logger.error(str(e))
            return None

    def __str__(self) -> str:
        return f"cron[{self.schedule.expression}]"

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} ({self.schedule.expression!r}, timezone='{self.timezone}')>"


@dataclass
class _Timer:
    schedule: CronSchedule
    callback: FireCallback
    generation: int


class TimerRegistry:
    """Maps job ids to live timers.

    All mutations run under one re-entrant lock. Reads such as
    is_scheduled() do not take it.

    Example:
        registry = TimerRegistry()
        registry.start()  # inside a running event loop
        registry.upsert("nightly", parse_schedule("0 0 * * *"), callback)
        registry.remove("nightly")
        registry.shutdown()
    """

    def __init__(
        self,
        timezone: str = "UTC",
        clock: Optional[Clock] = None,
        misfire_grace_time: int = 300,
    ) -> None:
        """Initialize the registry.

        Args:
            timezone: IANA zone the cron fields are evaluated in
            clock: Source of "now" for first fire-time computations
            misfire_grace_time: Seconds a late firing may still run
        """
        self._timezone = ZoneInfo(timezone)
        self._clock = clock or utc_now
        self._misfire_grace_time = misfire_grace_time
        self._timers: Dict[str, _Timer] = {}
        self._in_flight: Set[asyncio.Task] = set()
        self._generation = 0
        self._lock = threading.RLock()
        self._scheduler = self._create_scheduler()
        self._setup_listeners()

    @property
    def is_running(self) -> bool:
        return self._scheduler.running

    @property
    def job_ids(self) -> List[str]:
        return list(self._timers)

    @property
    def timezone(self) -> tzinfo:
        return self._timezone

    @property
    def in_flight(self) -> int:
        """Number of firings whose callback has not finished yet."""
        return len(self._in_flight)

    def _create_scheduler(self) -> AsyncIOScheduler:
        """Create and configure the APScheduler instance."""
        return AsyncIOScheduler(
            jobstores={"default": MemoryJobStore()},
            executors={"default": AsyncIOExecutor()},
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": self._misfire_grace_time,
            },
            timezone=self._timezone,
        )

    def _setup_listeners(self) -> None:
        def on_job_error(event: Any) -> None:
            exception = getattr(event, "exception", "Unknown error")
            logger.error(f"Timer for job {event.job_id} raised: {exception}")

        def on_job_missed(event: Any) -> None:
            logger.warning(
                f"Job {event.job_id} missed its run at {event.scheduled_run_time}"
            )

        self._scheduler.add_listener(on_job_error, EVENT_JOB_ERROR)
        self._scheduler.add_listener(on_job_missed, EVENT_JOB_MISSED)

    def start(self) -> None:
        """Start firing timers. Must be called from the running event loop."""
        if self._scheduler.running:
            logger.warning("Timer registry already running")
            return
        self._scheduler.start()
        logger.info(f"Timer registry started with {len(self._timers)} timers")

    def shutdown(self, wait: bool = False) -> None:
        """Stop the underlying scheduler; in-flight firings are left to finish.

        Await drain() afterwards to wait for them.
        """
        if not self._scheduler.running:
            return
        self._scheduler.shutdown(wait=wait)
        logger.info("Timer registry stopped")

    async def drain(self, timeout: float) -> int:
        """Wait for in-flight firings to finish.

        Firings still running after ``timeout`` seconds are cancelled.

        Returns:
            Number of firings cancelled
        """
        pending = set(self._in_flight)
        if not pending:
            return 0

        logger.info(f"Waiting up to {timeout}s for {len(pending)} in-flight firings")
        _, still_running = await asyncio.wait(pending, timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            await asyncio.gather(*still_running, return_exceptions=True)
            logger.warning(f"Cancelled {len(still_running)} firings still running after {timeout}s")
        return len(still_running)

    def upsert(
        self,
        job_id: str,
        schedule: CronSchedule,
        fire_callback: FireCallback,
    ) -> datetime:
        """Install or replace the timer for a job.

        Args:
            job_id: Job identifier
            schedule: Parsed schedule
            fire_callback: Coroutine function awaited once per fire instant

        Returns:
            The first fire time of the new timer

        Raises:
            UnreachableScheduleError: If the schedule never fires; any
                existing timer is left untouched
        """
        trigger = ScheduleTrigger(schedule, self._timezone)
        first_fire = schedule.next_fire_time(self._clock().astimezone(self._timezone))

        with self._lock:
            replaced = self._discard(job_id)
            self._generation += 1
            self._timers[job_id] = _Timer(schedule, fire_callback, self._generation)
            self._scheduler.add_job(
                self._fire,
                trigger=trigger,
                id=job_id,
                name=job_id,
                args=[job_id, self._generation],
                next_run_time=first_fire,
                replace_existing=True,
            )

        action = "Replaced" if replaced else "Scheduled"
        logger.info(
            f"{action} timer for job {job_id} ('{schedule.expression}'), "
            f"first run at {first_fire.isoformat()}"
        )
        return first_fire

    def remove(self, job_id: str) -> bool:
        """Cancel a job's timer.

        Returns:
            True if a timer existed
        """
        with self._lock:
            removed = self._discard(job_id)
        if removed:
            logger.info(f"Removed timer for job {job_id}")
        return removed

    def remove_all(self) -> None:
        with self._lock:
            for job_id in list(self._timers):
                self._discard(job_id)
        logger.debug("Removed all timers")

    def _discard(self, job_id: str) -> bool:
        # Caller holds the lock
        timer = self._timers.pop(job_id, None)
        try:
            self._scheduler.remove_job(job_id)
        except JobLookupError:
            pass
        return timer is not None

    def is_scheduled(self, job_id: str) -> bool:
        return job_id in self._timers

    def next_fire_time(self, job_id: str) -> Optional[datetime]:
        """Get the pending fire time of a job's timer, if any."""
        if job_id not in self._timers:
            return None
        aps_job = self._scheduler.get_job(job_id)
        if aps_job is None:
            return None
        return aps_job.next_run_time

    async def _fire(self, job_id: str, generation: int) -> None:
        """Dispatch one firing; executed by APScheduler on the event loop."""
        timer = self._timers.get(job_id)
        if timer is None or timer.generation != generation:
            logger.debug(f"Dropping stale firing of job {job_id}")
            return

        task = asyncio.create_task(self._run(job_id, timer.callback), name=f"fire:{job_id}")
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    async def _run(self, job_id: str, callback: FireCallback) -> None:
        try:
            await callback()
        except Exception:
            logger.exception(f"Fire callback for job {job_id} failed")
