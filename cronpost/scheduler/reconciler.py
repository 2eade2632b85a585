"""Reconciler: the entry point external code uses to drive the scheduler.

Job lifecycle events (created, updated, deleted, loaded at startup) are
turned into TimerRegistry operations here, and every firing is turned into
exactly one ExecutionRecord written to the log sink.

Schedules are expected to have been validated by the caller before they
reach this module; on_job_created and on_job_updated still raise
InvalidScheduleError if one slips through.
"""

import asyncio
import logging
from dataclasses import replace
from typing import Iterable, Optional, Set

from cronpost.scheduler.cron import DEFAULT_SEARCH_YEARS, parse_schedule
from cronpost.scheduler.exceptions import ScheduleError
from cronpost.scheduler.models import (
    TIMER_FIELDS,
    ExecutionRecord,
    JobDefinition,
)
from cronpost.scheduler.registry import FireCallback, TimerRegistry
from cronpost.scheduler.runner import ExecutionRunner
from cronpost.scheduler.sinks import LogSink

logger = logging.getLogger(__name__)


class Reconciler:
    """Keeps live timers in step with job definitions.

    Example:
        reconciler = Reconciler(registry, runner, DatabaseLogSink())
        reconciler.on_startup(job_repo_jobs)
        reconciler.on_job_updated(job, {"schedule"})
    """

    def __init__(
        self,
        registry: TimerRegistry,
        runner: ExecutionRunner,
        sink: LogSink,
        search_years: int = DEFAULT_SEARCH_YEARS,
    ) -> None:
        self._registry = registry
        self._runner = runner
        self._sink = sink
        self._search_years = search_years

    @property
    def registry(self) -> TimerRegistry:
        return self._registry

    def on_job_created(self, job: JobDefinition) -> bool:
        """Schedule a newly created job.

        Returns:
            True if a timer was installed (the job is active)

        Raises:
            InvalidScheduleError: If the schedule does not parse
            UnreachableScheduleError: If the schedule never fires
        """
        if not job.is_active:
            logger.debug(f"Job {job.id} created inactive, not scheduling")
            return False
        self._schedule(job)
        return True

    def on_job_updated(
        self,
        job: JobDefinition,
        changed_fields: Optional[Iterable[str]] = None,
    ) -> bool:
        """Apply an update to a job's timer.

        Args:
            job: The job as it is after the update
            changed_fields: Names of fields that changed. None means unknown,
                which is treated as "everything changed".

        Returns:
            True if the job holds a live timer afterwards
        """
        if changed_fields is not None:
            relevant: Set[str] = TIMER_FIELDS.intersection(changed_fields)
            if not relevant:
                logger.debug(f"Job {job.id} update does not affect its timer")
                return self._registry.is_scheduled(job.id)

        if job.is_active:
            self._schedule(job)
            return True

        self._registry.remove(job.id)
        return False

    def on_job_deleted(self, job_id: str) -> bool:
        """Stop a deleted job's timer. Returns True if one existed."""
        return self._registry.remove(job_id)

    def on_startup(self, jobs: Iterable[JobDefinition]) -> int:
        """Schedule every active job loaded from the job store.

        A job whose schedule cannot be used is logged and skipped.

        Returns:
            Number of jobs scheduled
        """
        scheduled = 0
        for job in jobs:
            if not job.is_active:
                continue
            try:
                self._schedule(job)
            except ScheduleError as e:
                logger.error(f"Skipping job {job.id}: {e}")
                continue
            scheduled += 1

        logger.info(f"Scheduled {scheduled} active jobs")
        return scheduled

    def is_scheduled(self, job_id: str) -> bool:
        return self._registry.is_scheduled(job_id)

    async def run_now(self, job: JobDefinition) -> ExecutionRecord:
        """Fire a job once, immediately and outside its schedule.

        The execution is logged through the sink like any scheduled firing.
        """
        logger.info(f"Running job {job.id} now")
        return await execute_job(job, self._runner, self._sink)

    def _schedule(self, job: JobDefinition) -> None:
        schedule = parse_schedule(job.schedule, search_years=self._search_years)
        self._registry.upsert(job.id, schedule, self._make_callback(job))

    def _make_callback(self, job: JobDefinition) -> FireCallback:
        # Firings use the definition as it was when the timer was installed
        snapshot = replace(job)

        async def fire() -> None:
            await execute_job(snapshot, self._runner, self._sink)

        return fire


async def execute_job(job: JobDefinition, runner: ExecutionRunner, sink: LogSink) -> ExecutionRecord:
    """Run one firing of ``job`` and write its ExecutionRecord to ``sink``.

    Never raises; a failed sink write is logged and the record still returned.
    """
    outcome = await runner.execute(job.url, body=job.body, secret=job.secret)
    record = ExecutionRecord.from_outcome(job.id, outcome)

    if outcome.success:
        logger.info(f"Job {job.id} executed: {outcome.response_code} ({outcome.duration_ms}ms)")
    else:
        logger.error(f"Job {job.id} failed after {outcome.duration_ms}ms: {outcome.error_message}")

    try:
        await asyncio.to_thread(sink.record, record)
    except Exception as e:
        # A lost log record must not stop the timer
        logger.error(f"Failed to record execution of job {record.job_id}: {e}")
    return record
