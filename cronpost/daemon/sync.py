"""Job store synchronisation.

The CLI edits jobs directly in the database. JobSync lets a running daemon
notice those edits: each pass loads every job definition, compares it with
the previous pass, and forwards the differences to the Reconciler.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List

from cronpost.scheduler.exceptions import ScheduleError
from cronpost.scheduler.models import JobDefinition
from cronpost.scheduler.reconciler import Reconciler

logger = logging.getLogger(__name__)

JobLoader = Callable[[], List[JobDefinition]]


@dataclass
class SyncResult:
    """What one sync pass changed."""

    created: List[str] = field(default_factory=list)
    updated: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.created or self.updated or self.deleted or self.failed)


class JobSync:
    """Diffs successive snapshots of the job store into Reconciler events.

    Example:
        sync = JobSync(reconciler, load_jobs)
        sync.prime(jobs_already_scheduled)
        await sync.run_once()
    """

    def __init__(self, reconciler: Reconciler, load_jobs: JobLoader) -> None:
        """Initialize the sync.

        Args:
            reconciler: Receives created/updated/deleted events
            load_jobs: Blocking callable returning every stored job
        """
        self._reconciler = reconciler
        self._load_jobs = load_jobs
        self._snapshot: Dict[str, JobDefinition] = {}
        self._lock = asyncio.Lock()

    @property
    def known_jobs(self) -> List[str]:
        return list(self._snapshot)

    def prime(self, jobs: Iterable[JobDefinition]) -> None:
        """Record jobs that were already handed to the Reconciler."""
        self._snapshot = {job.id: job for job in jobs}

    def apply(self, jobs: Iterable[JobDefinition]) -> SyncResult:
        """Forward the differences between ``jobs`` and the last snapshot."""
        result = SyncResult()
        current = {job.id: job for job in jobs}

        for job_id in self._snapshot.keys() - current.keys():
            self._reconciler.on_job_deleted(job_id)
            result.deleted.append(job_id)

        for job_id, job in current.items():
            previous = self._snapshot.get(job_id)
            try:
                if previous is None:
                    self._reconciler.on_job_created(job)
                    result.created.append(job_id)
                else:
                    changed = job.changed_fields(previous)
                    if changed:
                        self._reconciler.on_job_updated(job, changed)
                        result.updated.append(job_id)
            except ScheduleError as e:
                # Keep it in the snapshot; a later fix arrives as an update
                logger.error(f"Cannot schedule job {job_id}: {e}")
                result.failed.append(job_id)

        self._snapshot = current

        if result.changed:
            logger.info(
                f"Job sync: {len(result.created)} created, {len(result.updated)} updated, "
                f"{len(result.deleted)} deleted, {len(result.failed)} failed"
            )
        return result

    async def run_once(self) -> SyncResult:
        """Load the job store off the event loop and apply it.

        Passes run one at a time, so a slow load can never apply an older
        snapshot over a newer one. A failed load is logged and leaves the
        timers as they are.
        """
        async with self._lock:
            try:
                jobs = await asyncio.to_thread(self._load_jobs)
            except Exception as e:
                logger.error(f"Failed to load jobs for sync: {e}")
                return SyncResult()
            return self.apply(jobs)
