"""Job management service.

JobService is the boundary where job definitions are validated before they
are stored: ids, URLs and schedules are checked here so that everything the
scheduler later receives is known to be usable. It also exposes execution
log queries, retention and summary statistics.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, ContextManager, Dict, List, Optional, Set, Tuple
from urllib.parse import urlparse

from sqlalchemy.orm import Session

from cronpost.database.repositories import RepositoryFactory
from cronpost.scheduler.cron import DEFAULT_SEARCH_YEARS, validate_schedule
from cronpost.scheduler.exceptions import ScheduleError
from cronpost.scheduler.models import (
    JOB_ID_PATTERN,
    Clock,
    ExecutionRecord,
    JobDefinition,
    utc_now,
)

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], ContextManager[Session]]


class JobServiceError(Exception):
    """Base exception for job management errors."""

    def __init__(self, message: str, job_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.job_id = job_id


class JobValidationError(JobServiceError):
    """Raised when a job definition is rejected."""

    def __init__(self, field: str, message: str, job_id: Optional[str] = None) -> None:
        super().__init__(f"Invalid {field}: {message}", job_id)
        self.field = field


class JobExistsError(JobServiceError):
    """Raised when creating a job whose id is taken."""

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job already exists: {job_id}", job_id)


class JobNotFoundError(JobServiceError):
    """Raised when a job id is unknown."""

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job not found: {job_id}", job_id)


@dataclass
class JobStats:
    """Summary numbers for the dashboard-style `logs stats` view."""

    total_jobs: int
    active_jobs: int
    executions_today: int
    success_rate: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_jobs": self.total_jobs,
            "active_jobs": self.active_jobs,
            "executions_today": self.executions_today,
            "success_rate": self.success_rate,
        }


@dataclass
class HealthStatus:
    status: str
    timestamp: datetime
    active_jobs: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "timestamp": self.timestamp.isoformat(),
            "active_jobs": self.active_jobs,
        }


def validate_job_id(job_id: str) -> None:
    if not job_id or not JOB_ID_PATTERN.match(job_id):
        raise JobValidationError(
            "id", f"'{job_id}' may only contain letters, digits, '-' and '_'", job_id
        )


def validate_url(url: str, job_id: Optional[str] = None) -> None:
    parsed = urlparse(url or "")
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise JobValidationError("url", f"'{url}' is not an absolute http(s) URL", job_id)


class JobService:
    """Create, change and inspect jobs stored in the database.

    Example:
        service = JobService()
        job = service.create_job("ping", "https://example.com/hook", "*/5 * * * *")
        job, changed = service.update_job("ping", schedule="0 * * * *")
    """

    def __init__(
        self,
        session_factory: Optional[SessionFactory] = None,
        clock: Optional[Clock] = None,
        search_years: int = DEFAULT_SEARCH_YEARS,
    ) -> None:
        if session_factory is None:
            from cronpost.database.connection import get_db_session

            session_factory = get_db_session
        self._session_factory = session_factory
        self._clock = clock or utc_now
        self._search_years = search_years

    def _check_schedule(self, schedule: str, job_id: Optional[str] = None) -> None:
        try:
            validate_schedule(schedule, now=self._clock(), search_years=self._search_years)
        except ScheduleError as e:
            e.job_id = e.job_id or job_id
            raise

    def create_job(
        self,
        job_id: str,
        url: str,
        schedule: str,
        body: Optional[str] = None,
        secret: Optional[str] = None,
        is_active: bool = True,
        created_by: str = "cronpost",
    ) -> JobDefinition:
        """Validate and store a new job.

        Raises:
            JobValidationError: If the id or URL is malformed
            InvalidScheduleError: If the schedule is malformed
            UnreachableScheduleError: If the schedule never fires
            JobExistsError: If the id is taken
        """
        validate_job_id(job_id)
        validate_url(url, job_id)
        self._check_schedule(schedule, job_id)

        with self._session_factory() as session:
            repos = RepositoryFactory(session)
            if repos.jobs.exists(job_id):
                raise JobExistsError(job_id)
            db_job = repos.jobs.create(
                job_id=job_id,
                url=url,
                schedule=" ".join(schedule.split()),
                body=body or None,
                secret=secret or None,
                is_active=is_active,
                created_by=created_by,
            )
            job = db_job.to_definition()

        logger.info(f"Created job {job_id} ({job.schedule} -> {job.url})")
        return job

    def update_job(self, job_id: str, **changes: Any) -> Tuple[JobDefinition, Set[str]]:
        """Apply a partial update.

        Args:
            job_id: Job to change
            **changes: New values for url, schedule, body, secret, is_active

        Returns:
            The updated definition and the names of the fields that changed

        Raises:
            JobNotFoundError: If the job does not exist
            JobValidationError: If a new URL is malformed or a field is unknown
            InvalidScheduleError: If a new schedule is malformed
            UnreachableScheduleError: If a new schedule never fires
        """
        if "url" in changes:
            validate_url(changes["url"], job_id)
        if "schedule" in changes:
            self._check_schedule(changes["schedule"], job_id)
            changes["schedule"] = " ".join(changes["schedule"].split())
        for key in ("body", "secret"):
            if key in changes:
                changes[key] = changes[key] or None

        with self._session_factory() as session:
            repos = RepositoryFactory(session)
            db_job = repos.jobs.get_by_id(job_id)
            if db_job is None:
                raise JobNotFoundError(job_id)
            before = db_job.to_definition()
            try:
                db_job = repos.jobs.update(job_id, **changes)
            except ValueError as e:
                raise JobValidationError("fields", str(e), job_id) from e
            after = db_job.to_definition()

        changed = after.changed_fields(before)
        if changed:
            logger.info(f"Updated job {job_id}: {', '.join(sorted(changed))}")
        return after, changed

    def set_active(self, job_id: str, active: bool) -> Tuple[JobDefinition, Set[str]]:
        return self.update_job(job_id, is_active=active)

    def delete_job(self, job_id: str) -> None:
        """Delete a job. Its execution logs are kept until purged by age.

        Raises:
            JobNotFoundError: If the job does not exist
        """
        with self._session_factory() as session:
            if not RepositoryFactory(session).jobs.delete(job_id):
                raise JobNotFoundError(job_id)
        logger.info(f"Deleted job {job_id}")

    def get_job(self, job_id: str) -> JobDefinition:
        """Raises JobNotFoundError if the job does not exist."""
        with self._session_factory() as session:
            db_job = RepositoryFactory(session).jobs.get_by_id(job_id)
            if db_job is None:
                raise JobNotFoundError(job_id)
            return db_job.to_definition()

    def list_jobs(self, active_only: bool = False) -> List[JobDefinition]:
        with self._session_factory() as session:
            repo = RepositoryFactory(session).jobs
            db_jobs = repo.get_active() if active_only else repo.get_all()
            return [j.to_definition() for j in db_jobs]

    def get_logs(self, job_id: Optional[str] = None, limit: int = 100) -> List[ExecutionRecord]:
        """Get execution records, newest first."""
        with self._session_factory() as session:
            entries = RepositoryFactory(session).logs.get_logs(job_id=job_id, limit=limit)
            return [e.to_record() for e in entries]

    def clear_old_logs(self, days: int = 30) -> int:
        """Delete execution records older than ``days`` days.

        Returns:
            Number of records deleted
        """
        if days < 0:
            raise JobValidationError("days", "must not be negative")
        cutoff = self._clock() - timedelta(days=days)
        with self._session_factory() as session:
            deleted = RepositoryFactory(session).logs.delete_older_than(cutoff)
        logger.info(f"Cleared {deleted} execution records older than {days} days")
        return deleted

    def get_stats(self) -> JobStats:
        """Job counts and today's execution figures (UTC day)."""
        start_of_day = self._clock().replace(hour=0, minute=0, second=0, microsecond=0)
        with self._session_factory() as session:
            repos = RepositoryFactory(session)
            total_jobs = repos.jobs.count()
            active_jobs = repos.jobs.count(active_only=True)
            executions_today = repos.logs.count_since(start_of_day)
            successes_today = repos.logs.success_count_since(start_of_day)

        if executions_today:
            success_rate = round(successes_today / executions_today * 100, 1)
        else:
            success_rate = 100.0

        return JobStats(
            total_jobs=total_jobs,
            active_jobs=active_jobs,
            executions_today=executions_today,
            success_rate=success_rate,
        )

    def get_health(self) -> HealthStatus:
        with self._session_factory() as session:
            active_jobs = RepositoryFactory(session).jobs.count(active_only=True)
        return HealthStatus(status="healthy", timestamp=self._clock(), active_jobs=active_jobs)
