"""Database repositories for cronpost.

Provides data access for job definitions and execution logs.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, List, Optional

from sqlalchemy import desc, func
from sqlalchemy.orm import Session

from cronpost.database.models import CronJob, ExecutionLog

# Columns update() may change; id and created_at are fixed at creation
_UPDATABLE_FIELDS = frozenset({"url", "schedule", "body", "secret", "is_active", "created_by"})


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class JobRepository:
    """
    Repository for job definitions.

    Provides CRUD operations for the cron_jobs table.
    """

    def __init__(self, session: Session):
        """
        Initialize repository with database session.

        Args:
            session: SQLAlchemy session
        """
        self.session = session

    def create(
        self,
        job_id: str,
        url: str,
        schedule: str,
        body: Optional[str] = None,
        secret: Optional[str] = None,
        is_active: bool = True,
        created_by: str = "cronpost",
    ) -> CronJob:
        """
        Create a new job in database.

        Args:
            job_id: Unique job identifier
            url: Target URL
            schedule: Cron expression
            body: Request payload
            secret: Bearer credential
            is_active: Whether the job should run
            created_by: Creator tag

        Returns:
            Created CronJob instance
        """
        db_job = CronJob(
            id=job_id,
            url=url,
            schedule=schedule,
            body=body,
            secret=secret,
            is_active=is_active,
            created_by=created_by,
        )
        self.session.add(db_job)
        self.session.commit()
        self.session.refresh(db_job)
        return db_job

    def get_by_id(self, job_id: str) -> Optional[CronJob]:
        """
        Get a job by its identifier.

        Returns:
            CronJob if found, None otherwise
        """
        return self.session.get(CronJob, job_id)

    def exists(self, job_id: str) -> bool:
        return self.get_by_id(job_id) is not None

    def get_all(self) -> List[CronJob]:
        """
        Get all jobs, oldest first.

        Returns:
            List of all jobs
        """
        return self.session.query(CronJob).order_by(CronJob.created_at, CronJob.id).all()

    def get_active(self) -> List[CronJob]:
        """
        Get all active jobs.

        Returns:
            List of active jobs
        """
        return self.session.query(CronJob).filter(
            CronJob.is_active.is_(True)
        ).order_by(CronJob.created_at, CronJob.id).all()

    def count(self, active_only: bool = False) -> int:
        query = self.session.query(CronJob)
        if active_only:
            query = query.filter(CronJob.is_active.is_(True))
        return query.count()

    def update(self, job_id: str, **kwargs: Any) -> Optional[CronJob]:
        """
        Update a job.

        Args:
            job_id: Identifier of the job to update
            **kwargs: Attributes to update

        Returns:
            Updated CronJob or None if not found

        Raises:
            ValueError: If a field cannot be updated
        """
        db_job = self.get_by_id(job_id)
        if not db_job:
            return None

        unknown = set(kwargs) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        for key, value in kwargs.items():
            setattr(db_job, key, value)

        self.session.commit()
        self.session.refresh(db_job)
        return db_job

    def delete(self, job_id: str) -> bool:
        """
        Delete a job.

        Returns:
            True if deleted, False if not found
        """
        db_job = self.get_by_id(job_id)
        if not db_job:
            return False

        self.session.delete(db_job)
        self.session.commit()
        return True


class ExecutionLogRepository:
    """
    Repository for execution logs.

    Provides methods for recording and querying job executions.
    """

    def __init__(self, session: Session):
        """
        Initialize repository with database session.

        Args:
            session: SQLAlchemy session
        """
        self.session = session

    def create(
        self,
        id: str,
        job_id: str,
        timestamp: datetime,
        status: str,
        duration_ms: int,
        response_code: Optional[int] = None,
        error_message: Optional[str] = None,
    ) -> ExecutionLog:
        """
        Record a job execution.

        Args:
            id: Record identifier
            job_id: Identifier of the job that fired
            timestamp: When the execution completed
            status: "success" or "error"
            duration_ms: Wall-clock duration in milliseconds
            response_code: HTTP status code, if a response arrived
            error_message: Failure description

        Returns:
            Created ExecutionLog instance
        """
        entry = ExecutionLog(
            id=id,
            job_id=job_id,
            timestamp=_utc(timestamp),
            status=status,
            duration_ms=duration_ms,
            response_code=response_code,
            error_message=error_message,
        )
        self.session.add(entry)
        self.session.commit()
        return entry

    def get_logs(
        self,
        job_id: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[ExecutionLog]:
        """
        Get execution logs, newest first.

        Args:
            job_id: Filter by job ID (optional)
            limit: Maximum number of results
            offset: Number of results to skip

        Returns:
            List of execution logs ordered by timestamp descending
        """
        query = self.session.query(ExecutionLog)

        if job_id:
            query = query.filter(ExecutionLog.job_id == job_id)

        return query.order_by(desc(ExecutionLog.timestamp)).offset(offset).limit(limit).all()

    def count_since(self, since: datetime, status: Optional[str] = None) -> int:
        """
        Count executions at or after a point in time.

        Args:
            since: Lower bound (inclusive)
            status: Only count this status (optional)
        """
        query = self.session.query(func.count(ExecutionLog.id)).filter(
            ExecutionLog.timestamp >= _utc(since)
        )
        if status:
            query = query.filter(ExecutionLog.status == status)
        return query.scalar() or 0

    def success_count_since(self, since: datetime) -> int:
        return self.count_since(since, status="success")

    def delete_older_than(self, cutoff: datetime) -> int:
        """
        Delete executions older than a given time.

        Args:
            cutoff: Delete executions completed before this time

        Returns:
            Number of executions deleted
        """
        result = self.session.query(ExecutionLog).filter(
            ExecutionLog.timestamp < _utc(cutoff)
        ).delete(synchronize_session=False)
        self.session.commit()
        return result


class RepositoryFactory:
    """
    Factory for creating repository instances.

    Usage:
        with get_db_session() as session:
            repos = RepositoryFactory(session)
            jobs = repos.jobs.get_active()
    """

    def __init__(self, session: Session):
        """
        Initialize factory with database session.

        Args:
            session: SQLAlchemy session
        """
        self.session = session
        self._jobs: Optional[JobRepository] = None
        self._logs: Optional[ExecutionLogRepository] = None

    @property
    def jobs(self) -> JobRepository:
        """
        Get job repository.

        Returns:
            JobRepository instance
        """
        if self._jobs is None:
            self._jobs = JobRepository(self.session)
        return self._jobs

    @property
    def logs(self) -> ExecutionLogRepository:
        """
        Get execution log repository.

        Returns:
            ExecutionLogRepository instance
        """
        if self._logs is None:
            self._logs = ExecutionLogRepository(self.session)
        return self._logs
