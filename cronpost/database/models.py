"""
SQLAlchemy models for the cronpost database.

Two tables: cron_jobs holds job definitions, execution_logs holds one row
per firing. execution_logs.job_id is a plain column rather than a foreign
key so history outlives deleted jobs until it is purged by age.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, declarative_base, mapped_column

from cronpost.scheduler.models import ExecutionRecord, ExecutionStatus, JobDefinition

# Create base class for all models
Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo; stored values are always UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class CronJob(Base):
    """
    Scheduled HTTP job.

    The secret is stored in the cron_secret column and never exported by
    to_dict().
    """

    __tablename__ = "cron_jobs"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    url: Mapped[str] = mapped_column(String, nullable=False)
    schedule: Mapped[str] = mapped_column(String, nullable=False)
    body: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    secret: Mapped[Optional[str]] = mapped_column("cron_secret", String, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_by: Mapped[str] = mapped_column(String, default="cronpost", nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
        nullable=False,
    )

    def to_definition(self) -> JobDefinition:
        """Convert to the JobDefinition handed to the scheduler."""
        return JobDefinition(
            id=self.id,
            url=self.url,
            schedule=self.schedule,
            body=self.body,
            secret=self.secret,
            is_active=self.is_active,
            created_at=_as_utc(self.created_at),
            created_by=self.created_by,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert job to dictionary representation."""
        return {
            "id": self.id,
            "url": self.url,
            "schedule": self.schedule,
            "body": self.body,
            "has_secret": bool(self.secret),
            "is_active": self.is_active,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class ExecutionLog(Base):
    """
    Execution log entry.

    One row per firing, written once and never updated.
    """

    __tablename__ = "execution_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    job_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        nullable=False,
    )
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    response_code: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    duration_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    def to_record(self) -> ExecutionRecord:
        return ExecutionRecord(
            id=self.id,
            job_id=self.job_id,
            timestamp=_as_utc(self.timestamp),
            status=ExecutionStatus(self.status),
            duration_ms=self.duration_ms,
            response_code=self.response_code,
            error_message=self.error_message,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert log entry to dictionary representation."""
        return {
            "id": self.id,
            "job_id": self.job_id,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "status": self.status,
            "response_code": self.response_code,
            "duration_ms": self.duration_ms,
            "error_message": self.error_message,
        }


# Additional indexes for common queries
Index("ix_execution_logs_timestamp", ExecutionLog.timestamp.desc())
