"""Data types shared by the scheduling core.

JobDefinition is owned by the job store and handed to the core; the core
produces ExecutionOutcome (runner) and ExecutionRecord (one per firing).
"""

import re
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional, Set
from uuid import uuid4

JOB_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")

# Fields whose change requires the job's timer to be replaced
TIMER_FIELDS = frozenset({"url", "schedule", "secret", "body", "is_active"})

# Source of "now" for fire-time computations, injectable for tests
Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ExecutionStatus(str, Enum):
    """Outcome classification of a single firing."""

    SUCCESS = "success"
    ERROR = "error"


@dataclass
class JobDefinition:
    """Definition of a scheduled HTTP job.

    Attributes:
        id: Unique identifier, immutable once created
        url: Absolute URL that receives the POST
        schedule: Five-field cron expression
        body: Payload forwarded verbatim on each firing
        secret: Credential sent as a bearer token
        is_active: Whether the job should hold a live timer
        created_at: When the job was created
        created_by: Who created the job
    """

    id: str
    url: str
    schedule: str
    body: Optional[str] = None
    secret: Optional[str] = None
    is_active: bool = True
    created_at: Optional[datetime] = None
    created_by: str = "cronpost"

    def changed_fields(self, other: "JobDefinition") -> Set[str]:
        """Names of fields whose values differ between two definitions."""
        return {
            f.name
            for f in fields(self)
            if f.name != "created_at" and getattr(self, f.name) != getattr(other, f.name)
        }

    def to_dict(self, include_secret: bool = False) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "url": self.url,
            "schedule": self.schedule,
            "body": self.body,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "created_by": self.created_by,
        }
        if include_secret:
            data["secret"] = self.secret
        else:
            data["has_secret"] = bool(self.secret)
        return data


@dataclass
class ExecutionOutcome:
    """Result of one outbound call made by the ExecutionRunner."""

    status: ExecutionStatus
    duration_ms: int
    completed_at: datetime
    response_code: Optional[int] = None
    error_message: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status is ExecutionStatus.SUCCESS


@dataclass
class ExecutionRecord:
    """Durable log entry for one firing of a job.

    Attributes:
        job_id: Identifier of the job that fired
        timestamp: Instant the execution completed
        status: success or error
        duration_ms: Wall-clock milliseconds from dispatch to completion
        response_code: HTTP status code, absent on transport failure
        error_message: Present only when status is error
        id: Generated unique identifier
    """

    job_id: str
    timestamp: datetime
    status: ExecutionStatus
    duration_ms: int
    response_code: Optional[int] = None
    error_message: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid4()))

    @classmethod
    def from_outcome(cls, job_id: str, outcome: ExecutionOutcome) -> "ExecutionRecord":
        return cls(
            job_id=job_id,
            timestamp=outcome.completed_at,
            status=outcome.status,
            duration_ms=outcome.duration_ms,
            response_code=outcome.response_code,
            error_message=outcome.error_message,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "job_id": self.job_id,
            "timestamp": self.timestamp.isoformat(),
            "status": self.status.value,
            "response_code": self.response_code,
            "duration_ms": self.duration_ms,
            "error_message": self.error_message,
        }
