"""Destinations for execution records.

A log sink receives one ExecutionRecord per firing. Sinks are called from a
worker thread, so they may block; on failure they raise LogSinkError.
"""

import logging
import threading
from typing import Callable, ContextManager, List, Optional, Protocol, runtime_checkable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from cronpost.scheduler.exceptions import LogSinkError
from cronpost.scheduler.models import ExecutionRecord

logger = logging.getLogger(__name__)


@runtime_checkable
class LogSink(Protocol):
    """Anything that can persist an ExecutionRecord."""

    def record(self, record: ExecutionRecord) -> None:
        ...


class MemoryLogSink:
    """Keeps records in a bounded in-memory list.

    Used by tests and by `cronpost jobs run` when no database is wanted.
    """

    def __init__(self, max_records: int = 1000) -> None:
        self._records: List[ExecutionRecord] = []
        self._max_records = max_records
        self._lock = threading.Lock()

    @property
    def records(self) -> List[ExecutionRecord]:
        with self._lock:
            return list(self._records)

    def record(self, record: ExecutionRecord) -> None:
        with self._lock:
            self._records.append(record)
            if len(self._records) > self._max_records:
                self._records = self._records[-self._max_records:]

    def for_job(self, job_id: str) -> List[ExecutionRecord]:
        return [r for r in self.records if r.job_id == job_id]

    def clear(self) -> None:
        with self._lock:
            self._records.clear()


class DatabaseLogSink:
    """Writes records to the execution_logs table."""

    def __init__(
        self,
        session_factory: Optional[Callable[[], ContextManager[Session]]] = None,
    ) -> None:
        """Initialize the sink.

        Args:
            session_factory: Context manager factory yielding a session that
                commits on exit. Defaults to get_db_session.
        """
        if session_factory is None:
            from cronpost.database.connection import get_db_session

            session_factory = get_db_session
        self._session_factory = session_factory

    def record(self, record: ExecutionRecord) -> None:
        from cronpost.database.repositories import ExecutionLogRepository

        try:
            with self._session_factory() as session:
                ExecutionLogRepository(session).create(
                    id=record.id,
                    job_id=record.job_id,
                    timestamp=record.timestamp,
                    status=record.status.value,
                    response_code=record.response_code,
                    duration_ms=record.duration_ms,
                    error_message=record.error_message,
                )
        except SQLAlchemyError as e:
            raise LogSinkError(
                f"Failed to store execution record {record.id}: {e}",
                job_id=record.job_id,
            ) from e
        logger.debug(f"Stored execution record {record.id} for job {record.job_id}")
