"""Persistence for job definitions and execution logs (SQLAlchemy)."""

from cronpost.database.connection import (
    close_engine,
    create_tables,
    get_db_session,
    init_engine,
)
from cronpost.database.models import Base, CronJob, ExecutionLog
from cronpost.database.repositories import (
    ExecutionLogRepository,
    JobRepository,
    RepositoryFactory,
)

__all__ = [
    "Base",
    "CronJob",
    "ExecutionLog",
    "ExecutionLogRepository",
    "JobRepository",
    "RepositoryFactory",
    "close_engine",
    "create_tables",
    "get_db_session",
    "init_engine",
]
