"""Scheduling core: cron parsing, HTTP execution, timers and reconciliation.

The Reconciler is the entry point; it owns a TimerRegistry whose timers
call the ExecutionRunner and write results to a LogSink.
"""

from cronpost.scheduler.cron import CronSchedule, next_fire_time, parse_schedule
from cronpost.scheduler.exceptions import (
    InvalidScheduleError,
    LogSinkError,
    SchedulerError,
    ScheduleError,
    TransportError,
    UnreachableScheduleError,
)
from cronpost.scheduler.models import (
    ExecutionOutcome,
    ExecutionRecord,
    ExecutionStatus,
    JobDefinition,
)
from cronpost.scheduler.reconciler import Reconciler, execute_job
from cronpost.scheduler.registry import ScheduleTrigger, TimerRegistry
from cronpost.scheduler.runner import ExecutionRunner
from cronpost.scheduler.sinks import DatabaseLogSink, LogSink, MemoryLogSink

__all__ = [
    "CronSchedule",
    "DatabaseLogSink",
    "ExecutionOutcome",
    "ExecutionRecord",
    "ExecutionRunner",
    "ExecutionStatus",
    "InvalidScheduleError",
    "JobDefinition",
    "LogSink",
    "LogSinkError",
    "MemoryLogSink",
    "Reconciler",
    "ScheduleError",
    "ScheduleTrigger",
    "SchedulerError",
    "TimerRegistry",
    "TransportError",
    "UnreachableScheduleError",
    "execute_job",
    "next_fire_time",
    "parse_schedule",
]
