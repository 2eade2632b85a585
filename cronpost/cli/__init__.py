"""CLI command modules for cronpost.

This package contains the command groups and the shared error handling
and output helpers they use.
"""

from cronpost.cli import config, jobs, logs, run

from cronpost.cli.exit_codes import ExitCode
from cronpost.cli.error_handler import (
    CronpostError,
    ConfigurationError,
    DaemonError,
    DatabaseError,
    NetworkError,
    AlreadyExistsError,
    ValidationError,
    NotFoundError,
    handle_errors,
    translate_error,
)
from cronpost.cli.output import (
    print_json,
    print_result,
    format_datetime,
    format_duration_ms,
)

__all__ = [
    # Command modules
    "config",
    "jobs",
    "logs",
    "run",
    # Exit codes
    "ExitCode",
    # Error handling
    "CronpostError",
    "ConfigurationError",
    "DaemonError",
    "DatabaseError",
    "NetworkError",
    "AlreadyExistsError",
    "ValidationError",
    "NotFoundError",
    "handle_errors",
    "translate_error",
    # Output
    "print_json",
    "print_result",
    "format_datetime",
    "format_duration_ms",
]
