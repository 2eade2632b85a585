"""Error handling for cronpost commands.

CLI-level exceptions carry an exit code. The handle_errors decorator turns
them, and the domain exceptions raised by the service and scheduler
layers, into a red message on stderr and the matching exit code.
"""

from functools import wraps
from typing import Any, Callable, Optional, TypeVar
import logging

import typer
from rich.console import Console
from sqlalchemy.exc import SQLAlchemyError

from cronpost.cli.exit_codes import ExitCode
from cronpost.daemon.pid import DaemonAlreadyRunningError
from cronpost.scheduler.exceptions import ScheduleError
from cronpost.service import (
    JobExistsError,
    JobNotFoundError,
    JobValidationError,
)

# Console for error output (stderr)
console = Console(stderr=True)

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


class CronpostError(Exception):
    """Base exception for CLI errors.

    Attributes:
        message: Error message
        exit_code: Exit code to use when exiting
        details: Optional dictionary of additional error details
    """

    exit_code: int = ExitCode.GENERAL_ERROR

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if exit_code is not None:
            self.exit_code = exit_code
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class ConfigurationError(CronpostError):
    """Invalid configuration file, value or environment override."""

    exit_code = ExitCode.CONFIGURATION_ERROR


class DaemonError(CronpostError):
    """The daemon is in the wrong state for the requested command.

    Examples:
        - `run` while another daemon holds the PID file
        - `run stop` with no daemon running
    """

    exit_code = ExitCode.DAEMON_ERROR


class DatabaseError(CronpostError):
    """The job store could not be read or written."""

    exit_code = ExitCode.DATABASE_ERROR


class NetworkError(CronpostError):
    exit_code = ExitCode.NETWORK_ERROR


class AlreadyExistsError(CronpostError):
    exit_code = ExitCode.ALREADY_EXISTS


class ValidationError(CronpostError):
    """User input failed validation.

    Examples:
        - Malformed or never-firing schedule
        - Job id with disallowed characters
        - URL that is not absolute http(s)
    """

    exit_code = ExitCode.INVALID_ARGUMENT


class NotFoundError(CronpostError):
    exit_code = ExitCode.NOT_FOUND


def translate_error(error: Exception) -> Optional[CronpostError]:
    """Map a domain exception to the CLI error that reports it.

    Returns:
        The matching CronpostError, or None for unexpected exceptions
    """
    if isinstance(error, CronpostError):
        return error
    if isinstance(error, ScheduleError):
        return ValidationError(error.message, details={"schedule": error.expression})
    if isinstance(error, JobValidationError):
        return ValidationError(error.message)
    if isinstance(error, JobNotFoundError):
        return NotFoundError(error.message)
    if isinstance(error, JobExistsError):
        return AlreadyExistsError(error.message)
    if isinstance(error, DaemonAlreadyRunningError):
        return DaemonError(str(error))
    if isinstance(error, SQLAlchemyError):
        return DatabaseError(f"Database error: {error.__class__.__name__}: {error}")
    return None


def handle_errors(func: F) -> F:
    """Decorator for consistent error handling across CLI commands.

    Known errors print a message and exit with their code; KeyboardInterrupt
    exits with 130; anything else is logged with its traceback and exits
    with 1.

    Example:
        @app.command()
        @handle_errors
        def my_command():
            raise NotFoundError("Job not found: nightly")
    """
    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except (typer.Exit, typer.Abort):
            raise
        except KeyboardInterrupt:
            console.print("\n[yellow]Operation cancelled by user.[/yellow]")
            logger.info("Operation cancelled by user (KeyboardInterrupt)")
            raise typer.Exit(code=ExitCode.CANCELLED)
        except Exception as e:
            error = translate_error(e)
            if error is None:
                logger.exception("Unexpected error occurred")
                console.print(f"[red]Unexpected error:[/red] {e}")
                console.print("[dim]Run with --debug for more details[/dim]")
                raise typer.Exit(code=ExitCode.GENERAL_ERROR)

            logger.error(
                f"{error.__class__.__name__}: {error.message}",
                extra={"exit_code": error.exit_code, "details": error.details},
            )
            console.print(f"[red]Error:[/red] {error.message}")
            for key, value in error.details.items():
                console.print(f"  [dim]{key}:[/dim] {value}")
            raise typer.Exit(code=error.exit_code)

    return wrapper  # type: ignore[return-value]
