"""Tests for error handler module."""

from unittest.mock import patch

import pytest
import typer
from sqlalchemy.exc import OperationalError

from cronpost.cli.error_handler import (
    AlreadyExistsError,
    ConfigurationError,
    CronpostError,
    DaemonError,
    DatabaseError,
    NetworkError,
    NotFoundError,
    ValidationError,
    handle_errors,
    translate_error,
)
from cronpost.cli.exit_codes import ExitCode
from cronpost.daemon.pid import DaemonAlreadyRunningError
from cronpost.scheduler.exceptions import InvalidScheduleError, UnreachableScheduleError
from cronpost.service import JobExistsError, JobNotFoundError, JobValidationError


class TestCronpostError:
    """Test base CronpostError class."""

    def test_basic_error(self) -> None:
        error = CronpostError("Test error")
        assert error.message == "Test error"
        assert error.exit_code == ExitCode.GENERAL_ERROR
        assert error.details == {}

    def test_error_with_exit_code(self) -> None:
        error = CronpostError("Test error", exit_code=ExitCode.CONFIGURATION_ERROR)
        assert error.exit_code == ExitCode.CONFIGURATION_ERROR

    def test_error_str_without_details(self) -> None:
        assert str(CronpostError("Test error")) == "Test error"

    def test_error_str_with_details(self) -> None:
        """Test string representation with details."""
        error = CronpostError("Test error", details={"key": "value"})
        assert str(error) == "Test error (key=value)"


class TestErrorSubclasses:
    @pytest.mark.parametrize(
        "error_class,exit_code",
        [
            (ConfigurationError, ExitCode.CONFIGURATION_ERROR),
            (DaemonError, ExitCode.DAEMON_ERROR),
            (DatabaseError, ExitCode.DATABASE_ERROR),
            (NetworkError, ExitCode.NETWORK_ERROR),
            (AlreadyExistsError, ExitCode.ALREADY_EXISTS),
            (ValidationError, ExitCode.INVALID_ARGUMENT),
            (NotFoundError, ExitCode.NOT_FOUND),
        ],
    )
    def test_default_exit_code(self, error_class, exit_code) -> None:
        assert error_class("x").exit_code == exit_code

    def test_override_exit_code(self) -> None:
        error = DaemonError("x", exit_code=ExitCode.PERMISSION_DENIED)
        assert error.exit_code == ExitCode.PERMISSION_DENIED


class TestTranslateError:
    """Test mapping of domain exceptions to CLI errors."""

    def test_cli_error_passes_through(self) -> None:
        error = NotFoundError("gone")
        assert translate_error(error) is error

    def test_invalid_schedule(self) -> None:
        error = translate_error(InvalidScheduleError("61 * * * *", "minute out of range", job_id="ping"))

        assert isinstance(error, ValidationError)
        assert error.details == {"schedule": "61 * * * *"}
        assert error.message.startswith("Invalid schedule '61 * * * *'")

    def test_unreachable_schedule(self) -> None:
        error = translate_error(UnreachableScheduleError("0 0 30 2 *", 5))

        assert error.exit_code == ExitCode.INVALID_ARGUMENT

    @pytest.mark.parametrize(
        "domain_error,exit_code",
        [
            (JobValidationError("url", "must be absolute"), ExitCode.INVALID_ARGUMENT),
            (JobNotFoundError("ping"), ExitCode.NOT_FOUND),
            (JobExistsError("ping"), ExitCode.ALREADY_EXISTS),
            (DaemonAlreadyRunningError(4242, "/tmp/cronpost.pid"), ExitCode.DAEMON_ERROR),
            (OperationalError("SELECT 1", {}, Exception("database is locked")), ExitCode.DATABASE_ERROR),
        ],
    )
    def test_domain_errors(self, domain_error, exit_code) -> None:
        assert translate_error(domain_error).exit_code == exit_code

    def test_unexpected_error(self) -> None:
        assert translate_error(ValueError("boom")) is None


class TestHandleErrors:
    """Test handle_errors decorator."""

    def test_successful_execution(self) -> None:
        @handle_errors
        def test_func():
            return "success"

        assert test_func() == "success"

    def test_cronpost_error_handling(self) -> None:
        @handle_errors
        def test_func():
            raise ConfigurationError("Test config error")

        with pytest.raises(typer.Exit) as exc_info:
            with patch("cronpost.cli.error_handler.console"):
                test_func()

        assert exc_info.value.exit_code == ExitCode.CONFIGURATION_ERROR

    def test_domain_error_handling(self) -> None:
        """Test that service exceptions become their CLI exit code."""
        @handle_errors
        def test_func():
            raise JobNotFoundError("ping")

        with pytest.raises(typer.Exit) as exc_info:
            with patch("cronpost.cli.error_handler.console") as console:
                test_func()

        assert exc_info.value.exit_code == ExitCode.NOT_FOUND
        console.print.assert_any_call("[red]Error:[/red] Job not found: ping")

    def test_keyboard_interrupt_handling(self) -> None:
        @handle_errors
        def test_func():
            raise KeyboardInterrupt()

        with pytest.raises(typer.Exit) as exc_info:
            with patch("cronpost.cli.error_handler.console"):
                test_func()

        assert exc_info.value.exit_code == ExitCode.CANCELLED

    def test_generic_exception_handling(self) -> None:
        @handle_errors
        def test_func():
            raise ValueError("Test error")

        with pytest.raises(typer.Exit) as exc_info:
            with patch("cronpost.cli.error_handler.console"):
                test_func()

        assert exc_info.value.exit_code == ExitCode.GENERAL_ERROR

    def test_typer_exit_re_raised(self) -> None:
        """Test that typer.Exit is re-raised as-is."""
        @handle_errors
        def test_func():
            raise typer.Exit(code=42)

        with pytest.raises(typer.Exit) as exc_info:
            test_func()

        assert exc_info.value.exit_code == 42

    def test_typer_abort_re_raised(self) -> None:
        @handle_errors
        def test_func():
            raise typer.Abort()

        with pytest.raises(typer.Abort):
            test_func()
