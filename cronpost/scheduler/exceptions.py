"""Exceptions raised by the scheduling core."""


class SchedulerError(Exception):
    """Base exception for scheduling errors."""

    def __init__(self, message: str, job_id: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.job_id = job_id

    def __str__(self) -> str:
        if self.job_id:
            return f"{self.message} (job: {self.job_id})"
        return self.message


class ScheduleError(SchedulerError):
    """Base class for problems with a recurrence expression."""

    def __init__(self, message: str, expression: str, job_id: str | None = None) -> None:
        super().__init__(message, job_id)
        self.expression = expression


class InvalidScheduleError(ScheduleError):
    """Raised when a recurrence expression is malformed."""

    def __init__(self, expression: str, reason: str, job_id: str | None = None) -> None:
        super().__init__(
            f"Invalid schedule '{expression}': {reason}", expression, job_id
        )
        self.reason = reason


class UnreachableScheduleError(ScheduleError):
    """Raised when a valid expression never matches within the search bound."""

    def __init__(self, expression: str, years: int, job_id: str | None = None) -> None:
        super().__init__(
            f"Schedule '{expression}' has no fire time within {years} years",
            expression,
            job_id,
        )
        self.years = years


class TransportError(SchedulerError):
    """Raised when an outbound HTTP call fails before a response arrives."""

    def __init__(self, message: str, url: str, cause: Exception | None = None) -> None:
        super().__init__(message)
        self.url = url
        self.cause = cause


class LogSinkError(SchedulerError):
    """Raised when an execution record could not be persisted."""
    pass
