"""Standard exit codes for the cronpost CLI.

Scripts driving `cronpost jobs ...` can branch on these values.
"""


class ExitCode:
    """Exit codes used by cronpost commands.

    Conventional values are kept where they exist:
    - 0: Success
    - 1: General error
    - 130: Interrupted by Ctrl+C (128 + SIGINT)

    cronpost-specific codes:
    - 2: Configuration error
    - 3: Daemon error (already running, not running)
    - 4: Database error
    - 5: Network error
    - 6: Job already exists
    - 7: Invalid argument (including malformed schedules)
    - 8: Not found
    - 9: Permission denied
    """

    SUCCESS = 0
    GENERAL_ERROR = 1

    CONFIGURATION_ERROR = 2
    DAEMON_ERROR = 3
    DATABASE_ERROR = 4
    NETWORK_ERROR = 5
    ALREADY_EXISTS = 6
    INVALID_ARGUMENT = 7
    NOT_FOUND = 8
    PERMISSION_DENIED = 9

    CANCELLED = 130

    _NAMES = {
        SUCCESS: "SUCCESS",
        GENERAL_ERROR: "GENERAL_ERROR",
        CONFIGURATION_ERROR: "CONFIGURATION_ERROR",
        DAEMON_ERROR: "DAEMON_ERROR",
        DATABASE_ERROR: "DATABASE_ERROR",
        NETWORK_ERROR: "NETWORK_ERROR",
        ALREADY_EXISTS: "ALREADY_EXISTS",
        INVALID_ARGUMENT: "INVALID_ARGUMENT",
        NOT_FOUND: "NOT_FOUND",
        PERMISSION_DENIED: "PERMISSION_DENIED",
        CANCELLED: "CANCELLED",
    }

    _DESCRIPTIONS = {
        SUCCESS: "Operation completed successfully",
        GENERAL_ERROR: "An unexpected error occurred",
        CONFIGURATION_ERROR: "Configuration error or invalid config file",
        DAEMON_ERROR: "Daemon is already running or is not running",
        DATABASE_ERROR: "Job store could not be read or written",
        NETWORK_ERROR: "Network or connectivity error",
        ALREADY_EXISTS: "A job with that id already exists",
        INVALID_ARGUMENT: "Invalid argument or schedule",
        NOT_FOUND: "Requested job not found",
        PERMISSION_DENIED: "Permission denied",
        CANCELLED: "Operation cancelled by user",
    }

    @classmethod
    def get_name(cls, code: int) -> str:
        """Get the symbolic name of an exit code."""
        return cls._NAMES.get(code, f"UNKNOWN({code})")

    @classmethod
    def get_description(cls, code: int) -> str:
        """Get a one-line description of an exit code."""
        return cls._DESCRIPTIONS.get(code, f"Unknown exit code: {code}")
