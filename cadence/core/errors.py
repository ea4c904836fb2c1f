"""
Cadence exception hierarchy.

Every error in the system inherits from CadenceError.
Each subsystem has its own error class for targeted catching.

Usage:
    try:
        await store.add("daily", "0 9 * * *", "summarise inbox")
    except DuplicateJobError:
        # name already taken
    except CadenceError as e:
        # any other Cadence failure
"""


class CadenceError(Exception):
    """Base exception for all Cadence errors."""

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


# ━━━ Configuration ━━━


class ConfigError(CadenceError):
    """Configuration is invalid, missing, or malformed."""

    pass


# ━━━ Scheduling ━━━


class ScheduleError(CadenceError):
    """Job could not be stored or scheduled."""

    pass


class InvalidScheduleError(ScheduleError):
    """Schedule expression does not split into exactly five fields."""

    def __init__(self, expression: str, details: dict | None = None):
        self.expression = expression
        super().__init__(
            f"Invalid schedule {expression!r}: expected 5 fields "
            f"(minute hour day-of-month month day-of-week)",
            details,
        )


class DuplicateJobError(ScheduleError):
    """A job with this name already exists."""

    def __init__(self, name: str, details: dict | None = None):
        self.name = name
        super().__init__(f"Job {name!r} already exists", details)


# ━━━ Persistence ━━━


class StorageError(CadenceError):
    """Job store or state file failure — database errors, unreadable files."""

    pass


# ━━━ Session ━━━


class SessionError(CadenceError):
    """Session state failure."""

    pass


class SessionParseError(SessionError):
    """New-session output from the agent could not be parsed."""

    pass


class SessionPersistError(SessionError):
    """A freshly assigned session id could not be written to disk."""

    def __init__(self, session_id: str, message: str, details: dict | None = None):
        self.session_id = session_id
        super().__init__(message, details)


# ━━━ Execution ━━━


class ExternalProcessError(CadenceError):
    """The agent process could not be spawned, failed on I/O, or timed out."""

    def __init__(
        self,
        message: str,
        exit_code: int = 1,
        details: dict | None = None,
    ):
        self.exit_code = exit_code
        super().__init__(message, details)


class QueueClosedError(CadenceError):
    """The execution queue is shutting down and no longer accepts runs."""

    pass
