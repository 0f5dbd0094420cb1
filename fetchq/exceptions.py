"""
Defines custom exceptions for the application to allow for more specific error handling.

Every exception carries an optional machine-readable ``reason`` code so callers
of the submission interface can react without parsing messages.
"""


class FetchqError(Exception):
    """Base exception for all application-specific errors."""

    def __init__(self, message: str = "", reason: str | None = None):
        super().__init__(message or reason or self.__class__.__name__)
        self.reason = reason


class ValidationError(FetchqError):
    """Raised when a request is malformed: missing id/url, bad url or unsupported mode."""


class CapacityError(FetchqError):
    """
    Raised when a job cannot start right now (``too_many_jobs``, ``paused``) or the
    queue is full (``queue_full``). The engine turns the first two into an enqueue.
    """


class DependencyMissingError(FetchqError):
    """Raised when a required external executable is absent (``ytdlp_missing``, ``ffmpeg_missing``)."""


class ProcessFailureError(FetchqError):
    """Raised by front-ends when a job's process exited nonzero without being canceled."""

    def __init__(self, job_id: str, exit_code: int | None, stderr_tail: str | None = None):
        detail = f"Job '{job_id}' failed with exit code {exit_code}."
        if stderr_tail:
            detail += f"\n{stderr_tail}"
        super().__init__(detail, reason="process_failed")
        self.job_id = job_id
        self.exit_code = exit_code
        self.stderr_tail = stderr_tail


class JobCanceledError(FetchqError):
    """Raised by front-ends waiting on a job that ended in the canceled state."""

    def __init__(self, job_id: str):
        super().__init__(f"Job '{job_id}' was canceled.", reason="canceled")
        self.job_id = job_id


class ConfigurationError(FetchqError):
    """Raised for issues related to settings loading or validation."""


class StorageError(FetchqError):
    """Raised when a persisted state file cannot be read or written."""


class NotFoundError(FetchqError):
    """Raised when a queue or history operation targets an unknown id."""
