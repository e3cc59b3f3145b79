"""Error taxonomy for the job engine.

Postponement and deduplication are deliberate outcomes, not errors, and have
no exception types here.
"""

from typing import Optional


class JobEngineError(Exception):
    """Base class for all job engine errors."""


class EngineNotReadyError(JobEngineError):
    """The job store or dispatcher has not been initialized."""


class JobTypeNotFoundError(JobEngineError, LookupError):
    """No job type is registered under the requested name."""

    def __init__(self, job_type: str):
        self.job_type = job_type
        super().__init__(f"No job registered for type: {job_type}")


class JobValidationError(JobEngineError):
    """Job input failed validation. Terminal, never retried."""


class JobStateError(JobEngineError):
    """An operation was attempted outside the state that allows it."""


class JobExecutionError(JobEngineError):
    """A job execution attempt failed; subject to the retry decision."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class JobTimeoutError(JobExecutionError, TimeoutError):
    """The job did not finish within its time budget."""


class JobCancelledError(JobExecutionError):
    """The job was cancelled by an external request."""
