"""Durable background job engine.

This module provides:
- A job type registry with declarative metadata
- Enqueue, scheduled and inline execution through ``JobClient``
- A polling dispatcher with atomic claims and a bounded worker pool
- Retry with configurable backoff, postponement and cancellation tokens
- Metrics collection and recurring scheduling via ``JobManager``
"""

from .base import BaseJob, JobContext, JobOptions
from .cancellation import CancellationToken, CancelReason, run_with_token
from .client import JobClient
from .errors import (
    EngineNotReadyError,
    JobCancelledError,
    JobEngineError,
    JobExecutionError,
    JobStateError,
    JobTimeoutError,
    JobTypeNotFoundError,
    JobValidationError,
)
from .executor import JobExecutor
from .job_manager import JobManager, JobScheduleConfig
from .monitoring import ExecutionEvent, JobMetrics, MetricsCollector
from .outcome import Failure, Outcome, Postpone, Success
from .registry import JobMetadata, JobRegistry
from .retry import BackoffStrategy, RetryPolicy
from .validation import ValidationGate, ValidationResult

__all__ = [
    # Core classes
    "BaseJob",
    "JobContext",
    "JobOptions",
    # Outcomes
    "Success",
    "Failure",
    "Postpone",
    "Outcome",
    # Registry and metadata
    "JobMetadata",
    "JobRegistry",
    # Submission and execution
    "JobClient",
    "JobExecutor",
    "JobManager",
    "JobScheduleConfig",
    "CancellationToken",
    "CancelReason",
    "run_with_token",
    # Retry and validation
    "BackoffStrategy",
    "RetryPolicy",
    "ValidationGate",
    "ValidationResult",
    # Monitoring
    "ExecutionEvent",
    "JobMetrics",
    "MetricsCollector",
    # Errors
    "JobEngineError",
    "EngineNotReadyError",
    "JobTypeNotFoundError",
    "JobValidationError",
    "JobStateError",
    "JobExecutionError",
    "JobTimeoutError",
    "JobCancelledError",
]
