"""Job type registry and declarative job metadata."""

from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional, Type, TypeVar, Union

from pydantic import BaseModel

from jobengine.lib.logger import configure_logger

from .base import BaseJob
from .errors import JobTypeNotFoundError
from .retry import (
    DEFAULT_BASE_DELAY_MS,
    DEFAULT_MAX_DELAY_MS,
    DEFAULT_MAX_RETRIES,
    BackoffStrategy,
    RetryPolicy,
)

logger = configure_logger(__name__)

T = TypeVar("T", bound=BaseJob)

JobFactory = Callable[[], BaseJob]
DedupeKeyRule = Union[str, Callable[[Dict[str, Any]], str]]


@dataclass
class JobMetadata:
    """Metadata for job configuration and execution."""

    # Basic job information
    name: str = ""
    description: str = ""
    enabled: bool = True

    # Execution defaults, merged underneath caller params and options
    timeout_ms: Optional[int] = None
    max_retries: Optional[int] = None
    retryable: Optional[bool] = None
    priority: Optional[int] = None

    # Input schema checked against the full merged input
    schema: Optional[Type[BaseModel]] = None

    # Constant key or function of the merged input
    dedupe_key: Optional[DedupeKeyRule] = None

    # Retry/backoff configuration
    backoff: BackoffStrategy = BackoffStrategy.EXPONENTIAL
    base_delay_ms: int = DEFAULT_BASE_DELAY_MS
    max_delay_ms: int = DEFAULT_MAX_DELAY_MS
    retry_if: Optional[Callable[[BaseException], bool]] = None
    retry_delay: Optional[Callable[[int], int]] = None

    # Recurring scheduling; None means the type is only run on demand
    interval_seconds: Optional[int] = None

    extra: Dict[str, Any] = field(default_factory=dict)

    def default_options(self) -> Dict[str, Any]:
        """Type defaults that form the lowest layer of the job input."""
        defaults = {
            "timeout_ms": self.timeout_ms,
            "max_retries": self.max_retries,
            "retryable": self.retryable,
            "priority": self.priority,
        }
        return {key: value for key, value in defaults.items() if value is not None}

    def resolve_dedupe_key(self, input: Dict[str, Any]) -> Optional[str]:
        if self.dedupe_key is None:
            return None
        if callable(self.dedupe_key):
            key = self.dedupe_key(input)
            return str(key) if key else None
        return self.dedupe_key

    def retry_policy(
        self,
        input: Optional[Dict[str, Any]] = None,
        default_max_retries: int = DEFAULT_MAX_RETRIES,
    ) -> RetryPolicy:
        """Build the retry policy, honouring per-job input overrides."""
        input = input or {}
        max_retries = input.get("max_retries")
        if max_retries is None:
            max_retries = (
                self.max_retries if self.max_retries is not None else default_max_retries
            )
        retryable = input.get("retryable")
        if retryable is None:
            retryable = self.retryable if self.retryable is not None else True

        return RetryPolicy(
            max_retries=max_retries,
            retryable=retryable,
            backoff=BackoffStrategy(self.backoff),
            base_delay_ms=self.base_delay_ms,
            max_delay_ms=self.max_delay_ms,
            retry_if=self.retry_if,
            delay_fn=self.retry_delay,
        )


class JobRegistry:
    """Maps job type names to factories and metadata.

    Registration is explicit and additive; registering a name again replaces
    its factory and metadata.
    """

    def __init__(self):
        self._jobs: Dict[str, JobFactory] = {}
        self._metadata: Dict[str, JobMetadata] = {}

    def register(
        self,
        job_type: str,
        factory: JobFactory,
        metadata: Optional[JobMetadata] = None,
        **kwargs,
    ) -> JobMetadata:
        """Register a job factory under ``job_type``.

        Args:
            job_type: The job type name
            factory: Zero-argument callable returning a BaseJob (usually the class)
            metadata: Optional job metadata
            **kwargs: Additional metadata fields, applied over ``metadata``

        Example:
            registry.register(
                "send_email",
                SendEmailJob,
                max_retries=5,
                backoff="linear",
                dedupe_key=lambda input: f"email:{input['target_id']}",
            )
        """
        if not job_type:
            raise ValueError("job_type must be a non-empty string")

        meta = replace(metadata) if metadata is not None else JobMetadata()
        for key, value in kwargs.items():
            if not hasattr(meta, key):
                raise TypeError(f"Unknown job metadata field: {key}")
            setattr(meta, key, value)
        meta.backoff = BackoffStrategy(meta.backoff)
        if not meta.name:
            meta.name = job_type
        if not meta.description:
            meta.description = getattr(factory, "__doc__", None) or ""

        if job_type in self._jobs:
            logger.info(
                f"Re-registering job type: {job_type}",
                extra={"job_type": job_type, "event_type": "job_reregistered"},
            )

        self._jobs[job_type] = factory
        self._metadata[job_type] = meta

        logger.debug(
            f"Registered job: {job_type} -> {getattr(factory, '__name__', factory)}",
            extra={
                "job_type": job_type,
                "max_retries": meta.max_retries,
                "timeout_ms": meta.timeout_ms,
                "event_type": "job_registered",
            },
        )
        return meta

    def register_job(
        self, job_class: Type[BaseJob], metadata: Optional[JobMetadata] = None, **kwargs
    ) -> JobMetadata:
        """Register a job class under its ``job_name`` (or class name)."""
        return self.register(self.type_name(job_class), job_class, metadata, **kwargs)

    def register_jobs(self, job_classes: List[Type[BaseJob]]) -> None:
        for job_class in job_classes:
            self.register_job(job_class)

    def job(
        self, job_type: Optional[str] = None, **kwargs
    ) -> Callable[[Type[T]], Type[T]]:
        """Class decorator registering the class; the class is returned unchanged.

        Example:
            @registry.job("process_file", timeout_ms=60000, max_retries=2)
            class ProcessFileJob(BaseJob):
                ...
        """

        def decorator(job_class: Type[T]) -> Type[T]:
            self.register(job_type or self.type_name(job_class), job_class, **kwargs)
            return job_class

        return decorator

    @staticmethod
    def type_name(job_type: Union[str, Type[BaseJob]]) -> str:
        if isinstance(job_type, str):
            return job_type
        return getattr(job_type, "job_name", None) or job_type.__name__

    def resolve(self, job_type: Union[str, Type[BaseJob]]) -> JobFactory:
        name = self.type_name(job_type)
        factory = self._jobs.get(name)
        if factory is None:
            raise JobTypeNotFoundError(name)
        return factory

    def get_metadata(self, job_type: Union[str, Type[BaseJob]]) -> JobMetadata:
        name = self.type_name(job_type)
        metadata = self._metadata.get(name)
        if metadata is None:
            raise JobTypeNotFoundError(name)
        return metadata

    def is_registered(self, job_type: Union[str, Type[BaseJob]]) -> bool:
        return self.type_name(job_type) in self._jobs

    def create_instance(
        self,
        job_type: Union[str, Type[BaseJob]],
        input: Optional[Dict[str, Any]] = None,
        default_max_retries: int = DEFAULT_MAX_RETRIES,
    ) -> BaseJob:
        """Build a fresh job instance with its retry policy resolved."""
        name = self.type_name(job_type)
        instance = self.resolve(name)()
        instance.job_name = name
        instance.retry_policy = self.get_metadata(name).retry_policy(
            input, default_max_retries
        )
        return instance

    def list_jobs(self) -> Dict[str, JobMetadata]:
        """List all registered jobs and their metadata."""
        return self._metadata.copy()

    def list_enabled_jobs(self) -> Dict[str, JobMetadata]:
        return {
            job_type: metadata
            for job_type, metadata in self._metadata.items()
            if metadata.enabled
        }

    def get_all_job_types(self) -> List[str]:
        return list(self._jobs.keys())

    def clear_registry(self) -> None:
        """Clear all registered jobs (useful for testing)."""
        self._jobs.clear()
        self._metadata.clear()
