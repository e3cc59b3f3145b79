"""Entry points for submitting work: enqueue, schedule_at and run_now."""

from datetime import datetime
from typing import Any, Dict, Optional, Tuple, Type, Union

from jobengine.backend.abstract import AbstractBackend
from jobengine.backend.models import Job, JobCreate
from jobengine.config import QueueConfig
from jobengine.config import config as default_config
from jobengine.lib.logger import configure_logger
from jobengine.lib.utils import to_naive_utc, utcnow

from .base import BaseJob, JobOptions
from .cancellation import CancellationToken, run_with_token
from .errors import (
    EngineNotReadyError,
    JobEngineError,
    JobExecutionError,
    JobStateError,
    JobValidationError,
)
from .outcome import Failure, Postpone
from .registry import JobMetadata, JobRegistry
from .validation import ValidationGate, missing_required_fields

logger = configure_logger(__name__)

JobTypeRef = Union[str, Type[BaseJob]]
OptionsArg = Optional[Union[JobOptions, Dict[str, Any]]]


class JobClient:
    """Submits jobs to the durable store or runs them inline.

    The registry and store are passed in explicitly; there is no global queue.
    """

    def __init__(
        self,
        registry: JobRegistry,
        backend: Optional[AbstractBackend],
        queue_config: Optional[QueueConfig] = None,
    ):
        self.registry = registry
        self.backend = backend
        self.queue_config = queue_config or default_config.queue

    async def enqueue(
        self,
        job_type: JobTypeRef,
        user_id: str,
        target_id: str,
        params: Optional[Dict[str, Any]] = None,
        options: OptionsArg = None,
    ) -> Job:
        """Persist a job for background execution as soon as a worker is free."""
        return self._create(job_type, user_id, target_id, params, options)

    async def schedule_at(
        self,
        when: datetime,
        job_type: JobTypeRef,
        user_id: str,
        target_id: str,
        params: Optional[Dict[str, Any]] = None,
        options: OptionsArg = None,
    ) -> Job:
        """Persist a job that becomes eligible at ``when`` (may be in the future)."""
        return self._create(
            job_type, user_id, target_id, params, options, scheduled_at=when
        )

    async def run_now(
        self,
        job_type: JobTypeRef,
        user_id: str,
        target_id: str,
        params: Optional[Dict[str, Any]] = None,
        options: OptionsArg = None,
    ) -> Any:
        """Execute a job inline, bypassing the store.

        Returns the data of a ``Success`` outcome. Failures are raised:
        ``JobTimeoutError``/``JobCancelledError`` for token-driven stops, the
        job's own ``JobEngineError`` subclasses as-is, and anything else wrapped
        in ``JobExecutionError``.
        """
        name = self.registry.type_name(job_type)
        metadata = self.registry.get_metadata(name)
        input, opts = self._build_input(metadata, user_id, target_id, params, options)

        job = self.registry.create_instance(
            name, input, self.queue_config.default_max_retries
        )
        validation = await ValidationGate.for_job(job, metadata.schema).check(input)
        if not validation.valid:
            raise JobValidationError(validation.message)

        owns_token = opts.cancellation_token is None
        token = opts.cancellation_token or CancellationToken.with_timeout(
            self._timeout_ms(input)
        )
        logger.debug(
            f"Running job inline: {name}",
            extra={"job_type": name, "event_type": "job_run_now"},
        )
        try:
            outcome = await run_with_token(job.execute(input, token), token)
        finally:
            if owns_token:
                token.dispose()

        if isinstance(outcome, Postpone):
            raise JobStateError("Jobs run inline cannot be postponed")
        if isinstance(outcome, Failure):
            error = outcome.error
            if isinstance(error, JobEngineError):
                raise error
            raise JobExecutionError(outcome.message, cause=error) from error
        return outcome.data

    def _create(
        self,
        job_type: JobTypeRef,
        user_id: str,
        target_id: str,
        params: Optional[Dict[str, Any]],
        options: OptionsArg,
        scheduled_at: Optional[datetime] = None,
    ) -> Job:
        if self.backend is None or not self.backend.is_ready():
            raise EngineNotReadyError(
                "Job store not initialized - call backend.initialize() first"
            )

        name = self.registry.type_name(job_type)
        metadata = self.registry.get_metadata(name)
        input, _ = self._build_input(metadata, user_id, target_id, params, options)

        missing = missing_required_fields(input)
        if missing:
            raise JobValidationError(
                f"Missing required job fields: {', '.join(missing)}"
            )

        dedupe_key = metadata.resolve_dedupe_key(input)
        if dedupe_key:
            existing = self.backend.find_live_job_by_dedupe_key(dedupe_key)
            if existing is not None:
                logger.info(
                    f"Job {name} was deduplicated, not "
                    f"{'scheduled' if scheduled_at else 'enqueued'}",
                    extra={
                        "job_type": name,
                        "dedupe_key": dedupe_key,
                        "existing_job_id": existing.id,
                        "existing_status": str(existing.status),
                        "event_type": "job_deduplicated",
                    },
                )
                return Job.deduplicated_placeholder(
                    name, input["user_id"], input["target_id"]
                )

        created = self.backend.create_job(
            JobCreate(
                type=name,
                user_id=input["user_id"],
                target_id=input["target_id"],
                parameters=input,
                priority=input.get("priority") or 0,
                queued_at=to_naive_utc(scheduled_at) if scheduled_at else utcnow(),
                timeout_ms=self._timeout_ms(input),
                dedupe_key=dedupe_key,
            )
        )
        logger.info(
            f"Job {'scheduled' if scheduled_at else 'enqueued'}: {name}",
            extra={
                "job_id": created.id,
                "job_type": name,
                "priority": created.priority,
                "queued_at": created.queued_at.isoformat(),
                "event_type": "job_scheduled" if scheduled_at else "job_enqueued",
            },
        )
        return created

    def _build_input(
        self,
        metadata: JobMetadata,
        user_id: str,
        target_id: str,
        params: Optional[Dict[str, Any]],
        options: OptionsArg,
    ) -> Tuple[Dict[str, Any], JobOptions]:
        """Merge type defaults < {user_id, target_id, **params} < options."""
        if options is None:
            opts = JobOptions()
        elif isinstance(options, JobOptions):
            opts = options
        else:
            opts = JobOptions.model_validate(options)

        input: Dict[str, Any] = dict(metadata.default_options())
        input.update({"user_id": user_id, "target_id": target_id})
        input.update(params or {})
        input.update(opts.as_input())
        return input, opts

    def _timeout_ms(self, input: Dict[str, Any]) -> int:
        return input.get("timeout_ms") or self.queue_config.default_timeout_ms
