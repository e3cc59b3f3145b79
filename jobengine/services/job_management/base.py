from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

from pydantic import ConfigDict

from jobengine.backend.models import CustomBaseModel, Job
from jobengine.lib.logger import configure_logger

from .cancellation import CancellationToken
from .errors import JobStateError
from .outcome import Outcome, Postpone
from .retry import RetryPolicy
from .validation import has_required_fields

logger = configure_logger(__name__)


class JobOptions(CustomBaseModel):
    """Per-call execution options; these override type defaults and params."""

    model_config = ConfigDict(extra="forbid", arbitrary_types_allowed=True)

    timeout_ms: Optional[int] = None
    max_retries: Optional[int] = None
    retryable: Optional[bool] = None
    priority: Optional[int] = None
    queue: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    cancellation_token: Optional[CancellationToken] = None

    def as_input(self) -> Dict[str, Any]:
        """Options that become part of the persisted job input."""
        return self.model_dump(exclude_none=True, exclude={"cancellation_token"})


@dataclass
class JobContext:
    """Claim held by a job instance while the dispatcher runs it."""

    job: Job
    worker_name: Optional[str] = None

    @property
    def retry_count(self) -> int:
        return self.job.retry_count or 0


class BaseJob(ABC):
    """Base class for all jobs.

    Subclasses implement ``execute`` and may override ``validate``,
    ``retry_decision`` and ``retry_delay``. While running under the
    dispatcher a job can reschedule itself:

        async def execute(self, input, token):
            if not await self.data_ready(input["source_id"]):
                return self.postpone(30, "Waiting for data")
            return Success(await self.process(input))

    ``postpone`` does not stop the job. It records the request and returns,
    so code after the call still runs. Always ``return self.postpone(...)``.
    Once ``postpone`` has been called the outcome of the run is the
    postponement, whatever ``execute`` returns or raises afterwards, and the
    dispatcher logs a warning when ``execute`` ended any other way.
    """

    job_name: Optional[str] = None

    def __init__(self, retry_policy: Optional[RetryPolicy] = None):
        self.retry_policy = retry_policy or RetryPolicy()
        self._context: Optional[JobContext] = None
        self._postponement: Optional[Postpone] = None

    @property
    def name(self) -> str:
        return self.job_name or self.__class__.__name__

    @property
    def current_job(self) -> Optional[Job]:
        return self._context.job if self._context else None

    @abstractmethod
    async def execute(self, input: Dict[str, Any], token: CancellationToken) -> Outcome:
        """Run the job. Return ``Success``, ``Failure`` or ``Postpone``."""
        pass

    async def validate(self, input: Dict[str, Any]) -> bool:
        """Override to add job-specific validation."""
        return has_required_fields(input)

    def retry_decision(self, error: BaseException, retry_count: int) -> bool:
        return self.retry_policy.should_retry(error, retry_count)

    def retry_delay(self, retry_count: int) -> int:
        """Milliseconds to wait before the next attempt."""
        return self.retry_policy.delay_ms(retry_count)

    def postpone(self, seconds: float, reason: Optional[str] = None) -> Postpone:
        """Reschedule this job ``seconds`` from now without counting a failure.

        Only valid while the dispatcher holds a claim on the job.
        """
        if self._context is None:
            raise JobStateError("postpone() can only be called during job execution")
        if seconds <= 0:
            raise ValueError("postpone() requires a positive number of seconds")
        if self._postponement is not None:
            return self._postponement

        self._postponement = Postpone(delay_seconds=seconds, reason=reason)
        logger.info(
            f"Postponing job {self._context.job.id} for {seconds}s",
            extra={
                "job_type": self.name,
                "reason": reason,
                "event_type": "job_postpone_requested",
            },
        )
        return self._postponement

    def bind_claim(self, context: JobContext) -> None:
        self._context = context
        self._postponement = None

    def release_claim(self) -> Optional[Postpone]:
        """Drop the claim and return any postponement requested during it."""
        postponement = self._postponement
        self._context = None
        self._postponement = None
        return postponement
