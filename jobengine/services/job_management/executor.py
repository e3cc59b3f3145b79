"""Job dispatcher: claim loop and bounded worker pool."""

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple, Type

from pydantic import BaseModel
from pydantic_core import to_jsonable_python

from jobengine.backend.abstract import AbstractBackend
from jobengine.backend.models import CLAIMABLE_STATUSES, Job, JobStatus, JobUpdate
from jobengine.config import QueueConfig
from jobengine.config import config as default_config
from jobengine.lib.logger import configure_logger
from jobengine.lib.utils import utcnow

from .base import BaseJob, JobContext
from .cancellation import CancellationToken, run_with_token
from .errors import (
    EngineNotReadyError,
    JobCancelledError,
    JobTimeoutError,
    JobTypeNotFoundError,
)
from .monitoring import MetricsCollector
from .outcome import Failure, Outcome, Postpone, Success
from .registry import JobRegistry
from .validation import ValidationGate, ValidationResult

logger = configure_logger(__name__)


@dataclass
class RunningJob:
    """A job currently executing in this process."""

    job: Job
    token: CancellationToken
    worker_name: str
    start_time: float


class JobExecutor:
    """Polls the store for eligible jobs, claims, executes and records outcomes.

    Each worker runs an independent claim -> execute -> record loop. The store
    is the only synchronization point: a job is run only by the worker whose
    conditional claim update succeeded.
    """

    def __init__(
        self,
        registry: JobRegistry,
        backend: AbstractBackend,
        queue_config: Optional[QueueConfig] = None,
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.registry = registry
        self.backend = backend
        self.queue_config = queue_config or default_config.queue
        self.metrics = metrics or MetricsCollector()
        self._clock = clock
        self._running = False
        self._worker_tasks: List[asyncio.Task] = []
        self._running_jobs: Dict[str, RunningJob] = {}

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self, num_workers: Optional[int] = None) -> None:
        """Start the dispatcher with ``num_workers`` concurrent workers."""
        if self._running:
            logger.warning(
                "JobExecutor is already running",
                extra={"event_type": "executor_already_running"},
            )
            return
        if not self.backend.is_ready():
            raise EngineNotReadyError("Job store not initialized")

        num_workers = num_workers or self.queue_config.max_concurrent_jobs
        self._running = True
        for i in range(num_workers):
            task = asyncio.create_task(self._worker(f"worker-{i}"))
            self._worker_tasks.append(task)

        logger.info(
            f"JobExecutor started with {len(self.registry.get_all_job_types())} job types",
            extra={
                "worker_count": num_workers,
                "poll_interval_ms": self.queue_config.poll_interval_ms,
                "event_type": "executor_started",
            },
        )

    async def stop(self) -> None:
        """Stop the dispatcher, cancelling in-flight worker tasks.

        Jobs interrupted mid-run are returned to PENDING for the next poll.
        """
        if not self._running:
            return

        self._running = False
        for task in self._worker_tasks:
            task.cancel()
        if self._worker_tasks:
            await asyncio.gather(*self._worker_tasks, return_exceptions=True)

        self._worker_tasks.clear()
        logger.info("JobExecutor stopped", extra={"event_type": "executor_stopped"})

    async def _worker(self, worker_name: str) -> None:
        logger.debug(
            f"Worker starting: {worker_name}", extra={"event_type": "worker_start"}
        )
        poll_interval = self.queue_config.poll_interval_ms / 1000

        while self._running:
            try:
                if not await self.poll_once(worker_name):
                    await asyncio.sleep(poll_interval)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    f"Worker encountered error: {worker_name}",
                    extra={"error": str(e), "event_type": "worker_error"},
                    exc_info=True,
                )
                await asyncio.sleep(1)

    async def poll_once(self, worker_name: str = "worker-0") -> bool:
        """Claim and run at most one eligible job. Returns False when idle."""
        job = self._claim_next()
        if job is None:
            return False
        await self.process_job(job, worker_name)
        return True

    async def drain(self, max_jobs: int = 1000) -> int:
        """Run eligible jobs one at a time until none are left."""
        processed = 0
        while processed < max_jobs and await self.poll_once("drain"):
            processed += 1
        return processed

    def _claim_next(self) -> Optional[Job]:
        now = self._clock()
        candidates = self.backend.list_eligible_jobs(
            now, limit=self.queue_config.batch_size
        )
        for candidate in candidates:
            claimed = self.backend.claim_job(candidate.id, candidate.status, now)
            if claimed is not None:
                logger.debug(
                    f"Claimed job {claimed.id}",
                    extra={
                        "job_type": claimed.type,
                        "prior_status": str(candidate.status),
                        "event_type": "job_claimed",
                    },
                )
                return claimed
        return None

    async def process_job(self, job: Job, worker_name: str) -> None:
        """Validate, execute and record the outcome of a claimed job."""
        input = dict(job.parameters or {})
        input.setdefault("user_id", job.user_id)
        input.setdefault("target_id", job.target_id)

        try:
            metadata = self.registry.get_metadata(job.type)
            instance = self.registry.create_instance(
                job.type, input, self.queue_config.default_max_retries
            )
        except JobTypeNotFoundError as e:
            logger.error(
                f"No job class found for type: {job.type}",
                extra={"job_id": job.id, "event_type": "job_type_unknown"},
            )
            self._fail_terminally(job, str(e))
            return
        except Exception as e:
            logger.error(
                f"Failed to create job instance: {job.type}",
                extra={"job_id": job.id, "error": str(e), "event_type": "job_create_error"},
                exc_info=True,
            )
            self._fail_terminally(job, f"Failed to create job: {e}")
            return

        try:
            await self._validate_and_run(job, instance, metadata.schema, input, worker_name)
        except asyncio.CancelledError:
            self._release_interrupted(job)
            raise

    async def _validate_and_run(
        self,
        job: Job,
        instance: BaseJob,
        schema: Optional[Type[BaseModel]],
        input: Dict[str, Any],
        worker_name: str,
    ) -> None:
        try:
            validation = await ValidationGate.for_job(instance, schema).check(input)
        except Exception as e:
            logger.error(
                f"Validation raised for job {job.id}",
                extra={"job_type": job.type, "error": str(e), "event_type": "job_invalid"},
                exc_info=True,
            )
            validation = ValidationResult(valid=False, message=f"Validation error: {e}")

        if not validation.valid:
            logger.warning(
                f"Job {job.id} failed validation: {validation.message}",
                extra={"job_type": job.type, "event_type": "job_invalid"},
            )
            self.metrics.record_validation_failure(job.id, job.type, validation.message)
            self._fail_terminally(job, validation.message)
            return

        outcome, duration = await self._execute(job, instance, input, worker_name)
        self._record_outcome(job, instance, outcome, duration)

    async def _execute(
        self, job: Job, instance: BaseJob, input: Dict[str, Any], worker_name: str
    ) -> Tuple[Outcome, float]:
        token = CancellationToken.with_timeout(
            job.timeout_ms or self.queue_config.default_timeout_ms
        )
        start_time = time.monotonic()
        self._running_jobs[job.id] = RunningJob(
            job=job, token=token, worker_name=worker_name, start_time=start_time
        )

        logger.debug(
            f"Job execution started: {worker_name}",
            extra={
                "job_id": job.id,
                "job_type": job.type,
                "retry_count": job.retry_count,
                "event_type": "job_execution_start",
            },
        )
        self.metrics.record_execution_start(
            job.id, job.type, job.retry_count or 0, worker_name
        )

        instance.bind_claim(JobContext(job=job, worker_name=worker_name))
        try:
            outcome = await run_with_token(instance.execute(input, token), token)
        except asyncio.CancelledError:
            self.metrics.record_execution_interrupted(job.id, job.type)
            raise
        finally:
            postponement = instance.release_claim()
            token.dispose()
            self._running_jobs.pop(job.id, None)

        # A requested postponement replaces anything the job did afterwards
        if postponement is not None:
            if outcome is not postponement:
                logger.warning(
                    f"Job {job.id} kept running after postpone(); its outcome was discarded",
                    extra={"job_type": job.type, "event_type": "job_postpone_ignored_outcome"},
                )
            outcome = postponement
        return outcome, time.monotonic() - start_time

    def _record_outcome(
        self, job: Job, instance: BaseJob, outcome: Outcome, duration: float
    ) -> None:
        now = self._clock()

        if isinstance(outcome, Success):
            self._update_claimed(
                job,
                JobUpdate(
                    status=JobStatus.COMPLETED,
                    completed_at=now,
                    result=to_jsonable_python(outcome.data, fallback=str),
                ),
            )
            self.metrics.record_execution_completion(job.id, job.type, duration)
            logger.info(
                f"Job completed successfully: {job.type}",
                extra={
                    "job_id": job.id,
                    "duration_seconds": round(duration, 2),
                    "event_type": "job_completed",
                },
            )
            return

        if isinstance(outcome, Postpone):
            next_retry_at = now + timedelta(seconds=outcome.delay_seconds)
            self._update_claimed(
                job,
                JobUpdate(
                    status=JobStatus.POSTPONED,
                    next_retry_at=next_retry_at,
                    error=outcome.message,
                ),
            )
            self.metrics.record_postponement(job.id, job.type, duration, outcome.message)
            logger.info(
                f"Job {job.id} postponed, will retry at {next_retry_at.isoformat()}",
                extra={
                    "job_type": job.type,
                    "reason": outcome.message,
                    "event_type": "job_postponed",
                },
            )
            return

        self._record_failure(job, instance, outcome, duration, now)

    def _record_failure(
        self,
        job: Job,
        instance: BaseJob,
        outcome: Failure,
        duration: float,
        now: datetime,
    ) -> None:
        error = outcome.error
        retry_count = job.retry_count or 0

        if isinstance(error, JobCancelledError):
            will_retry = False
        else:
            try:
                will_retry = instance.retry_decision(error, retry_count)
            except Exception as e:
                logger.error(
                    f"Retry decision failed for job {job.id}",
                    extra={"error": str(e), "event_type": "retry_decision_error"},
                    exc_info=True,
                )
                will_retry = False

        new_retry_count = retry_count + 1
        if will_retry:
            try:
                delay_ms = instance.retry_delay(new_retry_count)
            except Exception as e:
                logger.error(
                    f"Retry delay failed for job {job.id}",
                    extra={"error": str(e), "event_type": "retry_delay_error"},
                    exc_info=True,
                )
                will_retry = False

        if will_retry:
            next_retry_at = now + timedelta(milliseconds=delay_ms)
            update = JobUpdate(
                status=JobStatus.FAILED,
                retry_count=new_retry_count,
                next_retry_at=next_retry_at,
                error=outcome.message,
            )
            logger.info(
                f"Retrying job {job.id} (attempt {new_retry_count}/"
                f"{instance.retry_policy.max_retries})",
                extra={
                    "job_type": job.type,
                    "error": outcome.message,
                    "retry_delay_ms": delay_ms,
                    "event_type": "job_retry_scheduled",
                },
            )
        else:
            update = JobUpdate(
                status=JobStatus.FAILED,
                retry_count=new_retry_count,
                next_retry_at=None,
                completed_at=now,
                error=outcome.message,
            )
            logger.error(
                f"Job {job.id} failed permanently: {outcome.message}",
                extra={
                    "job_type": job.type,
                    "retry_count": new_retry_count,
                    "event_type": "job_failed",
                },
            )

        self._update_claimed(job, update)
        self.metrics.record_execution_failure(
            job.id,
            job.type,
            outcome.message,
            duration,
            will_retry=will_retry,
            timed_out=isinstance(error, JobTimeoutError),
        )

    def _fail_terminally(self, job: Job, message: str) -> None:
        """Fail a claimed job without counting an execution attempt."""
        self._update_claimed(
            job,
            JobUpdate(
                status=JobStatus.FAILED,
                next_retry_at=None,
                completed_at=self._clock(),
                error=message,
            ),
        )

    def _release_interrupted(self, job: Job) -> None:
        """Put a claimed row back in the queue after its worker was cancelled.

        The attempt is not counted. The row stays eligible from its original
        ``queued_at``, so the next poll claims it again.
        """
        released = self.backend.update_job(
            job.id,
            JobUpdate(status=JobStatus.PENDING, started_at=None, next_retry_at=None),
            expected_status=JobStatus.RUNNING,
        )
        if released is None:
            logger.warning(
                f"Job {job.id} was no longer RUNNING when its worker stopped",
                extra={"job_type": job.type, "event_type": "job_release_lost"},
            )
            return
        logger.info(
            f"Released interrupted job {job.id}",
            extra={"job_type": job.type, "event_type": "job_released"},
        )

    def _update_claimed(self, job: Job, update: JobUpdate) -> None:
        updated = self.backend.update_job(
            job.id, update, expected_status=JobStatus.RUNNING
        )
        if updated is None:
            logger.warning(
                f"Job {job.id} was no longer RUNNING when recording its outcome",
                extra={"job_type": job.type, "event_type": "job_outcome_lost"},
            )

    async def execute_job_by_id(self, job_id: str, worker_name: str = "manual") -> bool:
        """Run one PENDING job now, ignoring its ``queued_at``.

        The row is claimed with a conditional update, so a dispatcher worker
        racing for the same row cannot run it twice. Returns True when the
        job was claimed and its outcome recorded. Returns False when the row
        is missing, not PENDING, lost to another claimer, or processing
        raised.
        """
        job = self.backend.get_job(job_id)
        if job is None:
            logger.warning(
                f"Job {job_id} not found",
                extra={"event_type": "job_not_found"},
            )
            return False
        if job.status != JobStatus.PENDING:
            logger.warning(
                f"Job {job_id} is not PENDING (status: {job.status})",
                extra={"job_type": job.type, "event_type": "job_not_pending"},
            )
            return False

        now = self._clock()
        claimed = self.backend.update_job(
            job_id,
            JobUpdate(
                status=JobStatus.RUNNING,
                started_at=now,
                completed_at=None,
                next_retry_at=None,
            ),
            expected_status=JobStatus.PENDING,
        )
        if claimed is None:
            return False

        try:
            await self.process_job(claimed, worker_name)
        except Exception as e:
            logger.error(
                f"Error executing job {job_id}",
                extra={"job_type": job.type, "error": str(e), "event_type": "job_execute_error"},
                exc_info=True,
            )
            return False
        return True

    async def cancel(self, job_id: str) -> bool:
        """Request cancellation of a job.

        A job running in this dispatcher has its token fired and ends as a
        terminal failure. A job waiting in the store is failed terminally
        with a conditional update. Returns whether a cancellation was applied.
        """
        running = self._running_jobs.get(job_id)
        if running is not None:
            logger.info(
                f"Cancelling job {job_id}",
                extra={"job_type": running.job.type, "event_type": "job_cancel"},
            )
            running.token.cancel()
            return True

        job = self.backend.get_job(job_id)
        if job is None or job.status not in CLAIMABLE_STATUSES:
            return False
        if job.status == JobStatus.FAILED and job.next_retry_at is None:
            return False

        updated = self.backend.update_job(
            job_id,
            JobUpdate(
                status=JobStatus.FAILED,
                next_retry_at=None,
                completed_at=self._clock(),
                error="Job was cancelled",
            ),
            expected_status=job.status,
        )
        if updated is not None:
            logger.info(
                f"Cancelled queued job {job_id}",
                extra={"job_type": job.type, "event_type": "job_cancel"},
            )
        return updated is not None

    def get_stats(self) -> Dict[str, Any]:
        """Dispatcher status snapshot including per-status row counts."""
        now = time.monotonic()
        max_jobs = self.queue_config.max_concurrent_jobs
        return {
            "running": self._running,
            "worker_count": len(self._worker_tasks),
            "poll_interval_ms": self.queue_config.poll_interval_ms,
            "running_jobs": [
                {
                    "id": job_id,
                    "type": running.job.type,
                    "worker": running.worker_name,
                    "duration_seconds": round(now - running.start_time, 2),
                }
                for job_id, running in self._running_jobs.items()
            ],
            "concurrency": {
                "max": max_jobs,
                "current": len(self._running_jobs),
                "available": max(0, max_jobs - len(self._running_jobs)),
            },
            "job_types": self.registry.get_all_job_types(),
            "jobs_by_status": (
                self.backend.count_jobs_by_status() if self.backend.is_ready() else {}
            ),
        }
