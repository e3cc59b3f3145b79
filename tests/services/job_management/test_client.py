"""Tests for JobClient: enqueue, schedule_at and run_now."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from pydantic import BaseModel

from jobengine.backend.factory import get_backend
from jobengine.backend.models import DEDUPLICATED_JOB_ID, JobStatus, JobUpdate
from jobengine.lib.utils import utcnow
from jobengine.services.job_management.base import BaseJob, JobOptions
from jobengine.services.job_management.cancellation import CancellationToken
from jobengine.services.job_management.client import JobClient
from jobengine.services.job_management.errors import (
    EngineNotReadyError,
    JobCancelledError,
    JobExecutionError,
    JobStateError,
    JobTimeoutError,
    JobTypeNotFoundError,
    JobValidationError,
)
from jobengine.services.job_management.outcome import Failure, Postpone, Success


class EchoJob(BaseJob):
    job_name = "echo"

    async def execute(self, input, token):
        return Success({"message": input.get("message"), "user": input["user_id"]})


class BrokenJob(BaseJob):
    job_name = "broken"

    async def execute(self, input, token):
        raise RuntimeError("disk full")


class RejectedJob(BaseJob):
    job_name = "rejected"

    async def execute(self, input, token):
        return Failure(JobValidationError("not allowed"))


class SlowJob(BaseJob):
    job_name = "slow"

    async def execute(self, input, token):
        await asyncio.sleep(5)
        return Success()


class SelfPostponingJob(BaseJob):
    job_name = "self_postponing"

    async def execute(self, input, token):
        return Postpone(10)


class CountInput(BaseModel):
    user_id: str
    target_id: str
    count: int


@pytest.fixture
def client(registry, backend, queue_config):
    registry.register_job(EchoJob, priority=1, timeout_ms=60000)
    registry.register_job(BrokenJob)
    registry.register_job(RejectedJob)
    registry.register_job(SlowJob)
    registry.register_job(SelfPostponingJob)
    registry.register(
        "digest",
        EchoJob,
        dedupe_key=lambda input: f"digest:{input['target_id']}",
    )
    registry.register("counted", EchoJob, schema=CountInput)
    return JobClient(registry, backend, queue_config)


class TestEnqueue:
    @pytest.mark.asyncio
    async def test_enqueue_persists_pending_job(self, client, backend):
        job = await client.enqueue("echo", "u1", "t1", {"message": "hello"})

        stored = backend.get_job(job.id)
        assert stored.status == JobStatus.PENDING
        assert stored.type == "echo"
        assert stored.user_id == "u1"
        assert stored.target_id == "t1"
        assert stored.priority == 1
        assert stored.timeout_ms == 60000
        assert stored.retry_count == 0
        assert stored.parameters == {
            "message": "hello",
            "user_id": "u1",
            "target_id": "t1",
            "priority": 1,
            "timeout_ms": 60000,
        }

    @pytest.mark.asyncio
    async def test_enqueue_accepts_job_class(self, client):
        job = await client.enqueue(EchoJob, "u1", "t1")
        assert job.type == "echo"

    @pytest.mark.asyncio
    async def test_options_override_params_and_defaults(self, client):
        job = await client.enqueue(
            "echo",
            "u1",
            "t1",
            {"priority": 3, "timeout_ms": 1},
            JobOptions(priority=9, max_retries=0),
        )
        assert job.priority == 9
        assert job.timeout_ms == 1
        assert job.parameters["max_retries"] == 0

    @pytest.mark.asyncio
    async def test_options_as_dict(self, client):
        job = await client.enqueue("echo", "u1", "t1", options={"timeout_ms": 500})
        assert job.timeout_ms == 500

    @pytest.mark.asyncio
    async def test_unknown_option_rejected(self, client):
        with pytest.raises(ValueError):
            await client.enqueue("echo", "u1", "t1", options={"bogus": 1})

    @pytest.mark.asyncio
    async def test_default_timeout_from_config(self, client):
        job = await client.enqueue("broken", "u1", "t1")
        assert job.timeout_ms == 300000

    @pytest.mark.asyncio
    async def test_missing_ids_rejected(self, client, backend):
        with pytest.raises(JobValidationError, match="user_id"):
            await client.enqueue("echo", "", "t1")
        assert backend.list_jobs() == []

    @pytest.mark.asyncio
    async def test_unknown_type(self, client):
        with pytest.raises(JobTypeNotFoundError):
            await client.enqueue("missing", "u1", "t1")

    @pytest.mark.asyncio
    async def test_store_not_ready(self, registry, queue_config):
        registry.register_job(EchoJob)
        with pytest.raises(EngineNotReadyError):
            await JobClient(registry, None, queue_config).enqueue("echo", "u1", "t1")

        backend = get_backend("sqlite://", initialize=False)
        with pytest.raises(EngineNotReadyError):
            await JobClient(registry, backend, queue_config).enqueue("echo", "u1", "t1")


class TestDeduplication:
    @pytest.mark.asyncio
    async def test_live_key_returns_placeholder(self, client, backend):
        first = await client.enqueue("digest", "u1", "t1")
        second = await client.enqueue("digest", "u2", "t1")

        assert first.dedupe_key == "digest:t1"
        assert second.id == DEDUPLICATED_JOB_ID
        assert second.status == JobStatus.COMPLETED
        assert second.is_placeholder
        assert len(backend.list_jobs()) == 1

    @pytest.mark.asyncio
    async def test_different_keys_not_deduplicated(self, client, backend):
        await client.enqueue("digest", "u1", "t1")
        other = await client.enqueue("digest", "u1", "t2")
        assert not other.is_placeholder
        assert len(backend.list_jobs()) == 2

    @pytest.mark.asyncio
    async def test_terminal_job_releases_key(self, client, backend):
        first = await client.enqueue("digest", "u1", "t1")
        backend.update_job(first.id, JobUpdate(status=JobStatus.COMPLETED))

        second = await client.enqueue("digest", "u1", "t1")
        assert not second.is_placeholder
        assert second.id != first.id

    @pytest.mark.asyncio
    async def test_retrying_job_holds_key(self, client, backend):
        first = await client.enqueue("digest", "u1", "t1")
        backend.update_job(
            first.id,
            JobUpdate(
                status=JobStatus.FAILED, next_retry_at=utcnow() + timedelta(seconds=5)
            ),
        )
        assert (await client.enqueue("digest", "u1", "t1")).is_placeholder

    @pytest.mark.asyncio
    async def test_schedule_at_deduplicated(self, client):
        await client.enqueue("digest", "u1", "t1")
        scheduled = await client.schedule_at(
            utcnow() + timedelta(hours=1), "digest", "u1", "t1"
        )
        assert scheduled.is_placeholder


class TestScheduleAt:
    @pytest.mark.asyncio
    async def test_future_queued_at(self, client, backend):
        when = utcnow() + timedelta(minutes=10)
        job = await client.schedule_at(when, "echo", "u1", "t1")
        assert job.queued_at == when
        assert backend.list_eligible_jobs(utcnow()) == []
        assert len(backend.list_eligible_jobs(when)) == 1

    @pytest.mark.asyncio
    async def test_aware_datetime_normalized(self, client):
        when = datetime(2030, 1, 1, 14, 0, tzinfo=timezone(timedelta(hours=2)))
        job = await client.schedule_at(when, "echo", "u1", "t1")
        assert job.queued_at == datetime(2030, 1, 1, 12, 0)

    @pytest.mark.asyncio
    async def test_past_time_is_due(self, client, backend):
        await client.schedule_at(utcnow() - timedelta(minutes=1), "echo", "u1", "t1")
        assert len(backend.list_eligible_jobs(utcnow())) == 1


class TestRunNow:
    @pytest.mark.asyncio
    async def test_returns_success_data(self, client, backend):
        result = await client.run_now("echo", "u1", "t1", {"message": "hi"})
        assert result == {"message": "hi", "user": "u1"}
        assert backend.list_jobs() == []

    @pytest.mark.asyncio
    async def test_runs_without_store(self, registry, queue_config):
        registry.register_job(EchoJob)
        client = JobClient(registry, None, queue_config)
        assert (await client.run_now("echo", "u1", "t1"))["user"] == "u1"

    @pytest.mark.asyncio
    async def test_failure_wrapped(self, client):
        with pytest.raises(JobExecutionError, match="disk full") as exc_info:
            await client.run_now("broken", "u1", "t1")
        assert isinstance(exc_info.value.cause, RuntimeError)

    @pytest.mark.asyncio
    async def test_engine_errors_raised_as_is(self, client):
        with pytest.raises(JobValidationError, match="not allowed"):
            await client.run_now("rejected", "u1", "t1")

    @pytest.mark.asyncio
    async def test_timeout(self, client):
        with pytest.raises(JobTimeoutError, match="50ms"):
            await asyncio.wait_for(
                client.run_now("slow", "u1", "t1", options={"timeout_ms": 50}),
                timeout=2,
            )

    @pytest.mark.asyncio
    async def test_external_token(self, client):
        token = CancellationToken()
        token.cancel()
        with pytest.raises(JobCancelledError):
            await client.run_now(
                "slow", "u1", "t1", options=JobOptions(cancellation_token=token)
            )

    @pytest.mark.asyncio
    async def test_validation_failure(self, client):
        with pytest.raises(JobValidationError, match="Schema validation failed"):
            await client.run_now("counted", "u1", "t1", {"count": "many"})

    @pytest.mark.asyncio
    async def test_missing_ids(self, client):
        with pytest.raises(JobValidationError, match="target_id"):
            await client.run_now("echo", "u1", "")

    @pytest.mark.asyncio
    async def test_postpone_not_allowed_inline(self, client):
        with pytest.raises(JobStateError):
            await client.run_now("self_postponing", "u1", "t1")
