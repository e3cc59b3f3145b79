"""Job manager wiring the registry, store, client and dispatcher together."""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from jobengine.backend.abstract import AbstractBackend
from jobengine.config import Config
from jobengine.config import config as default_config
from jobengine.lib.logger import configure_logger

from .client import JobClient
from .executor import JobExecutor
from .monitoring import MetricsCollector
from .registry import JobMetadata, JobRegistry

logger = configure_logger(__name__)


@dataclass
class JobScheduleConfig:
    """Configuration for a recurring job type."""

    job_type: str
    metadata: JobMetadata
    enabled: bool
    scheduler_id: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_type": self.job_type,
            "name": self.metadata.name,
            "description": self.metadata.description,
            "enabled": self.enabled,
            "interval_seconds": self.metadata.interval_seconds,
            "priority": self.metadata.priority,
            "max_retries": self.metadata.max_retries,
            "scheduler_id": self.scheduler_id,
        }


class JobManager:
    """Owns one registry, one store and the dispatcher running against them."""

    def __init__(
        self,
        registry: JobRegistry,
        backend: AbstractBackend,
        config: Optional[Config] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.config = config or default_config
        self.registry = registry
        self.backend = backend
        self.metrics = metrics or MetricsCollector()
        self.client = JobClient(registry, backend, self.config.queue)
        self.executor = JobExecutor(
            registry, backend, self.config.queue, metrics=self.metrics
        )
        self._scheduler: Optional[AsyncIOScheduler] = None

    @property
    def is_running(self) -> bool:
        return self.executor.is_running

    def get_scheduled_jobs(self) -> List[JobScheduleConfig]:
        """Job types that declare an ``interval_seconds``."""
        return [
            JobScheduleConfig(
                job_type=job_type,
                metadata=metadata,
                enabled=metadata.enabled and self.config.scheduler.enabled,
                scheduler_id=f"{job_type}_scheduler",
            )
            for job_type, metadata in self.registry.list_jobs().items()
            if metadata.interval_seconds
        ]

    async def _enqueue_scheduled(self, job_type: str) -> None:
        logger.info(
            "Scheduled execution triggered",
            extra={"job_type": job_type, "event_type": "scheduled_trigger"},
        )
        try:
            job = await self.client.enqueue(
                job_type, self.config.scheduler.system_user_id, job_type
            )
            logger.debug(
                "Scheduled job enqueued",
                extra={
                    "job_type": job_type,
                    "job_id": job.id,
                    "event_type": "enqueue_success",
                },
            )
        except Exception as e:
            logger.error(
                "Failed to enqueue scheduled job",
                extra={
                    "job_type": job_type,
                    "error": str(e),
                    "event_type": "enqueue_error",
                },
                exc_info=True,
            )

    def schedule_jobs(self, scheduler: AsyncIOScheduler) -> bool:
        """Add an interval trigger per enabled recurring job type."""
        self._scheduler = scheduler
        scheduled_count = 0

        for job_config in self.get_scheduled_jobs():
            if not job_config.enabled:
                logger.info(
                    "Job disabled - skipping scheduling",
                    extra={
                        "job_type": job_config.job_type,
                        "event_type": "job_disabled",
                    },
                )
                continue

            scheduler.add_job(
                self._enqueue_scheduled,
                "interval",
                seconds=job_config.metadata.interval_seconds,
                id=job_config.scheduler_id,
                args=[job_config.job_type],
                max_instances=1,
                misfire_grace_time=self.config.scheduler.misfire_grace_seconds,
                replace_existing=True,
            )
            scheduled_count += 1
            logger.info(
                "Job scheduled successfully",
                extra={
                    "job_type": job_config.job_type,
                    "interval_seconds": job_config.metadata.interval_seconds,
                    "event_type": "schedule_success",
                },
            )

        return scheduled_count > 0

    async def start_executor(self, num_workers: Optional[int] = None) -> None:
        await self.executor.start(num_workers)

    async def stop_executor(self) -> None:
        await self.executor.stop()

    def get_executor_stats(self) -> Dict[str, Any]:
        return self.executor.get_stats()

    def get_job_metrics(self, job_type: Optional[str] = None) -> Dict[str, Any]:
        """Get job execution metrics."""
        return {
            jt: {
                "total_executions": m.total_executions,
                "successful_executions": m.successful_executions,
                "failed_executions": m.failed_executions,
                "retried_executions": m.retried_executions,
                "terminal_failures": m.terminal_failures,
                "postponed_executions": m.postponed_executions,
                "timed_out_executions": m.timed_out_executions,
                "validation_failures": m.validation_failures,
                "avg_execution_time": m.avg_execution_time,
                "min_execution_time": m.min_execution_time,
                "max_execution_time": m.max_execution_time,
                "last_execution": (
                    m.last_execution.isoformat() if m.last_execution else None
                ),
                "last_success": m.last_success.isoformat() if m.last_success else None,
                "last_failure": m.last_failure.isoformat() if m.last_failure else None,
            }
            for jt, m in self.metrics.get_metrics(job_type).items()
        }

    def get_system_health(self) -> Dict[str, Any]:
        """Get overall system health status."""
        system_metrics = self.metrics.get_system_metrics()
        executor_stats = self.get_executor_stats()
        store_ready = self.backend.is_ready()

        return {
            "status": "healthy" if store_ready else "unhealthy",
            "uptime_seconds": system_metrics["uptime_seconds"],
            "executor": {
                "running": executor_stats["running"],
                "worker_count": executor_stats["worker_count"],
                "concurrency": executor_stats["concurrency"],
            },
            "jobs_by_status": executor_stats["jobs_by_status"],
            "metrics": {
                "total_executions": system_metrics["total_executions"],
                "success_rate": system_metrics["success_rate"],
                "total_postponed": system_metrics["total_postponed"],
            },
            "job_types": {
                "registered": len(self.registry.get_all_job_types()),
                "scheduled": len(self.get_scheduled_jobs()),
            },
        }
