"""In-process execution metrics for the dispatcher."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from jobengine.lib.logger import configure_logger
from jobengine.lib.utils import utcnow

logger = configure_logger(__name__)


@dataclass
class JobMetrics:
    """Metrics for job execution."""

    job_type: str
    total_executions: int = 0
    successful_executions: int = 0
    failed_executions: int = 0
    retried_executions: int = 0
    terminal_failures: int = 0
    postponed_executions: int = 0
    timed_out_executions: int = 0
    validation_failures: int = 0

    # Timing metrics
    total_execution_time: float = 0.0
    min_execution_time: Optional[float] = None
    max_execution_time: Optional[float] = None
    avg_execution_time: float = 0.0

    # Concurrency metrics
    current_running: int = 0
    max_concurrent_reached: int = 0

    last_execution: Optional[datetime] = None
    last_success: Optional[datetime] = None
    last_failure: Optional[datetime] = None


@dataclass
class ExecutionEvent:
    """Individual execution event for detailed tracking."""

    job_id: str
    job_type: str
    event_type: str  # started, completed, failed, retried, terminal, postponed, interrupted
    timestamp: datetime
    duration: Optional[float] = None
    error: Optional[str] = None
    retry_count: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)


class MetricsCollector:
    """Collects and aggregates job execution metrics."""

    def __init__(self, max_events: int = 10000):
        self._metrics: Dict[str, JobMetrics] = {}
        self._events: List[ExecutionEvent] = []
        self._max_events = max_events
        self._start_time = utcnow()

    def _get(self, job_type: str) -> JobMetrics:
        if job_type not in self._metrics:
            self._metrics[job_type] = JobMetrics(job_type=job_type)
        return self._metrics[job_type]

    def record_execution_start(
        self, job_id: str, job_type: str, retry_count: int, worker_name: str = ""
    ) -> None:
        metrics = self._get(job_type)
        metrics.total_executions += 1
        metrics.current_running += 1
        metrics.max_concurrent_reached = max(
            metrics.max_concurrent_reached, metrics.current_running
        )
        metrics.last_execution = utcnow()
        self._add_event(
            ExecutionEvent(
                job_id=job_id,
                job_type=job_type,
                event_type="started",
                timestamp=utcnow(),
                retry_count=retry_count,
                metadata={"worker": worker_name},
            )
        )

    def record_execution_completion(
        self, job_id: str, job_type: str, duration: float
    ) -> None:
        metrics = self._get(job_type)
        metrics.current_running = max(0, metrics.current_running - 1)
        metrics.successful_executions += 1
        metrics.last_success = utcnow()
        self._update_timing_metrics(metrics, duration)
        self._add_event(
            ExecutionEvent(
                job_id=job_id,
                job_type=job_type,
                event_type="completed",
                timestamp=utcnow(),
                duration=duration,
            )
        )

    def record_execution_failure(
        self,
        job_id: str,
        job_type: str,
        error: str,
        duration: float,
        will_retry: bool,
        timed_out: bool = False,
    ) -> None:
        metrics = self._get(job_type)
        metrics.current_running = max(0, metrics.current_running - 1)
        metrics.failed_executions += 1
        metrics.last_failure = utcnow()
        if will_retry:
            metrics.retried_executions += 1
        else:
            metrics.terminal_failures += 1
        if timed_out:
            metrics.timed_out_executions += 1
        self._update_timing_metrics(metrics, duration)
        self._add_event(
            ExecutionEvent(
                job_id=job_id,
                job_type=job_type,
                event_type="retried" if will_retry else "terminal",
                timestamp=utcnow(),
                duration=duration,
                error=error,
            )
        )

    def record_postponement(
        self, job_id: str, job_type: str, duration: float, reason: str
    ) -> None:
        metrics = self._get(job_type)
        metrics.current_running = max(0, metrics.current_running - 1)
        metrics.postponed_executions += 1
        self._add_event(
            ExecutionEvent(
                job_id=job_id,
                job_type=job_type,
                event_type="postponed",
                timestamp=utcnow(),
                duration=duration,
                metadata={"reason": reason},
            )
        )

    def record_execution_interrupted(self, job_id: str, job_type: str) -> None:
        metrics = self._get(job_type)
        metrics.current_running = max(0, metrics.current_running - 1)
        self._add_event(
            ExecutionEvent(
                job_id=job_id,
                job_type=job_type,
                event_type="interrupted",
                timestamp=utcnow(),
            )
        )

    def record_validation_failure(self, job_id: str, job_type: str, error: str) -> None:
        metrics = self._get(job_type)
        metrics.validation_failures += 1
        metrics.terminal_failures += 1
        metrics.last_failure = utcnow()
        self._add_event(
            ExecutionEvent(
                job_id=job_id,
                job_type=job_type,
                event_type="invalid",
                timestamp=utcnow(),
                error=error,
            )
        )

    def _update_timing_metrics(self, metrics: JobMetrics, duration: float) -> None:
        if metrics.min_execution_time is None or duration < metrics.min_execution_time:
            metrics.min_execution_time = duration
        if metrics.max_execution_time is None or duration > metrics.max_execution_time:
            metrics.max_execution_time = duration

        total_time = metrics.total_execution_time + duration
        total_count = metrics.successful_executions + metrics.failed_executions

        metrics.total_execution_time = total_time
        if total_count > 0:
            metrics.avg_execution_time = total_time / total_count

    def _add_event(self, event: ExecutionEvent) -> None:
        self._events.append(event)

        if len(self._events) > self._max_events:
            # Remove oldest 20% to avoid frequent trimming
            trim_count = int(self._max_events * 0.2)
            self._events = self._events[trim_count:]

    def get_metrics(self, job_type: Optional[str] = None) -> Dict[str, JobMetrics]:
        """Get metrics for all job types or a specific type."""
        if job_type:
            return {job_type: self._metrics.get(job_type, JobMetrics(job_type=job_type))}
        return self._metrics.copy()

    def get_recent_events(
        self, job_type: Optional[str] = None, limit: int = 100
    ) -> List[ExecutionEvent]:
        events = self._events
        if job_type:
            events = [e for e in events if e.job_type == job_type]
        return sorted(events, key=lambda e: e.timestamp, reverse=True)[:limit]

    def get_system_metrics(self) -> Dict[str, Any]:
        """Get overall system metrics."""
        total_executions = sum(m.total_executions for m in self._metrics.values())
        total_successful = sum(m.successful_executions for m in self._metrics.values())
        total_failed = sum(m.failed_executions for m in self._metrics.values())
        total_postponed = sum(m.postponed_executions for m in self._metrics.values())

        success_rate = (
            (total_successful / total_executions) if total_executions > 0 else 0
        )

        return {
            "uptime_seconds": (utcnow() - self._start_time).total_seconds(),
            "total_executions": total_executions,
            "total_successful": total_successful,
            "total_failed": total_failed,
            "total_postponed": total_postponed,
            "success_rate": success_rate,
            "active_job_types": len(self._metrics),
            "total_events": len(self._events),
        }

    def reset_metrics(self, job_type: Optional[str] = None) -> None:
        """Reset metrics for a job type or all types."""
        if job_type:
            if job_type in self._metrics:
                self._metrics[job_type] = JobMetrics(job_type=job_type)
        else:
            self._metrics.clear()
            self._events.clear()

        logger.info(f"Reset metrics for {job_type or 'all job types'}")
