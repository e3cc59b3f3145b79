"""Tests for the metrics collector."""

from jobengine.services.job_management.monitoring import JobMetrics, MetricsCollector


class TestMetricsCollector:
    def test_successful_execution(self):
        collector = MetricsCollector()
        collector.record_execution_start("j1", "echo", 0, "worker-0")
        assert collector.get_metrics("echo")["echo"].current_running == 1

        collector.record_execution_completion("j1", "echo", 0.5)
        metrics = collector.get_metrics("echo")["echo"]
        assert metrics.total_executions == 1
        assert metrics.successful_executions == 1
        assert metrics.current_running == 0
        assert metrics.max_concurrent_reached == 1
        assert metrics.avg_execution_time == 0.5
        assert metrics.last_success is not None

    def test_failures_split_by_retry(self):
        collector = MetricsCollector()
        for job_id in ("j1", "j2"):
            collector.record_execution_start(job_id, "flaky", 0)
        collector.record_execution_failure("j1", "flaky", "boom", 1.0, will_retry=True)
        collector.record_execution_failure(
            "j2", "flaky", "slow", 3.0, will_retry=False, timed_out=True
        )

        metrics = collector.get_metrics("flaky")["flaky"]
        assert metrics.failed_executions == 2
        assert metrics.retried_executions == 1
        assert metrics.terminal_failures == 1
        assert metrics.timed_out_executions == 1
        assert metrics.min_execution_time == 1.0
        assert metrics.max_execution_time == 3.0
        assert metrics.avg_execution_time == 2.0

    def test_postponement_and_validation(self):
        collector = MetricsCollector()
        collector.record_execution_start("j1", "sync", 0)
        collector.record_postponement("j1", "sync", 0.1, "Waiting for data")
        collector.record_validation_failure("j2", "sync", "Missing required job fields")

        metrics = collector.get_metrics("sync")["sync"]
        assert metrics.postponed_executions == 1
        assert metrics.validation_failures == 1
        assert metrics.terminal_failures == 1
        assert metrics.current_running == 0

        events = collector.get_recent_events("sync")
        assert {event.event_type for event in events} == {
            "started",
            "postponed",
            "invalid",
        }

    def test_interrupted_execution(self):
        collector = MetricsCollector()
        collector.record_execution_start("j1", "slow", 0)
        collector.record_execution_interrupted("j1", "slow")

        metrics = collector.get_metrics("slow")["slow"]
        assert metrics.current_running == 0
        assert metrics.failed_executions == 0
        events = [e.event_type for e in collector.get_recent_events("slow")]
        assert sorted(events) == ["interrupted", "started"]

    def test_unknown_type_returns_empty_metrics(self):
        metrics = MetricsCollector().get_metrics("nothing")["nothing"]
        assert isinstance(metrics, JobMetrics)
        assert metrics.total_executions == 0

    def test_event_trimming(self):
        collector = MetricsCollector(max_events=10)
        for i in range(11):
            collector.record_validation_failure(f"j{i}", "echo", "bad")
        assert len(collector.get_recent_events(limit=100)) == 9

    def test_system_metrics(self):
        collector = MetricsCollector()
        collector.record_execution_start("j1", "a", 0)
        collector.record_execution_completion("j1", "a", 0.2)
        collector.record_execution_start("j2", "b", 0)
        collector.record_execution_failure("j2", "b", "boom", 0.2, will_retry=False)

        system = collector.get_system_metrics()
        assert system["total_executions"] == 2
        assert system["total_successful"] == 1
        assert system["total_failed"] == 1
        assert system["success_rate"] == 0.5
        assert system["active_job_types"] == 2
        assert system["uptime_seconds"] >= 0

    def test_reset_metrics(self):
        collector = MetricsCollector()
        collector.record_validation_failure("j1", "a", "bad")
        collector.record_validation_failure("j2", "b", "bad")

        collector.reset_metrics("a")
        assert collector.get_metrics("a")["a"].validation_failures == 0
        assert collector.get_metrics("b")["b"].validation_failures == 1

        collector.reset_metrics()
        assert collector.get_metrics() == {}
        assert collector.get_recent_events() == []
