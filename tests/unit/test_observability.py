"""
Unit tests for metrics and logging helpers.
"""

import structlog
from prometheus_client import CollectorRegistry

from conftest import FakeClock, Recorder, record_job

from jobqueue.constants import JobStatus
from jobqueue.observability import MetricsCollector, job_log_context
from jobqueue.queue import MemoryJobQueue


class TestMetricsCollector:
    """Tests for MetricsCollector."""

    def test_records_processing_outcomes(self):
        """Test counters, histograms and gauges on a private registry."""
        registry = CollectorRegistry()
        metrics = MetricsCollector(registry)

        metrics.record_job_dispatched("memory")
        metrics.record_job_processed("memory", "completed", 0.2)
        metrics.record_job_processed("memory", "failed", 0.1)
        metrics.record_claim_conflict("redis")
        metrics.record_dead_letter_retry("database")
        metrics.update_queue_depth("memory", 4)

        def value(name, **labels):
            return registry.get_sample_value(name, labels)

        assert value("jobs_dispatched_total", backend="memory") == 1
        assert value("jobs_processed_total", backend="memory", outcome="completed") == 1
        assert value("jobs_processed_total", backend="memory", outcome="failed") == 1
        assert value("job_duration_seconds_count", backend="memory", outcome="completed") == 1
        assert value("job_claim_conflicts_total", backend="redis") == 1
        assert value("jobs_dead_letter_retried_total", backend="database") == 1
        assert value("job_queue_depth", backend="memory") == 4

    def test_exposition(self):
        """Test the Prometheus text output."""
        metrics = MetricsCollector(CollectorRegistry())
        metrics.record_job_dispatched("memory")

        output = metrics.get_metrics().decode()

        assert 'jobs_dispatched_total{backend="memory"} 1.0' in output

    def test_queue_records_into_collector(self, clock: FakeClock, recorder: Recorder):
        """Test that a queue reports to the collector it was given."""
        queue = MemoryJobQueue(clock=clock)
        registry = CollectorRegistry()
        queue._metrics = MetricsCollector(registry)

        queue.dispatch(record_job("ok"))
        queue.dispatch(record_job("retry", fail=True), retries=1)
        queue.dispatch(record_job("later"), delay=60)
        queue.process()

        def value(name, **labels):
            return registry.get_sample_value(name, labels)

        assert value("jobs_dispatched_total", backend="memory") == 3
        assert value("jobs_processed_total", backend="memory", outcome="completed") == 1
        assert value("jobs_processed_total", backend="memory", outcome="retried") == 1
        assert value("job_queue_depth", backend="memory") == queue.get_queue_length(
            JobStatus.PENDING
        )


class TestJobLogContext:
    """Tests for job_log_context."""

    def test_binds_and_restores(self):
        """Test that the job context is visible only inside the block."""
        with job_log_context("job_1", "memory"):
            context = structlog.contextvars.get_contextvars()
            assert context["job_id"] == "job_1"
            assert context["backend"] == "memory"

        assert "job_id" not in structlog.contextvars.get_contextvars()
