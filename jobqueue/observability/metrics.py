"""
Prometheus metrics collection.
"""

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from jobqueue.constants import (
    METRIC_CLAIM_CONFLICTS,
    METRIC_DEAD_LETTER_RETRIED,
    METRIC_JOB_DURATION,
    METRIC_JOBS_DISPATCHED,
    METRIC_JOBS_PROCESSED,
    METRIC_QUEUE_DEPTH,
)

# Global metrics instance
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Prometheus metrics collector for the job queue.

    Collects metrics for:
    - Job dispatches
    - Processing outcomes and execution duration
    - Lost claims between concurrent pollers
    - Dead-letter retries
    - Pending queue depth
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize the metrics collector.

        Args:
            registry: Optional custom registry. Uses default if not provided.
        """
        self._registry = registry or REGISTRY

        self.jobs_dispatched = Counter(
            METRIC_JOBS_DISPATCHED,
            "Total number of jobs dispatched",
            ["backend"],
            registry=self._registry,
        )

        # outcome: completed, retried, failed, discarded
        self.jobs_processed = Counter(
            METRIC_JOBS_PROCESSED,
            "Total number of job executions by outcome",
            ["backend", "outcome"],
            registry=self._registry,
        )

        self.job_duration = Histogram(
            METRIC_JOB_DURATION,
            "Job execution duration in seconds",
            ["backend", "outcome"],
            buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
            registry=self._registry,
        )

        self.claim_conflicts = Counter(
            METRIC_CLAIM_CONFLICTS,
            "Total number of claims lost to another poller or a cancellation",
            ["backend"],
            registry=self._registry,
        )

        self.dead_letter_retried = Counter(
            METRIC_DEAD_LETTER_RETRIED,
            "Total number of jobs moved back from the dead-letter store",
            ["backend"],
            registry=self._registry,
        )

        self.queue_depth = Gauge(
            METRIC_QUEUE_DEPTH,
            "Number of pending jobs after the last process cycle",
            ["backend"],
            registry=self._registry,
        )

    def record_job_dispatched(self, backend: str) -> None:
        """Record a job dispatch."""
        self.jobs_dispatched.labels(backend=backend).inc()

    def record_job_processed(
        self,
        backend: str,
        outcome: str,
        duration_seconds: float,
    ) -> None:
        """Record the outcome of one execution."""
        self.jobs_processed.labels(backend=backend, outcome=outcome).inc()
        self.job_duration.labels(backend=backend, outcome=outcome).observe(
            duration_seconds
        )

    def record_claim_conflict(self, backend: str) -> None:
        """Record a lost claim."""
        self.claim_conflicts.labels(backend=backend).inc()

    def record_dead_letter_retry(self, backend: str) -> None:
        """Record a job moved back from the dead-letter store."""
        self.dead_letter_retried.labels(backend=backend).inc()

    def update_queue_depth(self, backend: str, depth: int) -> None:
        """Update the pending queue depth for a backend."""
        self.queue_depth.labels(backend=backend).set(depth)

    def get_metrics(self) -> bytes:
        """Get all metrics in Prometheus format."""
        return generate_latest(self._registry)


def setup_metrics() -> MetricsCollector:
    """
    Set up and return the metrics collector.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics


def get_metrics() -> MetricsCollector:
    """
    Get the metrics collector instance, creating it on first use.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    if _metrics is None:
        return setup_metrics()
    return _metrics
