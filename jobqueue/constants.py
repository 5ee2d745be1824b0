"""
Application constants.
Centralized location for all constant values used across the application.
"""

from enum import StrEnum


class JobStatus(StrEnum):
    """
    Job lifecycle states.

    State transitions:
    - PENDING -> RUNNING (claimed by process)
    - RUNNING -> COMPLETED (success)
    - RUNNING -> PENDING (retry)
    - RUNNING -> FAILED (retries exhausted, moved to the dead-letter store)
    - PENDING | RUNNING -> CANCELLED
    - FAILED -> PENDING (explicit retry from the dead-letter store)
    """

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


# States an entry never leaves on its own
TERMINAL_STATUSES: frozenset[JobStatus] = frozenset(
    {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}
)


class JobEvent(StrEnum):
    """Lifecycle events delivered to hooks registered with ``add_hook``."""

    DISPATCHED = "dispatched"
    STARTED = "started"
    COMPLETED = "completed"
    RETRIED = "retried"
    FAILED = "failed"
    CANCELLED = "cancelled"


class QueueBackend(StrEnum):
    """Available storage backends."""

    MEMORY = "memory"
    DATABASE = "database"
    REDIS = "redis"


# Default values
DEFAULT_QUEUE_NAME = "default"
DEFAULT_PRIORITY = 0
DEFAULT_RETRIES = 0
DEFAULT_DELAY_SECONDS = 0
JOB_ID_PREFIX = "job_"

# Relational store
JOBS_TABLE = "job_queue"
DEAD_LETTER_SUFFIX = "_dead"
DEAD_JOBS_TABLE = JOBS_TABLE + DEAD_LETTER_SUFFIX

# List store
REDIS_KEY_PREFIX = "queue"
REDIS_DEAD_LETTER_SUFFIX = ":dead"
REDIS_TOMBSTONE = '{"_deleted": true}'
DEFAULT_MAX_SWAP_ATTEMPTS = 5

# Metrics names
METRIC_JOBS_DISPATCHED = "jobs_dispatched_total"
METRIC_JOBS_PROCESSED = "jobs_processed_total"
METRIC_JOB_DURATION = "job_duration_seconds"
METRIC_CLAIM_CONFLICTS = "job_claim_conflicts_total"
METRIC_DEAD_LETTER_RETRIED = "jobs_dead_letter_retried_total"
METRIC_QUEUE_DEPTH = "job_queue_depth"

# Processing outcomes recorded in metrics
OUTCOME_COMPLETED = "completed"
OUTCOME_RETRIED = "retried"
OUTCOME_FAILED = "failed"
OUTCOME_DISCARDED = "discarded"

# Trace span names
SPAN_DISPATCH_JOB = "dispatch_job"
SPAN_EXECUTE_JOB = "execute_job"
