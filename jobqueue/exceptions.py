"""
Exception hierarchy for the job queue.

Payload failures raised while a job runs are handled inside ``process``;
everything defined here reaches the caller of the queue operation.
"""


class JobQueueError(Exception):
    """Base class for all job queue errors."""


class PayloadError(JobQueueError):
    """A payload cannot be serialized, deserialized or resolved."""


class UnknownJobTypeError(PayloadError):
    """No handler is registered for a handler payload's job type."""

    def __init__(self, job_type: str):
        super().__init__(f"No handler registered for job type: {job_type}")
        self.job_type = job_type


class DependencyCycleError(JobQueueError, ValueError):
    """Adding a dependency would make the dependency graph cyclic."""

    def __init__(self, job_id: str, depends_on: str):
        super().__init__(
            f"Job {job_id} cannot depend on {depends_on}: dependency cycle"
        )
        self.job_id = job_id
        self.depends_on = depends_on


class InvalidJobUpdateError(JobQueueError, ValueError):
    """An administrative update names a field that cannot be written."""


class QueueBackendError(JobQueueError):
    """The storage backend is in a state the queue cannot work with."""


class ConcurrentModificationError(QueueBackendError):
    """An entry kept changing underneath a compare-and-set update."""

    def __init__(self, job_id: str, attempts: int):
        super().__init__(
            f"Job {job_id} was modified concurrently {attempts} times in a row"
        )
        self.job_id = job_id
        self.attempts = attempts
