"""
The job queue contract.

Every backend implements ``JobQueue``. The dispatcher loop, the retry and
dead-letter state machine and the read-only introspection helpers are
written once here on top of a small set of storage primitives each backend
provides.
"""

import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Mapping
from typing import Any, ClassVar

from opentelemetry.trace import Status, StatusCode

from jobqueue.constants import (
    DEFAULT_DELAY_SECONDS,
    DEFAULT_PRIORITY,
    DEFAULT_RETRIES,
    OUTCOME_COMPLETED,
    OUTCOME_DISCARDED,
    OUTCOME_FAILED,
    OUTCOME_RETRIED,
    SPAN_DISPATCH_JOB,
    SPAN_EXECUTE_JOB,
    TERMINAL_STATUSES,
    JobEvent,
    JobStatus,
)
from jobqueue.exceptions import DependencyCycleError, InvalidJobUpdateError
from jobqueue.observability.logging import job_log_context
from jobqueue.observability.metrics import get_metrics
from jobqueue.observability.tracing import get_tracer
from jobqueue.queue.scheduling import (
    apply_failure,
    apply_success,
    apply_update,
    coerce_status,
    count_by_status,
    matches,
    next_scheduled,
    would_create_cycle,
)
from jobqueue.types.job import JobEntry, JobProgress, as_payload

logger = logging.getLogger(__name__)

# Rewrites a live entry; returning None leaves it untouched
EntryChange = Callable[[JobEntry], JobEntry | None]

# Receives every lifecycle event it subscribed to, with a copy of the entry
JobHook = Callable[[JobEvent, JobEntry], None]


class JobQueue(ABC):
    """
    Uniform job queue contract.

    ``process`` is never called by the queue itself: a worker loop or a
    scheduler tick drives it. Within one call entries run sequentially on
    the calling thread.

    Backends implement the storage primitives:
    - ``_insert`` persists a new entry
    - ``_modify`` rewrites a live entry
    - ``_cancel`` cancels a pending or running entry
    - ``_eligible`` snapshots the pending entries that may run, in run order
    - ``_claim`` moves an entry from pending to running if it is still pending
    - ``_record_outcome`` writes a completed or retried entry if still running
    - ``_bury`` moves a failed entry to the dead-letter store if still running
    """

    backend: ClassVar[str]

    def __init__(self, clock: Callable[[], float] = time.time):
        """
        Initialize the queue.

        Args:
            clock: Source of the current time in seconds.
        """
        self._clock = clock
        self._paused = False
        self._hooks: list[tuple[JobHook, frozenset[JobEvent] | None]] = []
        self._metrics = get_metrics()
        self._tracer = get_tracer(__name__)

    # ------------------------------------------------------------------
    # Storage primitives
    # ------------------------------------------------------------------

    @abstractmethod
    def _insert(self, entry: JobEntry) -> None:
        """Persist a new live entry."""

    @abstractmethod
    def _modify(self, job_id: str, change: EntryChange) -> JobEntry | None:
        """
        Replace a live entry with ``change(entry)``.

        Returns:
            The new entry, or None if the job is missing or ``change``
            returned None.
        """

    @abstractmethod
    def _cancel(self, job_id: str) -> bool:
        """Transition a pending or running entry to cancelled."""

    @abstractmethod
    def _eligible(self, now: float) -> list[JobEntry]:
        """Snapshot the entries eligible at ``now``, ordered for processing."""

    @abstractmethod
    def _claim(self, entry: JobEntry) -> JobEntry | None:
        """Transition to running if still pending; None if the claim is lost."""

    @abstractmethod
    def _record_outcome(self, entry: JobEntry) -> bool:
        """Write the outcome fields if the stored entry is still running."""

    @abstractmethod
    def _bury(self, entry: JobEntry) -> bool:
        """Move the entry to the dead-letter store if it is still running."""

    @abstractmethod
    def _append_dependency(self, job_id: str, depends_on: str) -> bool:
        """Append to the dependency set of a live entry."""

    @abstractmethod
    def _get_dead_job(self, job_id: str) -> JobEntry | None:
        """Look an entry up in the dead-letter store."""

    # ------------------------------------------------------------------
    # Submission and processing
    # ------------------------------------------------------------------

    def dispatch(
        self,
        payload: Any,
        delay: int = DEFAULT_DELAY_SECONDS,
        retries: int = DEFAULT_RETRIES,
        priority: int = DEFAULT_PRIORITY,
        dependencies: Iterable[str] = (),
    ) -> str:
        """
        Submit a job.

        Args:
            payload: A payload variant, a zero-argument callable, or an
                object with a zero-argument ``run`` method.
            delay: Seconds before the job becomes eligible.
            retries: Additional attempts allowed after the first failure.
            priority: Higher values run first.
            dependencies: Job ids that must complete before this one runs.

        Returns:
            The new job id.
        """
        entry = JobEntry(
            payload=as_payload(payload),
            created=self._clock(),
            delay=delay,
            retries=retries,
            priority=priority,
            dependencies=list(dict.fromkeys(dependencies)),
        )

        with self._tracer.start_as_current_span(SPAN_DISPATCH_JOB) as span:
            span.set_attribute("job.id", entry.id)
            span.set_attribute("job.priority", entry.priority)
            span.set_attribute("queue.backend", self.backend)
            self._insert(entry)

        self._metrics.record_job_dispatched(self.backend)
        logger.info(
            "Dispatched job",
            extra={
                "job_id": entry.id,
                "backend": self.backend,
                "priority": entry.priority,
                "delay": entry.delay,
                "dependencies": entry.dependencies,
            }
        )
        self._emit(JobEvent.DISPATCHED, entry)
        return entry.id

    def process(self) -> None:
        """
        Run every entry eligible at the start of the call.

        Eligibility (delay elapsed, dependencies completed, entry not
        paused) is evaluated on one snapshot, so a job whose dependency
        completes during this call runs on the next one. Payload exceptions
        are handled per entry and never abort the cycle; storage errors
        propagate.
        """
        if self._paused:
            logger.debug("Queue paused, skipping process", extra={"backend": self.backend})
            return

        for entry in self._eligible(self._clock()):
            claimed = self._claim(entry)
            if claimed is None:
                self._metrics.record_claim_conflict(self.backend)
                logger.debug(
                    "Lost claim on job",
                    extra={"job_id": entry.id, "backend": self.backend}
                )
                continue

            self._emit(JobEvent.STARTED, claimed)
            start_time = time.perf_counter()
            finished = self._execute(claimed)
            duration = time.perf_counter() - start_time

            self._store_outcome(finished, duration)

        self._metrics.update_queue_depth(
            self.backend, self.get_queue_length(JobStatus.PENDING)
        )

    def _execute(self, entry: JobEntry) -> JobEntry:
        """
        Run the payload of a claimed entry and apply the state machine.

        Args:
            entry: The running entry.

        Returns:
            The entry in its post-execution state.
        """
        with (
            job_log_context(entry.id, self.backend),
            self._tracer.start_as_current_span(SPAN_EXECUTE_JOB) as span,
        ):
            span.set_attribute("job.id", entry.id)
            span.set_attribute("job.priority", entry.priority)
            span.set_attribute("job.attempt", entry.attempts + 1)

            try:
                result = entry.payload.run()
            except Exception as e:
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                logger.exception(
                    "Job raised an exception",
                    extra={"job_id": entry.id, "attempt": entry.attempts + 1}
                )
                return apply_failure(entry, str(e) or type(e).__name__)

        return apply_success(entry, result)

    def _store_outcome(self, entry: JobEntry, duration: float) -> None:
        """Persist an execution outcome and record it."""
        if entry.status == JobStatus.FAILED:
            stored = self._bury(entry)
            outcome = OUTCOME_FAILED
        else:
            stored = self._record_outcome(entry)
            outcome = (
                OUTCOME_COMPLETED if entry.status == JobStatus.COMPLETED else OUTCOME_RETRIED
            )

        if not stored:
            outcome = OUTCOME_DISCARDED
            logger.info(
                "Discarded outcome of job changed while running",
                extra={"job_id": entry.id, "backend": self.backend}
            )
        elif outcome == OUTCOME_FAILED:
            logger.warning(
                f"Job moved to dead-letter store after {entry.attempts} attempts",
                extra={"job_id": entry.id, "backend": self.backend, "error": entry.error}
            )
        elif outcome == OUTCOME_RETRIED:
            logger.info(
                "Job queued for retry",
                extra={"job_id": entry.id, "attempt": entry.attempts, "retries": entry.retries}
            )
        else:
            logger.info(
                "Job completed successfully",
                extra={"job_id": entry.id, "duration": f"{duration:.3f}s"}
            )

        self._metrics.record_job_processed(self.backend, outcome, duration)
        if stored:
            self._emit(JobEvent(outcome), entry)

    # ------------------------------------------------------------------
    # Lifecycle hooks
    # ------------------------------------------------------------------

    def add_hook(self, hook: JobHook, events: Iterable[JobEvent] | None = None) -> None:
        """
        Register a callback for job lifecycle events.

        Hooks run synchronously on the thread that caused the event and
        receive a copy of the entry. An exception raised by a hook is logged
        and does not affect the job.

        Args:
            hook: Called as ``hook(event, entry)``.
            events: Events to subscribe to. Defaults to every event.
        """
        self._hooks.append((hook, frozenset(events) if events is not None else None))

    def remove_hook(self, hook: JobHook) -> None:
        self._hooks = [(h, events) for h, events in self._hooks if h is not hook]

    def _emit(self, event: JobEvent, entry: JobEntry) -> None:
        for hook, events in list(self._hooks):
            if events is not None and event not in events:
                continue
            try:
                hook(event, entry.copy_entry())
            except Exception:
                logger.exception(
                    "Job hook raised an exception",
                    extra={"job_id": entry.id, "event": event.value, "backend": self.backend}
                )

    # ------------------------------------------------------------------
    # Pausing
    # ------------------------------------------------------------------

    def pause(self) -> None:
        """Stop selecting new entries; running entries are unaffected."""
        self._paused = True
        logger.info("Queue paused", extra={"backend": self.backend})

    def resume(self) -> None:
        """Resume selecting entries."""
        self._paused = False
        logger.info("Queue resumed", extra={"backend": self.backend})

    def is_paused(self) -> bool:
        return self._paused

    def pause_job(self, job_id: str) -> bool:
        """
        Hold back a single entry; ``process`` skips it until resumed.

        Returns:
            True if the entry is live and not terminal.
        """
        paused = self._modify(
            job_id,
            lambda entry: (
                entry.model_copy(update={"paused": True})
                if entry.status not in TERMINAL_STATUSES
                else None
            ),
        )
        if paused is None:
            return False
        logger.info("Job paused", extra={"job_id": job_id, "backend": self.backend})
        return True

    def resume_job(self, job_id: str) -> bool:
        """Let a paused entry be selected again."""
        resumed = self._modify(
            job_id,
            lambda entry: entry.model_copy(update={"paused": False}),
        )
        if resumed is None:
            return False
        logger.info("Job resumed", extra={"job_id": job_id, "backend": self.backend})
        return True

    def is_job_paused(self, job_id: str) -> bool:
        job = self.get_job(job_id)
        return job.paused if job else False

    # ------------------------------------------------------------------
    # Job management
    # ------------------------------------------------------------------

    @abstractmethod
    def get_jobs(self, status: JobStatus | str | None = None) -> list[JobEntry]:
        """Get live entries, optionally filtered by status."""

    @abstractmethod
    def get_job(self, job_id: str) -> JobEntry | None:
        """Get a live entry; the dead-letter store is not searched."""

    @abstractmethod
    def set_priority(self, job_id: str, priority: int) -> bool:
        """Change the priority of a live entry."""

    @abstractmethod
    def get_dead_letter_queue(self) -> list[JobEntry]:
        """Get every permanently failed entry."""

    @abstractmethod
    def retry_job(self, job_id: str) -> JobEntry | None:
        """Move a dead-lettered entry back to the live queue as pending."""

    @abstractmethod
    def clear(self) -> None:
        """Drop every live and dead-lettered entry."""

    def cancel_job(self, job_id: str) -> bool:
        """Cancel a pending or running entry; terminal entries are left alone."""
        if not self._cancel(job_id):
            return False

        logger.info("Cancelled job", extra={"job_id": job_id, "backend": self.backend})
        cancelled = self.get_job(job_id)
        if cancelled is not None:
            self._emit(JobEvent.CANCELLED, cancelled)
        return True

    def update_job(self, job_id: str, **fields: Any) -> JobEntry | None:
        """
        Overwrite fields of a live entry.

        Raises:
            InvalidJobUpdateError: For unknown fields, the id, or invalid values.
        """
        return self._modify(job_id, lambda entry: apply_update(entry, fields))

    def tag_job(self, job_id: str, tag: str) -> bool:
        """Add a tag to a live entry; existing tags are not duplicated."""
        tagged = self._modify(
            job_id,
            lambda entry: entry.model_copy(
                update={"tags": list(dict.fromkeys([*entry.tags, tag]))}
            ),
        )
        return tagged is not None

    def get_job_tags(self, job_id: str) -> list[str]:
        job = self.get_job(job_id) or self._get_dead_job(job_id)
        return list(job.tags) if job else []

    def set_job_metadata(self, job_id: str, metadata: Mapping[str, Any]) -> bool:
        """Replace the metadata of a live entry."""
        updated = self._modify(
            job_id,
            lambda entry: entry.model_copy(update={"metadata": dict(metadata)}),
        )
        return updated is not None

    def get_job_metadata(self, job_id: str) -> dict[str, Any]:
        job = self.get_job(job_id) or self._get_dead_job(job_id)
        return dict(job.metadata) if job else {}

    def set_job_progress(self, job_id: str, percent: float, message: str | None = None) -> bool:
        """
        Record how far a job has got, typically from inside its payload.

        Args:
            job_id: The job.
            percent: Completion between 0 and 100.
            message: Optional human-readable status.

        Returns:
            True if the entry is live.

        Raises:
            InvalidJobUpdateError: If ``percent`` is out of range.
        """
        try:
            progress = JobProgress(percent=percent, message=message, updated=self._clock())
        except ValueError as e:
            raise InvalidJobUpdateError(str(e)) from e

        updated = self._modify(
            job_id,
            lambda entry: entry.model_copy(update={"progress": progress}),
        )
        return updated is not None

    def get_job_progress(self, job_id: str) -> JobProgress | None:
        job = self.get_job(job_id) or self._get_dead_job(job_id)
        return job.progress if job else None

    def add_dependency(self, job_id: str, depends_on: str) -> bool:
        """
        Make a live entry wait for another job to complete.

        Args:
            job_id: The dependent job.
            depends_on: The job it must wait for.

        Returns:
            True if the dependency set now contains ``depends_on``.

        Raises:
            DependencyCycleError: If the new edge would close a cycle.
        """
        if self.get_job(job_id) is None:
            return False
        if would_create_cycle(job_id, depends_on, self.get_dependencies):
            raise DependencyCycleError(job_id, depends_on)
        return self._append_dependency(job_id, depends_on)

    def get_dependencies(self, job_id: str) -> list[str]:
        job = self.get_job(job_id)
        return list(job.dependencies) if job else []

    def job_exists(self, job_id: str) -> bool:
        return self.get_job(job_id) is not None or self._get_dead_job(job_id) is not None

    def get_job_status(self, job_id: str) -> JobStatus | None:
        job = self.get_job(job_id) or self._get_dead_job(job_id)
        return job.status if job else None

    def get_job_result(self, job_id: str) -> Any:
        job = self.get_job(job_id) or self._get_dead_job(job_id)
        return job.result if job else None

    def search_jobs(self, **criteria: Any) -> list[JobEntry]:
        """Get live entries whose fields equal every given value."""
        return [job for job in self.get_jobs() if matches(job, criteria)]

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_queue_length(self, status: JobStatus | str | None = None) -> int:
        """
        Count entries.

        Without a status, counts the live queue. With ``failed``, counts the
        dead-letter store as well.
        """
        status = coerce_status(status)
        if status is None:
            return len(self.get_jobs())
        if status == JobStatus.FAILED:
            return len(self.get_jobs(status)) + len(self.get_dead_letter_queue())
        return len(self.get_jobs(status))

    def get_stats(self) -> dict[str, int]:
        """Count entries per status; dead-lettered entries count as failed."""
        return count_by_status(self.get_jobs(), len(self.get_dead_letter_queue()))

    def get_next_scheduled_job(self) -> JobEntry | None:
        """Get the pending entry that becomes eligible first."""
        return next_scheduled(self.get_jobs(JobStatus.PENDING))

    def get_failed_jobs(self) -> list[JobEntry]:
        """Get permanently failed entries."""
        return self.get_dead_letter_queue()

    def get_completed_jobs(self) -> list[JobEntry]:
        return self.get_jobs(JobStatus.COMPLETED)
