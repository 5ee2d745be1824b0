"""
In-memory job queue backend.

Single process, no external I/O. Payloads are held by reference, so any
callable or run-object can be dispatched. Useful as the reference backend
and in tests.
"""

import logging
import threading
import time
from collections.abc import Callable

from jobqueue.constants import TERMINAL_STATUSES, JobStatus, QueueBackend
from jobqueue.queue.base import EntryChange, JobQueue
from jobqueue.queue.scheduling import (
    coerce_status,
    outcome_values,
    reset_for_retry,
    scheduling_key,
    select_eligible,
)
from jobqueue.types.job import JobEntry

logger = logging.getLogger(__name__)


class MemoryJobQueue(JobQueue):
    """
    Job queue held in process memory.

    Live entries are kept sorted in scheduling order. All state changes
    happen under one lock, which also makes the pending-to-running claim
    atomic when several threads call ``process``. Callers only ever receive
    copies of the stored entries.
    """

    backend = QueueBackend.MEMORY.value

    def __init__(self, clock: Callable[[], float] = time.time):
        super().__init__(clock)
        self._queue: list[JobEntry] = []
        self._dead: list[JobEntry] = []
        self._lock = threading.RLock()

    def _sort(self) -> None:
        self._queue.sort(key=scheduling_key)

    def _find(self, job_id: str) -> JobEntry | None:
        for entry in self._queue:
            if entry.id == job_id:
                return entry
        return None

    def _find_dead(self, job_id: str) -> JobEntry | None:
        for entry in self._dead:
            if entry.id == job_id:
                return entry
        return None

    # ------------------------------------------------------------------
    # Storage primitives
    # ------------------------------------------------------------------

    def _insert(self, entry: JobEntry) -> None:
        with self._lock:
            self._queue.append(entry.copy_entry())
            self._sort()

    def _modify(self, job_id: str, change: EntryChange) -> JobEntry | None:
        with self._lock:
            current = self._find(job_id)
            if current is None:
                return None
            updated = change(current.copy_entry())
            if updated is None:
                return None
            self._queue[self._queue.index(current)] = updated
            self._sort()
            return updated.copy_entry()

    def _cancel(self, job_id: str) -> bool:
        with self._lock:
            current = self._find(job_id)
            if current is None or current.status in TERMINAL_STATUSES:
                return False
            current.status = JobStatus.CANCELLED
            return True

    def _eligible(self, now: float) -> list[JobEntry]:
        with self._lock:
            statuses = {entry.id: entry.status for entry in self._queue}
            return [
                entry.copy_entry()
                for entry in select_eligible(self._queue, now, statuses.get)
            ]

    def _claim(self, entry: JobEntry) -> JobEntry | None:
        with self._lock:
            current = self._find(entry.id)
            if current is None or current.status != JobStatus.PENDING:
                return None
            current.status = JobStatus.RUNNING
            return current.copy_entry()

    def _record_outcome(self, entry: JobEntry) -> bool:
        with self._lock:
            current = self._find(entry.id)
            if current is None or current.status != JobStatus.RUNNING:
                return False
            for field, value in outcome_values(entry).items():
                setattr(current, field, value)
            return True

    def _bury(self, entry: JobEntry) -> bool:
        with self._lock:
            current = self._find(entry.id)
            if current is None or current.status != JobStatus.RUNNING:
                return False
            self._queue.remove(current)
            self._dead.append(current.model_copy(update=outcome_values(entry)))
            return True

    def _append_dependency(self, job_id: str, depends_on: str) -> bool:
        with self._lock:
            current = self._find(job_id)
            if current is None:
                return False
            if depends_on not in current.dependencies:
                current.dependencies.append(depends_on)
            return True

    def _get_dead_job(self, job_id: str) -> JobEntry | None:
        with self._lock:
            entry = self._find_dead(job_id)
            return entry.copy_entry() if entry else None

    # ------------------------------------------------------------------
    # Job management
    # ------------------------------------------------------------------

    def get_jobs(self, status: JobStatus | str | None = None) -> list[JobEntry]:
        status = coerce_status(status)
        with self._lock:
            return [
                entry.copy_entry()
                for entry in self._queue
                if status is None or entry.status == status
            ]

    def get_job(self, job_id: str) -> JobEntry | None:
        with self._lock:
            entry = self._find(job_id)
            return entry.copy_entry() if entry else None

    def set_priority(self, job_id: str, priority: int) -> bool:
        with self._lock:
            current = self._find(job_id)
            if current is None:
                return False
            current.priority = priority
            self._sort()
            return True

    def get_dead_letter_queue(self) -> list[JobEntry]:
        with self._lock:
            return [entry.copy_entry() for entry in self._dead]

    def retry_job(self, job_id: str) -> JobEntry | None:
        with self._lock:
            dead = self._find_dead(job_id)
            if dead is None:
                return None
            self._dead.remove(dead)
            restored = reset_for_retry(dead)
            self._queue.append(restored)
            self._sort()

        self._metrics.record_dead_letter_retry(self.backend)
        logger.info("Job retried from dead-letter store", extra={"job_id": job_id})
        return restored.copy_entry()

    def clear(self) -> None:
        with self._lock:
            self._queue.clear()
            self._dead.clear()
