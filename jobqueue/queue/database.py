"""
Relational job queue backend.

Entries are rows of the ``job_queue`` table; permanently failed entries
move to the schema-identical ``job_queue_dead`` table. The queue survives
process restarts and can be inspected with ordinary SQL tooling.
"""

import json
import logging
import time
from collections.abc import Callable
from typing import Any

from sqlalchemy import Engine

from jobqueue.constants import JobStatus, QueueBackend
from jobqueue.db.connection import (
    SessionFactory,
    create_session_factory,
    init_db,
    session_scope,
)
from jobqueue.db.models import Job
from jobqueue.db.repository import JobRepository
from jobqueue.queue.base import EntryChange, JobQueue
from jobqueue.queue.scheduling import (
    coerce_status,
    count_by_status,
    is_eligible,
    outcome_values,
    reset_for_retry,
)
from jobqueue.types.job import JobEntry, dump_result

logger = logging.getLogger(__name__)


class DatabaseJobQueue(JobQueue):
    """
    Job queue stored in a relational database through SQLAlchemy.

    Every operation runs in its own short transaction. ``process`` claims
    each row with a conditional update before running it outside any
    transaction, then writes the outcome only if the row is still running.
    """

    backend = QueueBackend.DATABASE.value

    def __init__(
        self,
        engine: Engine,
        create_tables: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the queue.

        Args:
            engine: The SQLAlchemy engine.
            create_tables: Create the tables if they do not exist.
            clock: Source of the current time in seconds.
        """
        super().__init__(clock)
        self._engine = engine
        self._session_factory: SessionFactory = create_session_factory(engine)
        if create_tables:
            init_db(engine)

    def _read(self, func: Callable[[JobRepository], Any]) -> Any:
        with session_scope(self._session_factory) as session:
            return func(JobRepository(session))

    # ------------------------------------------------------------------
    # Storage primitives
    # ------------------------------------------------------------------

    def _insert(self, entry: JobEntry) -> None:
        with session_scope(self._session_factory) as session:
            JobRepository(session).create_job(entry)

    def _modify(self, job_id: str, change: EntryChange) -> JobEntry | None:
        with session_scope(self._session_factory) as session:
            repo = JobRepository(session)
            row = repo.get_job(job_id)
            if row is None:
                return None
            current = row.to_entry()
            updated = change(current)
            if updated is None:
                return None

            # Write only the columns that changed so a concurrent claim or
            # outcome on the same row is not overwritten
            before = Job.entry_values(current)
            changed = {
                name: value
                for name, value in Job.entry_values(updated).items()
                if before[name] != value
            }
            if changed:
                repo.update_job(job_id, **changed)
        return updated

    def _cancel(self, job_id: str) -> bool:
        return self._read(lambda repo: repo.cancel_job(job_id))

    def _eligible(self, now: float) -> list[JobEntry]:
        with session_scope(self._session_factory) as session:
            repo = JobRepository(session)
            statuses: dict[str, JobStatus | None] = {}

            def status_of(job_id: str) -> JobStatus | None:
                if job_id not in statuses:
                    statuses[job_id] = repo.get_status(job_id)
                return statuses[job_id]

            # Rows arrive in processing order
            return [
                entry
                for entry in (row.to_entry() for row in repo.list_pending())
                if is_eligible(entry, now, status_of)
            ]

    def _claim(self, entry: JobEntry) -> JobEntry | None:
        with session_scope(self._session_factory) as session:
            if not JobRepository(session).claim_job(entry.id):
                return None
        return entry.model_copy(update={"status": JobStatus.RUNNING})

    def _record_outcome(self, entry: JobEntry) -> bool:
        with session_scope(self._session_factory) as session:
            return JobRepository(session).finish_job(
                entry.id,
                status=entry.status,
                attempts=entry.attempts,
                result=dump_result(entry.result),
                error=entry.error,
            )

    def _bury(self, entry: JobEntry) -> bool:
        with session_scope(self._session_factory) as session:
            repo = JobRepository(session)
            row = repo.get_job(entry.id)
            if row is None or row.status != JobStatus.RUNNING.value:
                return False
            # Keep tags, metadata and progress written while the job ran
            final = row.to_entry().model_copy(update=outcome_values(entry))
            return repo.bury_job(final)

    def _append_dependency(self, job_id: str, depends_on: str) -> bool:
        with session_scope(self._session_factory) as session:
            repo = JobRepository(session)
            row = repo.get_job(job_id)
            if row is None:
                return False
            dependencies = json.loads(row.dependencies or "[]")
            if depends_on not in dependencies:
                dependencies.append(depends_on)
            return repo.set_dependencies(job_id, dependencies)

    def _get_dead_job(self, job_id: str) -> JobEntry | None:
        row = self._read(lambda repo: repo.get_dead_job(job_id))
        return row.to_entry() if row else None

    # ------------------------------------------------------------------
    # Job management
    # ------------------------------------------------------------------

    def get_jobs(self, status: JobStatus | str | None = None) -> list[JobEntry]:
        rows = self._read(lambda repo: repo.list_jobs(status))
        return [row.to_entry() for row in rows]

    def get_job(self, job_id: str) -> JobEntry | None:
        row = self._read(lambda repo: repo.get_job(job_id))
        return row.to_entry() if row else None

    def set_priority(self, job_id: str, priority: int) -> bool:
        return self._read(lambda repo: repo.update_job(job_id, priority=priority))

    def get_dead_letter_queue(self) -> list[JobEntry]:
        rows = self._read(lambda repo: repo.list_dead_jobs())
        return [row.to_entry() for row in rows]

    def retry_job(self, job_id: str) -> JobEntry | None:
        with session_scope(self._session_factory) as session:
            repo = JobRepository(session)
            row = repo.get_dead_job(job_id)
            if row is None:
                return None
            restored = reset_for_retry(row.to_entry())
            if not repo.restore_dead_job(restored):
                return None

        self._metrics.record_dead_letter_retry(self.backend)
        logger.info("Job retried from dead-letter store", extra={"job_id": job_id})
        return restored

    def clear(self) -> None:
        with session_scope(self._session_factory) as session:
            JobRepository(session).delete_all()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_queue_length(self, status: JobStatus | str | None = None) -> int:
        status = coerce_status(status)
        with session_scope(self._session_factory) as session:
            repo = JobRepository(session)
            count = repo.count_jobs(status)
            if status == JobStatus.FAILED:
                count += repo.count_dead_jobs()
            return count

    def get_stats(self) -> dict[str, int]:
        with session_scope(self._session_factory) as session:
            repo = JobRepository(session)
            stats = count_by_status((), repo.count_dead_jobs())
            for status, count in repo.get_job_stats().items():
                stats[status] += count
            return stats

    def get_next_scheduled_job(self) -> JobEntry | None:
        row = self._read(lambda repo: repo.get_next_scheduled())
        return row.to_entry() if row else None
