"""
Job repository for database operations.
Implements the data access patterns of the relational queue backend.
"""

import json
import logging
from collections.abc import Sequence
from typing import Any

from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.orm import Session

from jobqueue.constants import JobStatus
from jobqueue.db.models import DeadJob, Job
from jobqueue.types.job import JobEntry

logger = logging.getLogger(__name__)


class JobRepository:
    """
    Repository for job database operations.

    Implements conditional status transitions so that concurrent pollers
    never run the same entry twice:
    - claim: pending -> running only if still pending
    - finish / bury: only if still running
    """

    def __init__(self, session: Session):
        """
        Initialize the repository with a database session.

        Args:
            session: The database session.
        """
        self._session = session

    def create_job(self, entry: JobEntry) -> None:
        """
        Insert a new live row.

        Args:
            entry: The entry to persist.
        """
        self._session.execute(insert(Job).values(**Job.entry_values(entry)))

    def get_job(self, job_id: str) -> Job | None:
        """
        Get a live row by ID.

        Args:
            job_id: The job id.

        Returns:
            The Job or None if not found.
        """
        return self._session.get(Job, job_id)

    def get_dead_job(self, job_id: str) -> DeadJob | None:
        """Get a dead-letter row by ID."""
        return self._session.get(DeadJob, job_id)

    def get_status(self, job_id: str) -> JobStatus | None:
        """
        Get the status of a live row with a point lookup.

        Args:
            job_id: The job id.

        Returns:
            The status or None if not found.
        """
        status = self._session.scalar(select(Job.status).where(Job.id == job_id))
        return JobStatus(status) if status is not None else None

    def list_jobs(self, status: JobStatus | str | None = None) -> Sequence[Job]:
        """
        List live rows in creation order.

        Args:
            status: Optional status filter.

        Returns:
            The matching rows.
        """
        stmt = select(Job).order_by(Job.created.asc(), Job.id.asc())
        if status is not None:
            stmt = stmt.where(Job.status == JobStatus(status).value)
        return self._session.scalars(stmt).all()

    def list_pending(self) -> Sequence[Job]:
        """List pending rows in processing order."""
        stmt = (
            select(Job)
            .where(Job.status == JobStatus.PENDING.value)
            .order_by(Job.priority.desc(), Job.created.asc(), Job.id.asc())
        )
        return self._session.scalars(stmt).all()

    def list_dead_jobs(self) -> Sequence[DeadJob]:
        """List dead-letter rows in creation order."""
        stmt = select(DeadJob).order_by(DeadJob.created.asc(), DeadJob.id.asc())
        return self._session.scalars(stmt).all()

    def claim_job(self, job_id: str) -> bool:
        """
        Transition a row from pending to running.

        Args:
            job_id: The job id.

        Returns:
            True if this call made the transition.
        """
        stmt = (
            update(Job)
            .where(Job.id == job_id, Job.status == JobStatus.PENDING.value)
            .values(status=JobStatus.RUNNING.value)
        )
        return self._session.execute(stmt).rowcount == 1

    def finish_job(
        self,
        job_id: str,
        status: JobStatus,
        attempts: int,
        result: str | None,
        error: str | None,
    ) -> bool:
        """
        Write the outcome of an execution to a running row.

        Args:
            job_id: The job id.
            status: The post-execution status (completed or pending).
            attempts: The attempt count.
            result: Serialized result.
            error: Error message.

        Returns:
            True if the row was still running and got updated.
        """
        stmt = (
            update(Job)
            .where(Job.id == job_id, Job.status == JobStatus.RUNNING.value)
            .values(status=status.value, attempts=attempts, result=result, error=error)
        )
        return self._session.execute(stmt).rowcount == 1

    def bury_job(self, entry: JobEntry) -> bool:
        """
        Move a running row to the dead-letter table.

        Args:
            entry: The failed entry, carrying its final outcome fields.

        Returns:
            True if the row was still running and got moved.
        """
        stmt = delete(Job).where(
            Job.id == entry.id, Job.status == JobStatus.RUNNING.value
        )
        if self._session.execute(stmt).rowcount != 1:
            return False

        self._session.execute(insert(DeadJob).values(**DeadJob.entry_values(entry)))
        return True

    def restore_dead_job(self, entry: JobEntry) -> bool:
        """
        Move a dead-letter row back to the live table.

        Args:
            entry: The entry to restore, already reset to pending.

        Returns:
            True if the dead-letter row existed.
        """
        stmt = delete(DeadJob).where(DeadJob.id == entry.id)
        if self._session.execute(stmt).rowcount != 1:
            return False

        self._session.execute(insert(Job).values(**Job.entry_values(entry)))
        return True

    def cancel_job(self, job_id: str) -> bool:
        """
        Cancel a pending or running row.

        Returns:
            True if the row was cancelled by this call.
        """
        stmt = (
            update(Job)
            .where(
                Job.id == job_id,
                Job.status.in_([JobStatus.PENDING.value, JobStatus.RUNNING.value]),
            )
            .values(status=JobStatus.CANCELLED.value)
        )
        return self._session.execute(stmt).rowcount == 1

    def update_job(self, job_id: str, **values: Any) -> bool:
        """
        Overwrite columns of a live row.

        Returns:
            True if the row exists.
        """
        stmt = update(Job).where(Job.id == job_id).values(**values)
        return self._session.execute(stmt).rowcount == 1

    def set_dependencies(self, job_id: str, dependencies: list[str]) -> bool:
        """Replace the dependency array of a live row."""
        return self.update_job(job_id, dependencies=json.dumps(dependencies))

    def count_jobs(self, status: JobStatus | str | None = None) -> int:
        """
        Count live rows.

        Args:
            status: Optional status filter.
        """
        stmt = select(func.count()).select_from(Job)
        if status is not None:
            stmt = stmt.where(Job.status == JobStatus(status).value)
        return self._session.scalar(stmt) or 0

    def count_dead_jobs(self) -> int:
        """Count dead-letter rows."""
        return self._session.scalar(select(func.count()).select_from(DeadJob)) or 0

    def get_job_stats(self) -> dict[str, int]:
        """
        Get live row counts by status.

        Returns:
            Dictionary of status -> count, for statuses present only.
        """
        stmt = select(Job.status, func.count()).group_by(Job.status)
        return {status: count for status, count in self._session.execute(stmt).all()}

    def get_next_scheduled(self) -> Job | None:
        """Get the pending row with the earliest ``created + delay``."""
        stmt = (
            select(Job)
            .where(Job.status == JobStatus.PENDING.value)
            .order_by((Job.created + Job.delay).asc(), Job.id.asc())
            .limit(1)
        )
        return self._session.scalars(stmt).first()

    def delete_all(self) -> None:
        """Delete every live and dead-letter row."""
        self._session.execute(delete(Job))
        self._session.execute(delete(DeadJob))
