"""
SQLAlchemy database models.
Defines the live job table and its dead-letter mirror.
"""

import json
from typing import Any

from sqlalchemy import Boolean, Float, Index, Integer, String, Text, false
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from jobqueue.constants import DEAD_JOBS_TABLE, JOBS_TABLE, JobStatus
from jobqueue.types.job import (
    JobEntry,
    JobProgress,
    dump_payload,
    dump_result,
    load_payload,
    load_result,
)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class JobColumns:
    """
    Column set shared by the live table and the dead-letter table.

    ``payload``, ``result``, ``job_metadata`` and ``progress`` hold JSON
    text; ``dependencies`` and ``tags`` hold JSON arrays. ``created`` is a
    float timestamp so that first-in-first-served ordering holds within one
    second.
    """

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    payload: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default=JobStatus.PENDING.value,
    )
    created: Mapped[float] = mapped_column(Float, nullable=False)
    delay: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    retries: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    result: Mapped[str | None] = mapped_column(Text, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    priority: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default="0",
    )
    dependencies: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default="[]",
        server_default="[]",
    )
    paused: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=false(),
    )
    tags: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default="[]",
        server_default="[]",
    )
    job_metadata: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default="{}",
        server_default="{}",
    )
    progress: Mapped[str | None] = mapped_column(Text, nullable=True)

    def to_entry(self) -> JobEntry:
        """Convert the row to a job entry."""
        return JobEntry(
            id=self.id,
            payload=load_payload(self.payload),
            status=JobStatus(self.status),
            created=self.created,
            delay=self.delay,
            retries=self.retries,
            attempts=self.attempts,
            priority=self.priority,
            dependencies=json.loads(self.dependencies or "[]"),
            result=load_result(self.result),
            error=self.error,
            paused=self.paused,
            tags=json.loads(self.tags or "[]"),
            metadata=json.loads(self.job_metadata or "{}"),
            progress=(
                JobProgress.model_validate_json(self.progress) if self.progress else None
            ),
        )

    @staticmethod
    def entry_values(entry: JobEntry) -> dict[str, Any]:
        """Get the column values for a job entry."""
        return {
            "id": entry.id,
            "payload": dump_payload(entry.payload),
            "status": entry.status.value,
            "created": entry.created,
            "delay": entry.delay,
            "retries": entry.retries,
            "attempts": entry.attempts,
            "result": dump_result(entry.result),
            "error": entry.error,
            "priority": entry.priority,
            "dependencies": json.dumps(entry.dependencies),
            "paused": entry.paused,
            "tags": json.dumps(entry.tags),
            "job_metadata": dump_result(entry.metadata),
            "progress": entry.progress.model_dump_json() if entry.progress else None,
        }

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(id={self.id}, status={self.status}, "
            f"priority={self.priority}, attempts={self.attempts}/{self.retries + 1})"
        )


class Job(JobColumns, Base):
    """
    Live queue entry.

    ``process`` polls pending rows ordered by priority and creation time.
    """

    __tablename__ = JOBS_TABLE

    __table_args__ = (
        # Index for queue polling
        Index("ix_job_queue_poll", "status", "priority", "created"),
    )


class DeadJob(JobColumns, Base):
    """Entry that exhausted its retries, kept until explicitly retried."""

    __tablename__ = DEAD_JOBS_TABLE
