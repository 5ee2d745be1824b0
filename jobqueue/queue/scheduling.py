"""
Scheduling algorithms shared by every backend.

Backends differ in how they store and iterate entries; eligibility,
ordering, state transitions and cycle detection are the same everywhere
and live here as plain functions over ``JobEntry`` values.
"""

from collections.abc import Callable, Iterable, Mapping
from typing import Any

from pydantic import ValidationError

from jobqueue.constants import JobStatus
from jobqueue.exceptions import InvalidJobUpdateError
from jobqueue.types.job import JobEntry, as_payload

# Resolves a job id to its live status, or None when the id is unknown
StatusLookup = Callable[[str], JobStatus | None]

# Fields written back after an execution
OUTCOME_FIELDS = ("status", "attempts", "result", "error")

_IMMUTABLE_FIELDS = frozenset({"id"})

_MISSING = object()


def coerce_status(status: JobStatus | str | None) -> JobStatus | None:
    """
    Accept a status by value as well as by member.

    Raises:
        ValueError: If the value names no status.
    """
    return JobStatus(status) if status is not None else None


def scheduling_key(entry: JobEntry) -> tuple[int, float]:
    """Sort key: priority descending, then first-in-first-served."""
    return (-entry.priority, entry.created)


def order_for_processing(entries: Iterable[JobEntry]) -> list[JobEntry]:
    """
    Order entries the way ``process`` runs them.

    The sort is stable, so entries with equal priority and timestamp keep
    their storage order.
    """
    return sorted(entries, key=scheduling_key)


def is_due(entry: JobEntry, now: float) -> bool:
    """Check whether the entry's delay has elapsed."""
    return now >= entry.eligible_at


def dependencies_met(entry: JobEntry, status_of: StatusLookup) -> bool:
    """
    Check whether every dependency has completed.

    Unknown dependency ids count as unmet.
    """
    return all(status_of(dep) == JobStatus.COMPLETED for dep in entry.dependencies)


def is_eligible(entry: JobEntry, now: float, status_of: StatusLookup) -> bool:
    """Check whether a pending entry may be selected by ``process``."""
    return (
        entry.status == JobStatus.PENDING
        and not entry.paused
        and is_due(entry, now)
        and dependencies_met(entry, status_of)
    )


def select_eligible(
    entries: Iterable[JobEntry],
    now: float,
    status_of: StatusLookup,
) -> list[JobEntry]:
    """
    Select the entries to run in one ``process`` cycle, in run order.

    Args:
        entries: Snapshot of the live queue (or of its pending part).
        now: The instant eligibility is evaluated at.
        status_of: Status lookup for dependency resolution.

    Returns:
        Eligible entries ordered by priority, then creation time.
    """
    return order_for_processing(
        entry for entry in entries if is_eligible(entry, now, status_of)
    )


def next_scheduled(entries: Iterable[JobEntry]) -> JobEntry | None:
    """Get the pending entry with the earliest eligibility time."""
    pending = [entry for entry in entries if entry.status == JobStatus.PENDING]
    if not pending:
        return None
    return min(pending, key=lambda entry: entry.eligible_at)


def would_create_cycle(
    job_id: str,
    depends_on: str,
    dependencies_of: Callable[[str], Iterable[str]],
) -> bool:
    """
    Check whether making ``job_id`` depend on ``depends_on`` closes a cycle.

    Walks the dependency graph from ``depends_on``; a path back to
    ``job_id`` means the new edge would make both permanently ineligible.
    """
    if job_id == depends_on:
        return True

    seen: set[str] = set()
    stack = [depends_on]
    while stack:
        current = stack.pop()
        if current == job_id:
            return True
        if current in seen:
            continue
        seen.add(current)
        stack.extend(dependencies_of(current))
    return False


def apply_success(entry: JobEntry, result: Any) -> JobEntry:
    """Transition a running entry to completed."""
    return entry.model_copy(
        update={"status": JobStatus.COMPLETED, "result": result, "error": None}
    )


def apply_failure(entry: JobEntry, error: str) -> JobEntry:
    """
    Count a failed attempt and decide between retry and dead-lettering.

    The entry goes back to pending while ``attempts <= retries``; no
    backoff is applied, so it is eligible again on the next cycle.
    """
    attempts = entry.attempts + 1
    if attempts <= entry.retries:
        return entry.model_copy(
            update={"status": JobStatus.PENDING, "attempts": attempts}
        )
    return entry.model_copy(
        update={"status": JobStatus.FAILED, "attempts": attempts, "error": error}
    )


def reset_for_retry(entry: JobEntry) -> JobEntry:
    """Build the fresh pending lifecycle of a dead-lettered entry."""
    return entry.model_copy(
        update={
            "status": JobStatus.PENDING,
            "attempts": 0,
            "error": None,
            "progress": None,
            "dependencies": list(entry.dependencies),
            "tags": list(entry.tags),
            "metadata": dict(entry.metadata),
        }
    )


def outcome_values(entry: JobEntry) -> dict[str, Any]:
    """Get the fields an execution writes back."""
    return {field: getattr(entry, field) for field in OUTCOME_FIELDS}


def apply_update(entry: JobEntry, fields: Mapping[str, Any]) -> JobEntry:
    """
    Overwrite entry fields for administrative correction.

    Args:
        entry: The entry to update.
        fields: Field names and new values.

    Returns:
        A validated copy carrying the new values.

    Raises:
        InvalidJobUpdateError: For unknown or immutable fields, or invalid values.
    """
    unknown = set(fields) - set(JobEntry.model_fields)
    if unknown:
        raise InvalidJobUpdateError(f"Unknown job fields: {sorted(unknown)}")
    immutable = set(fields) & _IMMUTABLE_FIELDS
    if immutable:
        raise InvalidJobUpdateError(f"Job fields cannot be changed: {sorted(immutable)}")

    updated = entry.copy_entry()
    try:
        for name, value in fields.items():
            if name == "payload":
                value = as_payload(value)
            elif name in ("dependencies", "tags"):
                value = list(dict.fromkeys(value))
            setattr(updated, name, value)
    except ValidationError as e:
        raise InvalidJobUpdateError(str(e)) from e
    return updated


def count_by_status(entries: Iterable[JobEntry], dead_letter_count: int = 0) -> dict[str, int]:
    """
    Count entries per status, covering every status.

    Dead-lettered entries are reported as failed.
    """
    stats = {status.value: 0 for status in JobStatus}
    for entry in entries:
        stats[entry.status.value] += 1
    stats[JobStatus.FAILED.value] += dead_letter_count
    return stats


def matches(entry: JobEntry, criteria: Mapping[str, Any]) -> bool:
    """Check whether every criterion equals the entry's field value; unknown fields never match."""
    return all(getattr(entry, name, _MISSING) == value for name, value in criteria.items())
