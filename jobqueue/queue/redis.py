"""
Remote list-store job queue backend.

The queue is a Redis list of JSON-serialized entries under
``<prefix>:<name>``; the dead-letter store is the list ``<prefix>:<name>:dead``.
Lists offer no priority or dependency index, so every ``process`` call
scans the whole live list.
"""

import logging
import time
from collections.abc import Callable, Iterator

from redis import Redis

from jobqueue.constants import (
    DEFAULT_MAX_SWAP_ATTEMPTS,
    DEFAULT_QUEUE_NAME,
    REDIS_DEAD_LETTER_SUFFIX,
    REDIS_KEY_PREFIX,
    REDIS_TOMBSTONE,
    TERMINAL_STATUSES,
    JobStatus,
    QueueBackend,
)
from jobqueue.exceptions import ConcurrentModificationError
from jobqueue.queue.base import EntryChange, JobQueue
from jobqueue.queue.scheduling import (
    coerce_status,
    outcome_values,
    reset_for_retry,
    select_eligible,
)
from jobqueue.types.job import JobEntry, dump_entry, load_entry

logger = logging.getLogger(__name__)

# Overwrite a list element only if it still holds the value that was read.
# KEYS[1] list key, ARGV[1] index, ARGV[2] expected value, ARGV[3] new value
SWAP_SCRIPT = """
if redis.call('LINDEX', KEYS[1], ARGV[1]) == ARGV[2] then
    redis.call('LSET', KEYS[1], ARGV[1], ARGV[3])
    return 1
end
return 0
"""

# Mutation applied to a located entry; returns the replacement element,
# or None to leave the element untouched
Mutation = Callable[[JobEntry], str | None]


class RedisJobQueue(JobQueue):
    """
    Job queue stored in Redis lists.

    Elements are only ever appended or overwritten in place, except for
    removals: a removed element is overwritten with a tombstone, then a
    compaction pass deletes every tombstone from the list. Because
    compaction shifts indices, updates locate their element by job id and
    overwrite it through a compare-and-set script, retrying when the
    element moved or changed in between.

    Works with a ``redis.Redis`` client created with ``decode_responses=True``
    or any client exposing ``rpush``, ``llen``, ``lindex``, ``lrem``,
    ``delete`` and ``eval`` with the same semantics.
    """

    backend = QueueBackend.REDIS.value

    def __init__(
        self,
        client: Redis,
        name: str = DEFAULT_QUEUE_NAME,
        prefix: str = REDIS_KEY_PREFIX,
        max_swap_attempts: int = DEFAULT_MAX_SWAP_ATTEMPTS,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the queue.

        Args:
            client: The Redis client.
            name: Queue name, part of the list keys.
            prefix: Key prefix.
            max_swap_attempts: Compare-and-set retries before giving up.
            clock: Source of the current time in seconds.
        """
        super().__init__(clock)
        self._client = client
        self.key = f"{prefix}:{name}"
        self.dead_key = self.key + REDIS_DEAD_LETTER_SUFFIX
        self._max_swap_attempts = max_swap_attempts

    # ------------------------------------------------------------------
    # List primitives
    # ------------------------------------------------------------------

    def _scan(self, key: str) -> Iterator[tuple[int, str, JobEntry]]:
        """Yield ``(index, raw, entry)`` for every live element of a list."""
        length = self._client.llen(key)
        for index in range(length):
            raw = self._client.lindex(key, index)
            if raw is None:
                # List shrank during the scan
                break
            if raw == REDIS_TOMBSTONE:
                continue
            yield index, raw, load_entry(raw)

    def _entries(self, key: str) -> list[JobEntry]:
        return [entry for _, _, entry in self._scan(key)]

    def _locate(self, key: str, job_id: str) -> tuple[int, str, JobEntry] | None:
        for index, raw, entry in self._scan(key):
            if entry.id == job_id:
                return index, raw, entry
        return None

    def _swap(self, key: str, job_id: str, mutate: Mutation) -> JobEntry | None:
        """
        Replace the element holding ``job_id`` with ``mutate(entry)``.

        Returns:
            The entry as it was before the swap, or None if the job is
            missing or ``mutate`` declined.

        Raises:
            ConcurrentModificationError: If every attempt lost its race.
        """
        for _ in range(self._max_swap_attempts):
            located = self._locate(key, job_id)
            if located is None:
                return None
            index, raw, entry = located

            replacement = mutate(entry)
            if replacement is None:
                return None

            if self._client.eval(SWAP_SCRIPT, 1, key, index, raw, replacement):
                return entry

            logger.debug(
                "Element changed during swap, retrying",
                extra={"job_id": job_id, "key": key}
            )
        raise ConcurrentModificationError(job_id, self._max_swap_attempts)

    def _update(self, key: str, job_id: str, change: EntryChange) -> JobEntry | None:
        """Rewrite an entry in place; returns the new entry."""
        updated: JobEntry | None = None

        def mutate(entry: JobEntry) -> str | None:
            nonlocal updated
            updated = change(entry)
            return dump_entry(updated) if updated is not None else None

        if self._swap(key, job_id, mutate) is None:
            return None
        return updated

    def _remove(
        self,
        key: str,
        job_id: str,
        predicate: Callable[[JobEntry], bool] = lambda entry: True,
    ) -> JobEntry | None:
        """Tombstone an entry and compact the list; returns the removed entry."""
        removed = self._swap(
            key,
            job_id,
            lambda entry: REDIS_TOMBSTONE if predicate(entry) else None,
        )
        if removed is not None:
            self._compact(key)
        return removed

    def _compact(self, key: str) -> None:
        """Delete every tombstone from a list."""
        self._client.lrem(key, 0, REDIS_TOMBSTONE)

    # ------------------------------------------------------------------
    # Storage primitives
    # ------------------------------------------------------------------

    def _insert(self, entry: JobEntry) -> None:
        self._client.rpush(self.key, dump_entry(entry))

    def _modify(self, job_id: str, change: EntryChange) -> JobEntry | None:
        return self._update(self.key, job_id, change)

    def _cancel(self, job_id: str) -> bool:
        cancelled = self._update(
            self.key,
            job_id,
            lambda current: (
                current.model_copy(update={"status": JobStatus.CANCELLED})
                if current.status not in TERMINAL_STATUSES
                else None
            ),
        )
        return cancelled is not None

    def _eligible(self, now: float) -> list[JobEntry]:
        entries = self._entries(self.key)
        statuses = {entry.id: entry.status for entry in entries}
        return select_eligible(entries, now, statuses.get)

    def _claim(self, entry: JobEntry) -> JobEntry | None:
        return self._update(
            self.key,
            entry.id,
            lambda current: (
                current.model_copy(update={"status": JobStatus.RUNNING})
                if current.status == JobStatus.PENDING
                else None
            ),
        )

    def _record_outcome(self, entry: JobEntry) -> bool:
        updated = self._update(
            self.key,
            entry.id,
            lambda current: (
                current.model_copy(update=outcome_values(entry))
                if current.status == JobStatus.RUNNING
                else None
            ),
        )
        return updated is not None

    def _bury(self, entry: JobEntry) -> bool:
        removed = self._remove(
            self.key,
            entry.id,
            lambda current: current.status == JobStatus.RUNNING,
        )
        if removed is None:
            return False
        self._client.rpush(
            self.dead_key,
            dump_entry(removed.model_copy(update=outcome_values(entry))),
        )
        return True

    def _append_dependency(self, job_id: str, depends_on: str) -> bool:
        def append(current: JobEntry) -> JobEntry:
            dependencies = list(current.dependencies)
            if depends_on not in dependencies:
                dependencies.append(depends_on)
            return current.model_copy(update={"dependencies": dependencies})

        return self._update(self.key, job_id, append) is not None

    def _get_dead_job(self, job_id: str) -> JobEntry | None:
        located = self._locate(self.dead_key, job_id)
        return located[2] if located else None

    # ------------------------------------------------------------------
    # Job management
    # ------------------------------------------------------------------

    def get_jobs(self, status: JobStatus | str | None = None) -> list[JobEntry]:
        status = coerce_status(status)
        return [
            entry
            for entry in self._entries(self.key)
            if status is None or entry.status == status
        ]

    def get_job(self, job_id: str) -> JobEntry | None:
        located = self._locate(self.key, job_id)
        return located[2] if located else None

    def set_priority(self, job_id: str, priority: int) -> bool:
        updated = self._update(
            self.key,
            job_id,
            lambda current: current.model_copy(update={"priority": priority}),
        )
        return updated is not None

    def get_dead_letter_queue(self) -> list[JobEntry]:
        return self._entries(self.dead_key)

    def retry_job(self, job_id: str) -> JobEntry | None:
        located = self._locate(self.dead_key, job_id)
        if located is None:
            return None

        restored = reset_for_retry(located[2])
        # Remove first so a concurrent retry of the same id cannot push twice
        if self._remove(self.dead_key, job_id) is None:
            return None
        self._client.rpush(self.key, dump_entry(restored))

        self._metrics.record_dead_letter_retry(self.backend)
        logger.info("Job retried from dead-letter store", extra={"job_id": job_id})
        return restored

    def clear(self) -> None:
        self._client.delete(self.key, self.dead_key)
