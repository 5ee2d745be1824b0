"""
Unit tests for the shared scheduling functions.
"""

import pytest

from jobqueue.constants import JobStatus
from jobqueue.exceptions import InvalidJobUpdateError
from jobqueue.queue.scheduling import (
    apply_failure,
    apply_success,
    apply_update,
    coerce_status,
    count_by_status,
    dependencies_met,
    is_due,
    matches,
    next_scheduled,
    order_for_processing,
    reset_for_retry,
    select_eligible,
    would_create_cycle,
)
from jobqueue.types.job import CallablePayload, HandlerPayload, JobEntry, JobProgress


def make_entry(**fields) -> JobEntry:
    fields.setdefault("payload", HandlerPayload(job_type="echo"))
    fields.setdefault("created", 100.0)
    return JobEntry(**fields)


class TestOrdering:
    """Tests for processing order."""

    def test_higher_priority_first(self):
        """Test that priority dominates creation time."""
        low = make_entry(id="low", priority=1, created=1.0)
        high = make_entry(id="high", priority=10, created=2.0)

        assert [e.id for e in order_for_processing([low, high])] == ["high", "low"]

    def test_fifo_within_priority(self):
        """Test first-in-first-served within one priority."""
        first = make_entry(id="first", created=1.0)
        second = make_entry(id="second", created=2.0)

        assert [e.id for e in order_for_processing([second, first])] == ["first", "second"]

    def test_stable_for_equal_keys(self):
        """Test that equal keys keep their storage order."""
        a = make_entry(id="a")
        b = make_entry(id="b")

        assert [e.id for e in order_for_processing([b, a])] == ["b", "a"]

    def test_negative_priority_runs_last(self):
        """Test that negative priorities sort after the default."""
        neg = make_entry(id="neg", priority=-5, created=1.0)
        default = make_entry(id="default", created=2.0)

        assert [e.id for e in order_for_processing([neg, default])] == ["default", "neg"]


class TestEligibility:
    """Tests for eligibility checks."""

    def test_delay_boundary(self):
        """Test that an entry is due exactly when its delay elapses."""
        entry = make_entry(created=100.0, delay=10)

        assert not is_due(entry, 109.999)
        assert is_due(entry, 110.0)

    def test_dependencies_met(self):
        """Test dependency resolution against completed jobs."""
        entry = make_entry(dependencies=["a", "b"])
        statuses = {"a": JobStatus.COMPLETED, "b": JobStatus.COMPLETED}

        assert dependencies_met(entry, statuses.get)

    def test_dependency_not_completed(self):
        """Test that a running dependency blocks the entry."""
        entry = make_entry(dependencies=["a"])

        assert not dependencies_met(entry, {"a": JobStatus.RUNNING}.get)

    def test_unknown_dependency_is_unmet(self):
        """Test that an unknown dependency id blocks the entry."""
        entry = make_entry(dependencies=["missing"])

        assert not dependencies_met(entry, {}.get)

    def test_select_eligible(self):
        """Test selection filters by status, delay and dependencies."""
        done = make_entry(id="done", status=JobStatus.COMPLETED)
        ready = make_entry(id="ready", created=1.0)
        waiting = make_entry(id="waiting", created=2.0, delay=1000)
        blocked = make_entry(id="blocked", created=3.0, dependencies=["ready"])
        after_done = make_entry(id="after_done", created=4.0, dependencies=["done"])
        cancelled = make_entry(id="cancelled", status=JobStatus.CANCELLED)
        entries = [done, ready, waiting, blocked, after_done, cancelled]
        statuses = {e.id: e.status for e in entries}

        selected = select_eligible(entries, 500.0, statuses.get)

        assert [e.id for e in selected] == ["ready", "after_done"]

    def test_paused_entry_not_eligible(self):
        """Test that a paused entry is skipped until resumed."""
        paused = make_entry(id="paused", paused=True)

        assert select_eligible([paused], 500.0, lambda job_id: None) == []
        paused.paused = False
        assert [e.id for e in select_eligible([paused], 500.0, lambda job_id: None)] == [
            "paused"
        ]

    def test_next_scheduled(self):
        """Test that the earliest eligibility time wins."""
        late = make_entry(id="late", created=1.0, delay=100)
        soon = make_entry(id="soon", created=50.0, delay=0)
        running = make_entry(id="running", created=0.0, status=JobStatus.RUNNING)

        assert next_scheduled([late, soon, running]).id == "soon"

    def test_next_scheduled_empty(self):
        """Test that no pending entries yields None."""
        assert next_scheduled([make_entry(status=JobStatus.COMPLETED)]) is None


class TestCycleDetection:
    """Tests for dependency cycle detection."""

    def test_self_dependency(self):
        """Test that depending on oneself is a cycle."""
        assert would_create_cycle("a", "a", lambda job_id: [])

    def test_direct_cycle(self):
        """Test a two-job cycle."""
        graph = {"b": ["a"]}

        assert would_create_cycle("a", "b", lambda job_id: graph.get(job_id, []))

    def test_transitive_cycle(self):
        """Test a cycle through an intermediate job."""
        graph = {"c": ["b"], "b": ["a"]}

        assert would_create_cycle("a", "c", lambda job_id: graph.get(job_id, []))

    def test_diamond_is_not_a_cycle(self):
        """Test that shared ancestors are not cycles."""
        graph = {"b": ["d"], "c": ["d"]}

        assert not would_create_cycle("a", "b", lambda job_id: graph.get(job_id, []))
        graph["a"] = ["b"]
        assert not would_create_cycle("a", "c", lambda job_id: graph.get(job_id, []))


class TestTransitions:
    """Tests for the retry and dead-letter state machine."""

    def test_success(self):
        """Test the transition to completed."""
        entry = make_entry(status=JobStatus.RUNNING)

        completed = apply_success(entry, {"ok": True})

        assert completed.status == JobStatus.COMPLETED
        assert completed.result == {"ok": True}
        assert completed.attempts == 0
        assert entry.status == JobStatus.RUNNING

    def test_failure_without_retries(self):
        """Test that a job without retries fails on its first error."""
        entry = make_entry(status=JobStatus.RUNNING, retries=0)

        failed = apply_failure(entry, "boom")

        assert failed.status == JobStatus.FAILED
        assert failed.attempts == 1
        assert failed.error == "boom"

    def test_failure_with_retries_left(self):
        """Test that a failure with retries left goes back to pending."""
        entry = make_entry(status=JobStatus.RUNNING, retries=2, attempts=1)

        retried = apply_failure(entry, "boom")

        assert retried.status == JobStatus.PENDING
        assert retried.attempts == 2
        assert retried.error is None

    def test_total_executions_is_retries_plus_one(self):
        """Test that retries=N allows exactly N+1 executions."""
        entry = make_entry(status=JobStatus.RUNNING, retries=3)
        executions = 0

        while entry.status != JobStatus.FAILED:
            executions += 1
            entry = apply_failure(entry, "boom")

        assert executions == 4
        assert entry.attempts == 4

    def test_reset_for_retry(self):
        """Test that a dead entry restarts its lifecycle."""
        dead = make_entry(
            status=JobStatus.FAILED,
            attempts=3,
            retries=2,
            error="boom",
            priority=4,
            dependencies=["x"],
        )

        restored = reset_for_retry(dead)

        assert restored.status == JobStatus.PENDING
        assert restored.attempts == 0
        assert restored.error is None
        assert restored.id == dead.id
        assert restored.retries == 2
        assert restored.priority == 4
        assert restored.dependencies == ["x"]
        assert restored.dependencies is not dead.dependencies

    def test_reset_for_retry_keeps_annotations(self):
        """Test that tags and metadata survive a retry while progress is reset."""
        dead = make_entry(
            status=JobStatus.FAILED,
            tags=["nightly"],
            metadata={"owner": "ops"},
            progress=JobProgress(percent=80, updated=1.0),
        )

        restored = reset_for_retry(dead)

        assert restored.tags == ["nightly"]
        assert restored.metadata == {"owner": "ops"}
        assert restored.progress is None


class TestApplyUpdate:
    """Tests for administrative updates."""

    def test_update_fields(self):
        """Test overwriting writable fields."""
        entry = make_entry()

        updated = apply_update(entry, {"priority": 9, "delay": 30, "retries": 2})

        assert (updated.priority, updated.delay, updated.retries) == (9, 30, 2)
        assert entry.priority == 0

    def test_update_payload_accepts_callable(self):
        """Test that a callable replacement payload is normalized."""
        updated = apply_update(make_entry(), {"payload": print})

        assert isinstance(updated.payload, CallablePayload)

    def test_update_dependencies_deduplicated(self):
        """Test that duplicate dependency ids collapse."""
        updated = apply_update(make_entry(), {"dependencies": ["a", "b", "a"]})

        assert updated.dependencies == ["a", "b"]

    def test_unknown_field(self):
        """Test that unknown fields are rejected."""
        with pytest.raises(InvalidJobUpdateError):
            apply_update(make_entry(), {"colour": "red"})

    def test_id_is_immutable(self):
        """Test that the id cannot be overwritten."""
        with pytest.raises(InvalidJobUpdateError):
            apply_update(make_entry(), {"id": "other"})

    def test_invalid_value(self):
        """Test that invalid values are rejected."""
        with pytest.raises(InvalidJobUpdateError):
            apply_update(make_entry(), {"attempts": -1})


class TestStats:
    """Tests for counting helpers."""

    def test_count_by_status_covers_every_status(self):
        """Test that every status appears in the counts."""
        entries = [
            make_entry(status=JobStatus.PENDING),
            make_entry(status=JobStatus.PENDING),
            make_entry(status=JobStatus.COMPLETED),
        ]

        stats = count_by_status(entries, dead_letter_count=2)

        assert stats == {
            "pending": 2,
            "running": 0,
            "completed": 1,
            "failed": 2,
            "cancelled": 0,
        }

    def test_matches(self):
        """Test field equality matching."""
        entry = make_entry(priority=3, status=JobStatus.PENDING)

        assert matches(entry, {"priority": 3, "status": JobStatus.PENDING})
        assert not matches(entry, {"priority": 4})
        assert not matches(entry, {"nonexistent": None})


class TestCoerceStatus:
    """Tests for status coercion."""

    def test_accepts_values_and_members(self):
        """Test that plain strings resolve to statuses."""
        assert coerce_status("pending") is JobStatus.PENDING
        assert coerce_status(JobStatus.FAILED) is JobStatus.FAILED
        assert coerce_status(None) is None

    def test_unknown_value(self):
        """Test that an unknown status name raises."""
        with pytest.raises(ValueError):
            coerce_status("archived")
