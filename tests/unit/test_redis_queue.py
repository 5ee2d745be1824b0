"""
Unit tests for the list-store backend.
"""

import json

import pytest

from conftest import FakeClock, InMemoryListClient, RecordModelTask, Recorder, record_job

from jobqueue.constants import REDIS_TOMBSTONE, JobStatus
from jobqueue.exceptions import ConcurrentModificationError, PayloadError
from jobqueue.queue import RedisJobQueue


class TestRedisJobQueue:
    """Tests for behavior specific to the list-store backend."""

    @pytest.fixture
    def queue(self, list_client: InMemoryListClient, clock: FakeClock) -> RedisJobQueue:
        """Create a queue on the in-memory list client."""
        return RedisJobQueue(list_client, name="emails", clock=clock)

    def test_keys(self, queue: RedisJobQueue):
        """Test the live and dead-letter list keys."""
        assert queue.key == "queue:emails"
        assert queue.dead_key == "queue:emails:dead"

    def test_custom_prefix(self, list_client: InMemoryListClient):
        """Test that the key prefix is configurable."""
        queue = RedisJobQueue(list_client, name="emails", prefix="app")

        assert queue.key == "app:emails"

    def test_dispatch_appends_json(
        self,
        queue: RedisJobQueue,
        list_client: InMemoryListClient,
    ):
        """Test that entries are appended as JSON documents."""
        first = queue.dispatch(record_job("a"))
        second = queue.dispatch(record_job("b"), priority=2)

        stored = [json.loads(raw) for raw in list_client.lists[queue.key]]
        assert [doc["id"] for doc in stored] == [first, second]
        assert stored[1]["priority"] == 2
        assert stored[0]["payload"]["kind"] == "handler"

    def test_model_run_object_document(
        self,
        queue: RedisJobQueue,
        list_client: InMemoryListClient,
    ):
        """Test that a pydantic run-object is embedded as its model dump."""
        queue.dispatch(RecordModelTask(name="a", result=2))

        doc = json.loads(list_client.lists[queue.key][0])

        assert doc["payload"] == {
            "kind": "object",
            "obj": {
                "class": "conftest:RecordModelTask",
                "state": {"name": "a", "result": 2, "fail": False},
            },
        }

    def test_lambda_rejected(self, queue: RedisJobQueue, list_client: InMemoryListClient):
        """Test that non-importable callables fail at dispatch."""
        with pytest.raises(PayloadError):
            queue.dispatch(lambda: None)

        assert list_client.llen(queue.key) == 0

    def test_dead_letter_compacts_live_list(
        self,
        queue: RedisJobQueue,
        list_client: InMemoryListClient,
        recorder: Recorder,
    ):
        """Test that dead-lettering leaves no tombstone behind."""
        keep = queue.dispatch(record_job("keep"))
        dead = queue.dispatch(record_job("dead", fail=True))
        queue.process()

        live = [json.loads(raw)["id"] for raw in list_client.lists[queue.key]]
        dead_list = [json.loads(raw) for raw in list_client.lists[queue.dead_key]]
        assert live == [keep]
        assert [doc["id"] for doc in dead_list] == [dead]
        assert dead_list[0]["status"] == "failed"
        assert REDIS_TOMBSTONE not in list_client.lists[queue.key]

    def test_retry_moves_back_to_live_list(
        self,
        queue: RedisJobQueue,
        list_client: InMemoryListClient,
        recorder: Recorder,
    ):
        """Test that a retried entry is appended to the live list."""
        job_id = queue.dispatch(record_job("a", fail=True))
        queue.process()

        restored = queue.retry_job(job_id)

        assert restored.status == JobStatus.PENDING
        assert list_client.llen(queue.dead_key) == 0
        assert json.loads(list_client.lists[queue.key][-1])["id"] == job_id

    def test_tombstones_are_skipped(
        self,
        queue: RedisJobQueue,
        list_client: InMemoryListClient,
    ):
        """Test that a tombstone left by a crashed writer is invisible."""
        job_id = queue.dispatch(record_job("a"))
        list_client.lists[queue.key].insert(0, REDIS_TOMBSTONE)

        assert [job.id for job in queue.get_jobs()] == [job_id]
        assert queue.get_queue_length() == 1

    def test_swap_follows_shifted_index(
        self,
        queue: RedisJobQueue,
        list_client: InMemoryListClient,
    ):
        """Test that an update relocates its element after the list shifts."""
        queue.dispatch(record_job("other"))
        job_id = queue.dispatch(record_job("a"))

        def remove_head_once(client, key, index):
            client.before_swap = None
            client.lists[key].pop(0)

        list_client.before_swap = remove_head_once

        assert queue.set_priority(job_id, 5) is True
        assert queue.get_job(job_id).priority == 5
        assert list_client.swap_calls == 2

    def test_concurrent_modification_gives_up(
        self,
        list_client: InMemoryListClient,
        clock: FakeClock,
    ):
        """Test that an element changing on every attempt raises."""
        queue = RedisJobQueue(list_client, name="busy", max_swap_attempts=3, clock=clock)
        job_id = queue.dispatch(record_job("a"))

        def rewrite(client, key, index):
            client.lists[key][index] += " "

        list_client.before_swap = rewrite

        with pytest.raises(ConcurrentModificationError) as exc_info:
            queue.set_priority(job_id, 5)

        assert exc_info.value.job_id == job_id
        assert list_client.swap_calls == 3

    def test_lost_claim_is_skipped(
        self,
        queue: RedisJobQueue,
        list_client: InMemoryListClient,
        recorder: Recorder,
    ):
        """Test that an entry claimed elsewhere between scan and claim is not run."""
        job_id = queue.dispatch(record_job("a"))

        def claim_elsewhere(client, key, index):
            client.before_swap = None
            doc = json.loads(client.lists[key][index])
            doc["status"] = "running"
            client.lists[key][index] = json.dumps(doc)

        list_client.before_swap = claim_elsewhere
        queue.process()

        assert recorder.calls == []
        assert queue.get_job_status(job_id) == JobStatus.RUNNING

    def test_clear_deletes_both_lists(
        self,
        queue: RedisJobQueue,
        list_client: InMemoryListClient,
        recorder: Recorder,
    ):
        """Test that clear removes the live and dead-letter keys."""
        queue.dispatch(record_job("a"))
        queue.dispatch(record_job("b", fail=True))
        queue.process()

        queue.clear()

        assert queue.key not in list_client.lists
        assert queue.dead_key not in list_client.lists

    def test_queues_are_isolated_by_name(
        self,
        list_client: InMemoryListClient,
        clock: FakeClock,
    ):
        """Test that two named queues share a client without interfering."""
        emails = RedisJobQueue(list_client, name="emails", clock=clock)
        reports = RedisJobQueue(list_client, name="reports", clock=clock)

        emails.dispatch(record_job("a"))

        assert emails.get_queue_length() == 1
        assert reports.get_queue_length() == 0
