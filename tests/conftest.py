"""
Pytest configuration and shared fixtures.
"""

from collections import defaultdict
from collections.abc import Callable, Generator
from typing import Any

import pytest
from pydantic import BaseModel
from sqlalchemy import Engine, create_engine
from sqlalchemy.pool import StaticPool

from jobqueue.queue import DatabaseJobQueue, JobQueue, MemoryJobQueue, RedisJobQueue
from jobqueue.types.job import HandlerPayload
from jobqueue.worker.handlers import get_handler, register_handler, unregister_handler

RECORD_JOB_TYPE = "test_record"


class FakeClock:
    """
    Controllable clock.

    Every reading advances time by ``tick`` so that consecutive dispatches
    get strictly increasing timestamps on every backend.
    """

    def __init__(self, start: float = 1_700_000_000.0, tick: float = 0.001):
        self.now = start
        self.tick = tick

    def __call__(self) -> float:
        self.now += self.tick
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class InMemoryListClient:
    """
    Stand-in for a ``redis.Redis`` client with ``decode_responses=True``.

    Implements the list commands the list-store backend uses. ``eval``
    emulates the compare-and-set swap script. ``before_swap`` is called
    with ``(client, key, index)`` ahead of every swap to simulate another
    process writing in between.
    """

    def __init__(self):
        self.lists: dict[str, list[str]] = defaultdict(list)
        self.before_swap: Callable[["InMemoryListClient", str, int], None] | None = None
        self.swap_calls = 0

    def rpush(self, key: str, *values: str) -> int:
        self.lists[key].extend(values)
        return len(self.lists[key])

    def llen(self, key: str) -> int:
        return len(self.lists.get(key, []))

    def lindex(self, key: str, index: int) -> str | None:
        items = self.lists.get(key, [])
        if 0 <= index < len(items):
            return items[index]
        return None

    def lrem(self, key: str, count: int, value: str) -> int:
        assert count == 0, "only remove-all is emulated"
        items = self.lists.get(key, [])
        kept = [item for item in items if item != value]
        self.lists[key] = kept
        return len(items) - len(kept)

    def delete(self, *keys: str) -> int:
        return sum(1 for key in keys if self.lists.pop(key, None) is not None)

    def eval(self, script: str, numkeys: int, *args: Any) -> int:
        assert numkeys == 1
        key, index, expected, new = args
        self.swap_calls += 1
        if self.before_swap is not None:
            self.before_swap(self, key, index)

        items = self.lists.get(key, [])
        if 0 <= index < len(items) and items[index] == expected:
            items[index] = new
            return 1
        return 0


class Recorder:
    """Collects the invocations of the ``test_record`` handler."""

    def __init__(self):
        self.calls: list[str] = []
        self.failures_left: dict[str, int] = {}

    def __call__(self, data: dict[str, Any]) -> Any:
        name = data.get("name", "")
        self.calls.append(name)

        if data.get("fail"):
            raise RuntimeError(f"{name} failed")

        remaining = self.failures_left.get(name, 0)
        if remaining:
            self.failures_left[name] = remaining - 1
            raise RuntimeError(f"{name} failed, {remaining - 1} failures left")

        return data.get("result")


def record_job(name: str, **data: Any) -> HandlerPayload:
    """Build a payload for the ``test_record`` handler."""
    return HandlerPayload(job_type=RECORD_JOB_TYPE, data={"name": name, **data})


class RecordTask:
    """Run-object job reporting to the ``test_record`` handler."""

    def __init__(self, name: str, **data: Any):
        self.name = name
        self.data = data

    def run(self) -> Any:
        return get_handler(RECORD_JOB_TYPE)({"name": self.name, **self.data})


class RecordModelTask(BaseModel):
    """Run-object job defined as a pydantic model."""

    name: str
    result: Any = None
    fail: bool = False

    def run(self) -> Any:
        return get_handler(RECORD_JOB_TYPE)(self.model_dump())


@pytest.fixture
def clock() -> FakeClock:
    """Create a controllable clock."""
    return FakeClock()


@pytest.fixture
def recorder() -> Generator[Recorder]:
    """Register a recording handler for the duration of a test."""
    recorder = Recorder()
    register_handler(RECORD_JOB_TYPE)(recorder)

    yield recorder

    unregister_handler(RECORD_JOB_TYPE)


@pytest.fixture
def sqlite_engine() -> Generator[Engine]:
    """Create an in-memory SQLite engine shared across sessions."""
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    yield engine

    engine.dispose()


@pytest.fixture
def list_client() -> InMemoryListClient:
    """Create an in-memory list-store client."""
    return InMemoryListClient()


@pytest.fixture(params=["memory", "database", "redis"])
def queue(
    request: pytest.FixtureRequest,
    clock: FakeClock,
    sqlite_engine: Engine,
    list_client: InMemoryListClient,
) -> JobQueue:
    """Create a queue for each backend, all driven by the fake clock."""
    if request.param == "database":
        return DatabaseJobQueue(sqlite_engine, clock=clock)
    if request.param == "redis":
        return RedisJobQueue(list_client, name="test", clock=clock)
    return MemoryJobQueue(clock=clock)
