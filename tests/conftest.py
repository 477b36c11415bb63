"""
Pytest fixtures for leaseworker tests.
"""

import asyncio
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable, Sequence

import pytest

# Ensure test config is set before importing leaseworker modules.
os.environ.setdefault("LEASEWORKER_ENV", "development")
os.environ.setdefault("LEASEWORKER_DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from leaseworker.config import LifecycleMode, Settings
from leaseworker.db import WorkItemRepository, close_db, create_engine, create_session_factory, init_db
from leaseworker.engine import (
    GenerationInvoker,
    LeaseManager,
    PersistenceError,
    PromptBuilder,
    ResultParser,
    RowUpdater,
    WorkItemNotFound,
)
from leaseworker.models import GenerationRequest, WorkItem, WorkStatus
from leaseworker.observability import metrics
from leaseworker.tasks import LoopConfig, WorkerLoop

pytest_plugins = ("pytest_asyncio",)

LEASE_TTL = timedelta(minutes=15)


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta


class InMemoryStore:
    """
    LeaseStore over a dict.

    Each method's check-and-write runs without an await in between, which
    makes it atomic on a single event loop. select_claimable yields twice so
    concurrent claimers interleave between select and acquire.
    """

    def __init__(self):
        self.items: dict[int, WorkItem] = {}
        self._next_id = 1
        self.fail_commits_for: set[int] = set()
        self.fail_release = False

    def add(self, payload: Any, **fields: Any) -> WorkItem:
        item = WorkItem(id=self._next_id, payload=payload, **fields)
        self.items[item.id] = item
        self._next_id += 1
        return item

    def _claimable(self, item: WorkItem) -> bool:
        return item.status == WorkStatus.PENDING and item.result is None and item.lease_owner is None

    async def select_claimable(self, limit: int) -> list[int]:
        await asyncio.sleep(0)
        ids = sorted(i.id for i in self.items.values() if self._claimable(i))[:limit]
        await asyncio.sleep(0)
        return ids

    async def acquire(self, ids: Sequence[int], owner: str, now: datetime) -> list[WorkItem]:
        won = []
        for item_id in sorted(ids):
            item = self.items.get(item_id)
            if item is not None and self._claimable(item):
                item.lease_owner = owner
                item.lease_at = now
                item.updated_at = now
                won.append(item.model_copy())
        return won

    async def clear_stale(self, cutoff: datetime) -> int:
        cleared = 0
        for item in self.items.values():
            if item.lease_owner is not None and item.lease_at < cutoff and item.result is None:
                item.lease_owner = None
                item.lease_at = None
                cleared += 1
        return cleared

    async def mark_done(self, item_id: int, result: Any, now: datetime) -> None:
        item = self._commit_target("mark_done", item_id)
        item.status = WorkStatus.DONE
        item.result = result
        item.error = None
        self._clear_lease(item, now)

    async def mark_failed(self, item_id: int, error: str, now: datetime) -> None:
        item = self._commit_target("mark_failed", item_id)
        if item.result is not None:
            metrics.inc_counter("commits.late_failure_ignored")
            return
        item.status = WorkStatus.FAILED
        item.error = error
        self._clear_lease(item, now)

    def _commit_target(self, operation: str, item_id: int) -> WorkItem:
        if item_id in self.fail_commits_for:
            raise PersistenceError(operation, "database is unavailable")
        item = self.items.get(item_id)
        if item is None:
            raise WorkItemNotFound(item_id)
        return item

    def _clear_lease(self, item: WorkItem, now: datetime) -> None:
        item.lease_owner = None
        item.lease_at = None
        item.updated_at = now

    async def release(self, ids: Sequence[int], owner: str) -> int:
        if self.fail_release:
            raise PersistenceError("release", "database is unavailable")
        released = 0
        for item_id in ids:
            item = self.items.get(item_id)
            if item is not None and item.lease_owner == owner and item.result is None:
                item.lease_owner = None
                item.lease_at = None
                released += 1
        return released

    async def enqueue(self, payloads: Iterable[Any]) -> list[WorkItem]:
        return [self.add(payload) for payload in payloads]

    async def get(self, item_id: int) -> WorkItem | None:
        return self.items.get(item_id)

    async def requeue_failed(self, ids: Sequence[int] | None = None) -> int:
        count = 0
        for item in self.items.values():
            if item.status == WorkStatus.FAILED and item.result is None and (ids is None or item.id in ids):
                item.status = WorkStatus.PENDING
                item.error = None
                count += 1
        return count

    async def count_by_status(self) -> dict[WorkStatus, int]:
        counts = {status: 0 for status in WorkStatus}
        for item in self.items.values():
            counts[item.status] += 1
        return counts


class StubProvider:
    """
    Provider double.

    ``respond`` maps a request to text, or raises. Calls are recorded.
    """

    def __init__(self, respond: Callable[[GenerationRequest], str] | None = None):
        self.respond = respond or (lambda request: '{"ok": true}')
        self.calls: list[GenerationRequest] = []

    async def generate(self, request: GenerationRequest) -> str:
        self.calls.append(request)
        await asyncio.sleep(0)
        return self.respond(request)

    def prompts(self) -> list[str]:
        return [call.messages[-1]["content"] for call in self.calls]


async def no_sleep(seconds: float) -> None:
    return None


@pytest.fixture(autouse=True)
def reset_metrics():
    """Isolate the process-wide metrics registry per test."""
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def provider():
    return StubProvider()


@pytest.fixture
def prompts():
    return PromptBuilder(model="test-model", template="Item: {payload}")


@pytest.fixture
def make_loop(store, provider, prompts, clock):
    """Build a WorkerLoop over the in-memory store with zero sleeps."""

    def _make(worker_id: str = "worker-a", **overrides: Any) -> WorkerLoop:
        config = LoopConfig(
            claim_limit=overrides.pop("claim_limit", 10),
            batch_size=overrides.pop("batch_size", 5),
            mode=overrides.pop("mode", LifecycleMode.BOUNDED),
            max_empty_polls=overrides.pop("max_empty_polls", 1),
            loop_sleep_seconds=0,
            empty_poll_delay_seconds=overrides.pop("empty_poll_delay_seconds", 0),
            error_backoff_seconds=0,
            max_error_backoff_seconds=0,
            max_consecutive_errors=overrides.pop("max_consecutive_errors", 0),
        )
        target_store = overrides.pop("store", store)
        return WorkerLoop(
            lease_manager=LeaseManager(target_store, worker_id, LEASE_TTL, clock=clock),
            invoker=GenerationInvoker(overrides.pop("provider", provider), sleep=no_sleep),
            parser=ResultParser(),
            updater=RowUpdater(target_store, clock=clock),
            prompts=prompts,
            config=config,
        )

    return _make


@pytest.fixture
def sqlite_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'leaseworker.db'}"


@pytest.fixture
async def engine(sqlite_url):
    """File-backed SQLite engine with the schema created."""
    engine = create_engine(sqlite_url)
    await init_db(engine)
    yield engine
    await close_db(engine)


@pytest.fixture
async def repository(engine):
    return WorkItemRepository(create_session_factory(engine))


@pytest.fixture
def test_settings(sqlite_url):
    return Settings(
        database_url=sqlite_url,
        api_key=None,
        worker_id="test-worker",
        pool_size=2,
        lifecycle_mode=LifecycleMode.BOUNDED,
        max_empty_polls=1,
        loop_sleep_seconds=0,
        empty_poll_delay_seconds=0,
        generation_retry_base_delay_seconds=0,
    )
