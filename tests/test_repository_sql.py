"""
SQL store adapter against SQLite (aiosqlite).
"""

import asyncio
from datetime import timedelta, timezone

import pytest
from sqlalchemy import update

from leaseworker.db.tables import WorkItemTable
from leaseworker.engine import LeaseManager, RowUpdater, WorkItemNotFound
from leaseworker.models import WorkStatus
from leaseworker.observability import metrics
from leaseworker.utils.time import utc_now


@pytest.mark.asyncio
async def test_enqueue_assigns_ascending_ids(repository):
    """Enqueued items are pending with ids in insertion order."""
    items = await repository.enqueue([{"a": 1}, "plain text", [1, 2]])

    assert [item.id for item in items] == sorted(item.id for item in items)
    assert all(item.status == WorkStatus.PENDING for item in items)

    stored = await repository.get(items[1].id)
    assert stored.payload == "plain text"
    assert stored.result is None
    assert stored.lease_owner is None


@pytest.mark.asyncio
async def test_select_claimable_skips_leased_and_terminal(repository):
    """Only pending, unleased, result-less rows are candidates."""
    items = await repository.enqueue([1, 2, 3, 4, 5])
    now = utc_now()

    await repository.acquire([items[0].id], "w", now)
    await repository.mark_done(items[1].id, {"ok": True}, now)
    await repository.mark_failed(items[2].id, "boom", now)

    assert await repository.select_claimable(10) == [items[3].id, items[4].id]
    assert await repository.select_claimable(1) == [items[3].id]


@pytest.mark.asyncio
async def test_acquire_only_wins_unleased_rows(repository):
    """The second acquire over the same ids matches nothing."""
    items = await repository.enqueue(["a", "b"])
    ids = [item.id for item in items]
    now = utc_now()

    first = await repository.acquire(ids, "worker-a", now)
    second = await repository.acquire(ids, "worker-b", now)

    assert [item.id for item in first] == ids
    assert all(item.lease_owner == "worker-a" for item in first)
    assert second == []
    assert (await repository.get(ids[0])).lease_owner == "worker-a"


@pytest.mark.asyncio
async def test_concurrent_acquire_single_owner(repository):
    """Concurrent conditional updates leave each row with exactly one owner."""
    items = await repository.enqueue(list(range(6)))
    ids = [item.id for item in items]
    now = utc_now()

    won_a, won_b = await asyncio.gather(
        repository.acquire(ids, "worker-a", now),
        repository.acquire(ids, "worker-b", now),
    )

    assert {i.id for i in won_a}.isdisjoint({i.id for i in won_b})
    assert len(won_a) + len(won_b) == len(ids)


@pytest.mark.asyncio
async def test_timestamps_read_back_as_utc(repository):
    """Lease timestamps come back timezone-aware."""
    (item,) = await repository.enqueue(["x"])
    (leased,) = await repository.acquire([item.id], "w", utc_now())

    assert leased.lease_at.tzinfo == timezone.utc
    assert (await repository.get(item.id)).created_at.tzinfo == timezone.utc


@pytest.mark.asyncio
async def test_clear_stale_respects_cutoff_and_result(repository):
    """Leases older than the cutoff are cleared unless the row has a result."""
    items = await repository.enqueue(["old", "fresh"])
    now = utc_now()

    await repository.acquire([items[0].id], "w", now - timedelta(hours=1))
    await repository.acquire([items[1].id], "w", now)

    cleared = await repository.clear_stale(now - timedelta(minutes=15))

    assert cleared == 1
    assert (await repository.get(items[0].id)).lease_owner is None
    assert (await repository.get(items[1].id)).lease_owner == "w"


@pytest.mark.asyncio
async def test_lease_manager_reclaims_through_sql(repository):
    """End to end: an abandoned SQL lease is re-leased after the TTL."""
    (item,) = await repository.enqueue(["x"])
    ttl = timedelta(minutes=15)
    start = utc_now()

    dead = LeaseManager(repository, "dead", ttl, clock=lambda: start)
    live = LeaseManager(repository, "live", ttl, clock=lambda: start + ttl + timedelta(seconds=1))

    assert [i.id for i in await dead.claim(5)] == [item.id]
    assert [i.lease_owner for i in await live.claim(5)] == ["live"]


@pytest.mark.asyncio
async def test_mark_done_stores_result_and_clears_lease(repository):
    """A successful commit sets status, result and drops the lease."""
    (item,) = await repository.enqueue([{"q": "?"}])
    now = utc_now()
    await repository.acquire([item.id], "w", now)

    await repository.mark_done(item.id, {"answer": [1, 2]}, now)

    stored = await repository.get(item.id)
    assert stored.status == WorkStatus.DONE
    assert stored.result == {"answer": [1, 2]}
    assert stored.lease_owner is None
    assert stored.lease_at is None


@pytest.mark.asyncio
async def test_done_rows_are_never_reclaimed(repository):
    """Clearing stale leases ignores rows that already hold a result."""
    (item,) = await repository.enqueue(["x"])
    now = utc_now()
    await repository.mark_done(item.id, {"ok": True}, now)

    assert await repository.clear_stale(now + timedelta(days=1)) == 0
    assert await repository.select_claimable(10) == []


@pytest.mark.asyncio
async def test_commit_on_missing_item_raises(repository):
    """Committing an unknown id raises WorkItemNotFound."""
    with pytest.raises(WorkItemNotFound):
        await repository.mark_done(999, {"x": 1}, utc_now())


@pytest.mark.asyncio
async def test_release_requires_matching_owner(repository):
    """Only the lease holder can release."""
    (item,) = await repository.enqueue(["x"])
    await repository.acquire([item.id], "worker-a", utc_now())

    assert await repository.release([item.id], "worker-b") == 0
    assert await repository.release([item.id], "worker-a") == 1
    assert (await repository.get(item.id)).lease_owner is None


@pytest.mark.asyncio
async def test_requeue_failed_and_counts(repository):
    """Failed items return to pending; counts track every status."""
    items = await repository.enqueue(["a", "b", "c"])
    now = utc_now()
    await repository.mark_failed(items[0].id, "bad output", now)
    await repository.mark_failed(items[1].id, "bad output", now)
    await repository.mark_done(items[2].id, {"ok": True}, now)

    counts = await repository.count_by_status()
    assert counts == {WorkStatus.PENDING: 0, WorkStatus.DONE: 1, WorkStatus.FAILED: 2}

    assert await repository.requeue_failed([items[0].id]) == 1
    requeued = await repository.get(items[0].id)
    assert requeued.status == WorkStatus.PENDING
    assert requeued.error is None

    assert await repository.requeue_failed() == 1
    assert await repository.select_claimable(10) == [items[0].id, items[1].id]


@pytest.mark.asyncio
async def test_late_failure_never_overwrites_a_result(repository):
    """A failure that lands after another worker's success leaves the row done."""
    (item,) = await repository.enqueue(["x"])
    ttl = timedelta(minutes=15)
    start = utc_now()
    later = start + ttl + timedelta(seconds=1)

    slow = LeaseManager(repository, "worker-a", ttl, clock=lambda: start)
    fast = LeaseManager(repository, "worker-b", ttl, clock=lambda: later)
    (leased_by_a,) = await slow.claim(5)
    (leased_by_b,) = await fast.claim(5)

    await RowUpdater(repository, clock=lambda: later).commit_success(leased_by_b, {"Question": "Q"})
    await RowUpdater(repository, clock=lambda: later).commit_failure(leased_by_a, "PROVIDER_FATAL: boom")

    stored = await repository.get(item.id)
    assert stored.status == WorkStatus.DONE
    assert stored.result == {"Question": "Q"}
    assert stored.error is None
    assert metrics.counter("commits.late_failure_ignored") == 1

    assert await repository.requeue_failed() == 0
    assert await repository.count_by_status() == {WorkStatus.PENDING: 0, WorkStatus.DONE: 1, WorkStatus.FAILED: 0}


@pytest.mark.asyncio
async def test_failure_on_missing_item_still_raises(repository):
    """The result guard does not hide unknown ids."""
    with pytest.raises(WorkItemNotFound):
        await repository.mark_failed(999, "boom", utc_now())


@pytest.mark.asyncio
async def test_requeue_skips_failed_rows_that_hold_a_result(repository):
    """Rows carrying a result are never sent back to pending."""
    items = await repository.enqueue(["a", "b"])
    now = utc_now()
    await repository.mark_failed(items[0].id, "bad output", now)
    await repository.mark_done(items[1].id, {"ok": True}, now)
    async with repository.session_factory() as session, session.begin():
        await session.execute(
            update(WorkItemTable).where(WorkItemTable.id == items[1].id).values(status=WorkStatus.FAILED)
        )

    assert await repository.requeue_failed() == 1
    assert (await repository.get(items[1].id)).status == WorkStatus.FAILED
    assert await repository.select_claimable(10) == [items[0].id]
