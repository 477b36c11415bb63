"""Store capability required by the leasing core."""

from datetime import datetime
from typing import Any, Iterable, Protocol, Sequence

from leaseworker.models import WorkItem, WorkStatus


class LeaseStore(Protocol):
    """
    Minimal contract between the leasing core and the shared store.

    Every method is a single round trip and every write is atomic on its own.
    Implementations raise ``PersistenceError`` when the backing store fails.
    """

    async def select_claimable(self, limit: int) -> list[int]:
        """Ids with no result, no lease and status pending, ascending, at most ``limit``."""
        ...

    async def acquire(self, ids: Sequence[int], owner: str, now: datetime) -> list[WorkItem]:
        """
        Set the lease on those of ``ids`` whose lease is still absent.

        The check and the write are one statement; the returned rows are the
        ones actually leased, ascending by id.
        """
        ...

    async def clear_stale(self, cutoff: datetime) -> int:
        """Clear leases taken before ``cutoff`` on rows that still have no result."""
        ...

    async def mark_done(self, item_id: int, result: Any, now: datetime) -> None:
        """Store the result, set status done, clear the lease."""
        ...

    async def mark_failed(self, item_id: int, error: str, now: datetime) -> None:
        """Record the error, set status failed, clear the lease. No-op on rows that hold a result."""
        ...

    async def release(self, ids: Sequence[int], owner: str) -> int:
        """Clear leases on ``ids`` still held by ``owner`` and without a result."""
        ...

    async def enqueue(self, payloads: Iterable[Any]) -> list[WorkItem]:
        ...

    async def get(self, item_id: int) -> WorkItem | None:
        ...

    async def requeue_failed(self, ids: Sequence[int] | None = None) -> int:
        """Return failed, result-less items (all, or only ``ids``) to pending."""
        ...

    async def count_by_status(self) -> dict[WorkStatus, int]:
        ...
