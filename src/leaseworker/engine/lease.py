"""Lease acquisition and stale-lease reclamation."""

import logging
from datetime import datetime, timedelta
from typing import Callable, Sequence

from leaseworker.models import WorkItem
from leaseworker.observability.metrics import metrics
from leaseworker.store import LeaseStore
from leaseworker.utils.time import utc_now

logger = logging.getLogger("leaseworker.lease")


class LeaseManager:
    """
    Claims batches of work items for one worker identity.

    The store's lease columns act as a distributed mutex with a TTL:
    - claim() selects candidates, then leases them with a single conditional
      UPDATE; only the rows that UPDATE touched belong to this worker.
    - A lease older than the TTL is stale and is cleared by whichever worker
      calls reclaim_stale() next, whether or not its owner is still alive.
    - Rows that already hold a result are never touched again.
    """

    def __init__(
        self,
        store: LeaseStore,
        worker_id: str,
        lease_ttl: timedelta,
        clock: Callable[[], datetime] = utc_now,
    ):
        if lease_ttl <= timedelta(0):
            raise ValueError(f"lease_ttl must be positive, got {lease_ttl}")
        self.store = store
        self.worker_id = worker_id
        self.lease_ttl = lease_ttl
        self.clock = clock

    async def reclaim_stale(self) -> int:
        """Clear every lease older than the TTL on rows without a result. Idempotent."""
        cutoff = self.clock() - self.lease_ttl
        cleared = await self.store.clear_stale(cutoff)
        if cleared:
            metrics.inc_counter("leases.reclaimed", cleared)
            logger.info(f"Reclaimed {cleared} stale leases (older than {cutoff.isoformat()})")
        return cleared

    async def claim(self, limit: int) -> list[WorkItem]:
        """
        Lease up to ``limit`` eligible items, lowest ids first.

        Returns only the rows this worker actually leased. A short batch means
        another worker won some of the candidates between select and update;
        that is expected and not reported as an error.
        """
        if limit < 1:
            return []

        await self.reclaim_stale()

        candidate_ids = await self.store.select_claimable(limit)
        if not candidate_ids:
            return []

        claimed = await self.store.acquire(candidate_ids, self.worker_id, self.clock())

        lost = len(candidate_ids) - len(claimed)
        if lost:
            metrics.inc_counter("leases.race_lost", lost)
            logger.debug(
                f"{self.worker_id} lost {lost}/{len(candidate_ids)} candidates to other workers"
            )
        if claimed:
            metrics.inc_counter("leases.claimed", len(claimed))

        return claimed

    async def release_all(self, ids: Sequence[int]) -> int:
        """
        Best-effort release of leases this worker still holds.

        Used when a terminal commit could not be written, so the item becomes
        claimable again without waiting out the TTL. Errors are logged, not
        raised: TTL reclamation recovers the item regardless.
        """
        if not ids:
            return 0
        try:
            released = await self.store.release(list(ids), self.worker_id)
        except Exception as e:
            logger.warning(
                f"{self.worker_id} could not release leases on {list(ids)}: {e}; "
                f"they will be reclaimed after {self.lease_ttl}"
            )
            metrics.inc_counter("leases.release_failed", len(ids))
            return 0

        if released:
            metrics.inc_counter("leases.released", released)
        return released
