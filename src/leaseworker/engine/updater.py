"""Terminal commits for processed work items."""

import logging
from datetime import datetime
from typing import Any, Callable

from leaseworker.engine.errors import LeaseWorkerError, PersistenceError
from leaseworker.models import WorkItem
from leaseworker.observability.metrics import metrics
from leaseworker.store import LeaseStore
from leaseworker.utils.time import utc_now

logger = logging.getLogger("leaseworker.updater")

MAX_ERROR_LENGTH = 2000


class RowUpdater:
    """
    Writes an item's terminal state and drops its lease in one statement.

    Failure policy: a failed item is marked ``failed`` with the error text and
    stays out of the claimable set until an operator requeues it. It is never
    silently returned to pending.
    """

    def __init__(self, store: LeaseStore, clock: Callable[[], datetime] = utc_now):
        self.store = store
        self.clock = clock

    async def commit_success(self, item: WorkItem, result: Any) -> None:
        try:
            await self.store.mark_done(item.id, result, self.clock())
        except PersistenceError:
            metrics.inc_counter("commits.failed")
            raise
        except LeaseWorkerError as e:
            metrics.inc_counter("commits.failed")
            raise PersistenceError("commit_success", e.message) from e
        metrics.inc_counter("items.succeeded")

    async def commit_failure(self, item: WorkItem, error_message: str) -> None:
        error = _truncate(error_message)
        try:
            await self.store.mark_failed(item.id, error, self.clock())
        except PersistenceError:
            metrics.inc_counter("commits.failed")
            raise
        except LeaseWorkerError as e:
            metrics.inc_counter("commits.failed")
            raise PersistenceError("commit_failure", e.message) from e
        metrics.inc_counter("items.failed")


def _truncate(message: str) -> str:
    if len(message) <= MAX_ERROR_LENGTH:
        return message
    return message[: MAX_ERROR_LENGTH - 3] + "..."
