"""Database repository for work items (the SQL ``LeaseStore``)."""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Iterable, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from leaseworker.db.tables import WorkItemTable
from leaseworker.engine.errors import PersistenceError, WorkItemNotFound
from leaseworker.models import WorkItem, WorkStatus
from leaseworker.observability.metrics import metrics
from leaseworker.utils.time import ensure_utc, utc_now

logger = logging.getLogger("leaseworker.repository")

_ITEM_COLUMNS = (
    WorkItemTable.id,
    WorkItemTable.payload,
    WorkItemTable.status,
    WorkItemTable.result,
    WorkItemTable.error,
    WorkItemTable.lease_owner,
    WorkItemTable.lease_at,
    WorkItemTable.created_at,
    WorkItemTable.updated_at,
)


class WorkItemRepository:
    """
    Repository for work item operations.

    Holds a session factory rather than a session: worker loops call it from
    many concurrent tasks, and each call runs in its own short transaction.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    @asynccontextmanager
    async def _session(self, operation: str, write: bool = False) -> AsyncIterator[AsyncSession]:
        """Open a session (and a transaction for writes); translate driver errors."""
        try:
            async with self.session_factory() as session:
                if write:
                    async with session.begin():
                        yield session
                else:
                    yield session
        except SQLAlchemyError as e:
            raise PersistenceError(operation, str(e)) from e

    # =========================================================================
    # Leasing
    # =========================================================================

    async def select_claimable(self, limit: int) -> list[int]:
        """Ids with no result, no lease and status pending, ascending by id."""
        async with self._session("select_claimable") as session:
            result = await session.execute(
                select(WorkItemTable.id)
                .where(
                    WorkItemTable.status == WorkStatus.PENDING,
                    WorkItemTable.result.is_(None),
                    WorkItemTable.lease_owner.is_(None),
                )
                .order_by(WorkItemTable.id.asc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def acquire(self, ids: Sequence[int], owner: str, now: datetime) -> list[WorkItem]:
        """
        Lease ``ids`` for ``owner`` where the lease is still absent.

        The presence check lives in the UPDATE's WHERE clause, so two workers
        that selected the same id cannot both win: the second UPDATE matches
        zero rows. RETURNING yields exactly the rows this call leased.
        """
        if not ids:
            return []

        async with self._session("acquire", write=True) as session:
            result = await session.execute(
                update(WorkItemTable)
                .where(
                    WorkItemTable.id.in_(list(ids)),
                    WorkItemTable.status == WorkStatus.PENDING,
                    WorkItemTable.result.is_(None),
                    WorkItemTable.lease_owner.is_(None),
                )
                .values(lease_owner=owner, lease_at=now, updated_at=now)
                .returning(*_ITEM_COLUMNS)
                .execution_options(synchronize_session=False)
            )
            rows = result.all()

        return sorted((self._row_to_model(row) for row in rows), key=lambda item: item.id)

    async def clear_stale(self, cutoff: datetime) -> int:
        """Clear leases acquired before ``cutoff`` on rows that still lack a result."""
        async with self._session("clear_stale", write=True) as session:
            result = await session.execute(
                update(WorkItemTable)
                .where(
                    WorkItemTable.lease_owner.is_not(None),
                    WorkItemTable.lease_at < cutoff,
                    WorkItemTable.result.is_(None),
                )
                .values(lease_owner=None, lease_at=None)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount or 0

    async def release(self, ids: Sequence[int], owner: str) -> int:
        """Clear leases on ``ids`` that ``owner`` still holds."""
        if not ids:
            return 0

        async with self._session("release", write=True) as session:
            result = await session.execute(
                update(WorkItemTable)
                .where(
                    WorkItemTable.id.in_(list(ids)),
                    WorkItemTable.lease_owner == owner,
                    WorkItemTable.result.is_(None),
                )
                .values(lease_owner=None, lease_at=None, updated_at=utc_now())
                .execution_options(synchronize_session=False)
            )
            return result.rowcount or 0

    # =========================================================================
    # Terminal commits
    # =========================================================================

    async def mark_done(self, item_id: int, result: Any, now: datetime) -> None:
        """Store the result and release the lease in one statement."""
        await self._commit(
            "mark_done",
            item_id,
            result=result,
            status=WorkStatus.DONE,
            error=None,
            now=now,
        )

    async def mark_failed(self, item_id: int, error: str, now: datetime) -> None:
        """
        Record the failure and release the lease in one statement.

        Only rows without a result are touched. When another worker has
        already committed a result the late failure is dropped: it is logged
        and counted, and the row keeps its result and ``done`` status.
        """
        committed = await self._commit(
            "mark_failed",
            item_id,
            WorkItemTable.result.is_(None),
            status=WorkStatus.FAILED,
            error=error,
            now=now,
        )
        if not committed:
            metrics.inc_counter("commits.late_failure_ignored")
            logger.warning(f"Late failure for item {item_id} ignored; a result is already committed")

    async def _commit(self, operation: str, item_id: int, *conditions: Any, now: datetime, **values: Any) -> bool:
        """Apply a terminal write; False when the row exists but ``conditions`` excluded it."""
        async with self._session(operation, write=True) as session:
            result = await session.execute(
                update(WorkItemTable)
                .where(WorkItemTable.id == item_id, *conditions)
                .values(lease_owner=None, lease_at=None, updated_at=now, **values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount:
                return True
            exists = await session.scalar(select(WorkItemTable.id).where(WorkItemTable.id == item_id))
            if exists is None:
                raise WorkItemNotFound(item_id)
            return False

    # =========================================================================
    # Producer / operator operations
    # =========================================================================

    async def enqueue(self, payloads: Iterable[Any]) -> list[WorkItem]:
        """Insert pending items, one per payload, in the given order."""
        now = utc_now()
        async with self._session("enqueue", write=True) as session:
            rows = [
                WorkItemTable(
                    payload=payload,
                    status=WorkStatus.PENDING,
                    created_at=now,
                    updated_at=now,
                )
                for payload in payloads
            ]
            session.add_all(rows)
            await session.flush()
            return [self._row_to_model(row) for row in rows]

    async def get(self, item_id: int) -> WorkItem | None:
        async with self._session("get") as session:
            row = await session.get(WorkItemTable, item_id)
            return self._row_to_model(row) if row else None

    async def requeue_failed(self, ids: Sequence[int] | None = None) -> int:
        """Return failed, result-less items to pending; the error is cleared."""
        query = update(WorkItemTable).where(
            WorkItemTable.status == WorkStatus.FAILED,
            WorkItemTable.result.is_(None),
        )
        if ids is not None:
            if not ids:
                return 0
            query = query.where(WorkItemTable.id.in_(list(ids)))

        async with self._session("requeue_failed", write=True) as session:
            result = await session.execute(
                query.values(
                    status=WorkStatus.PENDING,
                    error=None,
                    lease_owner=None,
                    lease_at=None,
                    updated_at=utc_now(),
                ).execution_options(synchronize_session=False)
            )
            return result.rowcount or 0

    async def count_by_status(self) -> dict[WorkStatus, int]:
        async with self._session("count_by_status") as session:
            result = await session.execute(
                select(WorkItemTable.status, func.count()).group_by(WorkItemTable.status)
            )
            counts = {status: 0 for status in WorkStatus}
            for status, count in result.all():
                counts[WorkStatus(status)] = count
            return counts

    def _row_to_model(self, row: Any) -> WorkItem:
        """Convert an ORM row or a RETURNING row to the model."""
        return WorkItem(
            id=row.id,
            payload=row.payload,
            status=row.status,
            result=row.result,
            error=row.error,
            lease_owner=row.lease_owner,
            lease_at=ensure_utc(row.lease_at),
            created_at=ensure_utc(row.created_at),
            updated_at=ensure_utc(row.updated_at),
        )
