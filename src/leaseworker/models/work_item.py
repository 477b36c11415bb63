"""Work item model - one row of pending work."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel

from leaseworker.models.enums import WorkStatus
from leaseworker.models.lease import Lease


class WorkItem(BaseModel):
    """
    A unit of work in the shared store.

    The payload is opaque to the core; it is only handed to the prompt builder.
    ``result`` is set exactly when the item reached ``done``.
    """

    id: int
    payload: Any
    status: WorkStatus = WorkStatus.PENDING
    result: Any | None = None
    error: str | None = None
    lease_owner: str | None = None
    lease_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def lease(self) -> Lease | None:
        if self.lease_owner is None or self.lease_at is None:
            return None
        return Lease(owner=self.lease_owner, acquired_at=self.lease_at)
