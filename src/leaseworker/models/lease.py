"""Lease model - a worker's time-bounded claim on a work item."""

from datetime import datetime, timedelta, timezone

from pydantic import BaseModel


class Lease(BaseModel):
    """Represents a worker's exclusive claim on a work item."""

    owner: str
    acquired_at: datetime

    def age(self, now: datetime | None = None) -> timedelta:
        if now is None:
            now = datetime.now(timezone.utc)
        return now - self.acquired_at

    def is_stale(self, ttl: timedelta, now: datetime | None = None) -> bool:
        """A lease older than its TTL is reclaimable by anyone, owner alive or not."""
        return self.age(now) > ttl
