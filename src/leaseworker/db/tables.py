"""SQLAlchemy table definitions."""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, BigInteger, DateTime, Enum, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from leaseworker.db.base import Base
from leaseworker.models.enums import WorkStatus

# SQL NULL (not JSON 'null') for absent payload/result, so IS NULL filters work
JSONType = JSON(none_as_null=True).with_variant(JSONB(none_as_null=True), "postgresql")
# SQLite only autoincrements INTEGER PRIMARY KEY
IdType = BigInteger().with_variant(Integer(), "sqlite")


class WorkItemTable(Base):
    """Work items table - queue rows with inline lease columns."""

    __tablename__ = "work_items"

    id: Mapped[int] = mapped_column(IdType, primary_key=True, autoincrement=True)

    payload: Mapped[Any] = mapped_column(JSONType, nullable=True)
    result: Mapped[Any | None] = mapped_column(JSONType, nullable=True)

    status: Mapped[WorkStatus] = mapped_column(
        Enum(
            WorkStatus,
            name="workstatus",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=WorkStatus.PENDING,
    )
    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Lease
    lease_owner: Mapped[str | None] = mapped_column(String(255), nullable=True)
    lease_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        # Index for claim queries
        Index("idx_work_items_claimable", "status", "lease_owner", "id"),
        # Index for stale lease reclamation
        Index("idx_work_items_lease_at", "lease_at"),
    )
