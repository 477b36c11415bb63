"""leaseworker database layer."""

from leaseworker.db.base import Base, close_db, create_engine, create_session_factory, init_db
from leaseworker.db.repositories import WorkItemRepository
from leaseworker.db.tables import WorkItemTable

__all__ = [
    "Base",
    "WorkItemRepository",
    "WorkItemTable",
    "close_db",
    "create_engine",
    "create_session_factory",
    "init_db",
]
