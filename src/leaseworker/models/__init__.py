"""leaseworker data models."""

from leaseworker.models.enums import Outcome, WorkStatus
from leaseworker.models.generation import GenerationRequest
from leaseworker.models.lease import Lease
from leaseworker.models.work_item import WorkItem

__all__ = [
    "GenerationRequest",
    "Lease",
    "Outcome",
    "WorkItem",
    "WorkStatus",
]
