"""leaseworker enumerations."""

from enum import Enum


class WorkStatus(str, Enum):
    """Work item lifecycle status."""

    PENDING = "pending"
    DONE = "done"
    FAILED = "failed"


class Outcome(str, Enum):
    """Result of running one item through the pipeline."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
