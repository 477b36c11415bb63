"""Background worker tasks."""

from leaseworker.tasks.pool import PoolReport, WorkerPool
from leaseworker.tasks.worker_loop import (
    BatchSummary,
    ItemOutcome,
    LoopConfig,
    WorkerLoop,
    WorkerStats,
)

__all__ = [
    "BatchSummary",
    "ItemOutcome",
    "LoopConfig",
    "PoolReport",
    "WorkerLoop",
    "WorkerPool",
    "WorkerStats",
]
