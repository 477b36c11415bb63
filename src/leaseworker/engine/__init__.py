"""leaseworker engine - leasing, generation, parsing and commits."""

from leaseworker.engine.errors import (
    FatalProviderError,
    LeaseWorkerError,
    MalformedResultError,
    PersistenceError,
    TransientProviderError,
    WorkItemNotFound,
)
from leaseworker.engine.invoker import GenerationInvoker, GenerationProvider, is_transient_error
from leaseworker.engine.lease import LeaseManager
from leaseworker.engine.parser import ResultParser
from leaseworker.engine.prompts import PromptBuilder
from leaseworker.engine.updater import RowUpdater

__all__ = [
    "FatalProviderError",
    "GenerationInvoker",
    "GenerationProvider",
    "is_transient_error",
    "LeaseManager",
    "LeaseWorkerError",
    "MalformedResultError",
    "PersistenceError",
    "PromptBuilder",
    "ResultParser",
    "RowUpdater",
    "TransientProviderError",
    "WorkItemNotFound",
]
