"""Concurrent worker loops sharing one store."""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from leaseworker.engine.invoker import GenerationInvoker
from leaseworker.engine.lease import LeaseManager
from leaseworker.engine.parser import ResultParser
from leaseworker.engine.prompts import PromptBuilder
from leaseworker.engine.updater import RowUpdater
from leaseworker.instance import resolve_worker_ids
from leaseworker.store import LeaseStore
from leaseworker.tasks.worker_loop import LoopConfig, WorkerLoop, WorkerStats
from leaseworker.utils.time import utc_now

logger = logging.getLogger("leaseworker.pool")


@dataclass
class PoolReport:
    """What every worker in a pool run did."""

    workers: list[WorkerStats] = field(default_factory=list)
    crashed: list[str] = field(default_factory=list)

    @property
    def totals(self) -> dict[str, int]:
        keys = ("polls", "claimed", "succeeded", "failed", "errors")
        return {key: sum(getattr(w, key) for w in self.workers) for key in keys}

    def to_dict(self) -> dict[str, Any]:
        return {
            "workers": [w.to_dict() for w in self.workers],
            "crashed": list(self.crashed),
            "totals": self.totals,
        }


class WorkerPool:
    """
    Runs N independent worker loops against one store.

    Each loop gets its own worker id, lease manager and updater; the invoker,
    parser and prompt builder are stateless and shared. A loop that crashes
    is reported and does not stop its siblings. run() returns once every loop
    has exited: bounded loops exit on their own, continuous ones on stop().
    """

    def __init__(
        self,
        store: LeaseStore,
        invoker: GenerationInvoker,
        parser: ResultParser,
        prompts: PromptBuilder,
        lease_ttl: timedelta,
        config: Optional[LoopConfig] = None,
        worker_id: Optional[str] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.invoker = invoker
        self.parser = parser
        self.prompts = prompts
        self.lease_ttl = lease_ttl
        self.config = config or LoopConfig()
        self.worker_id = worker_id
        self.clock = clock
        self.loops: list[WorkerLoop] = []
        self._stopped = False

    def build_loop(self, worker_id: str) -> WorkerLoop:
        return WorkerLoop(
            lease_manager=LeaseManager(self.store, worker_id, self.lease_ttl, clock=self.clock),
            invoker=self.invoker,
            parser=self.parser,
            updater=RowUpdater(self.store, clock=self.clock),
            prompts=self.prompts,
            config=self.config,
        )

    async def run(self, worker_count: int) -> PoolReport:
        worker_ids = resolve_worker_ids(self.worker_id, worker_count)
        self.loops = [self.build_loop(wid) for wid in worker_ids]
        if self._stopped:
            for loop in self.loops:
                loop.stop()

        logger.info(
            f"Starting {worker_count} workers (mode={self.config.mode.value}, "
            f"claim_limit={self.config.claim_limit}, batch_size={self.config.batch_size})"
        )

        results = await asyncio.gather(
            *(loop.run() for loop in self.loops),
            return_exceptions=True,
        )

        report = PoolReport()
        for loop, result in zip(self.loops, results):
            if isinstance(result, BaseException):
                logger.error(f"Worker {loop.worker_id} crashed: {result!r}", exc_info=result)
                report.crashed.append(loop.worker_id)
                report.workers.append(loop.stats)
            else:
                report.workers.append(result)

        logger.info(f"All {worker_count} workers finished: {report.totals}")
        return report

    def stop(self) -> None:
        """Signal every loop to exit after its current iteration."""
        self._stopped = True
        for loop in self.loops:
            loop.stop()
