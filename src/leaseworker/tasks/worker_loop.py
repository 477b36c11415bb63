"""Worker loop: poll, claim, process, commit, sleep."""

import asyncio
import random
from dataclasses import asdict, dataclass, field
from typing import Any, Optional

from leaseworker.config import LifecycleMode, Settings
from leaseworker.engine.errors import LeaseWorkerError, MalformedResultError
from leaseworker.engine.invoker import GenerationInvoker
from leaseworker.engine.lease import LeaseManager
from leaseworker.engine.parser import ResultParser
from leaseworker.engine.prompts import PromptBuilder
from leaseworker.engine.updater import RowUpdater
from leaseworker.models import Outcome, WorkItem
from leaseworker.observability.log import worker_logger
from leaseworker.observability.metrics import metrics


@dataclass
class LoopConfig:
    """Per-loop knobs; see Settings for the meaning of each field."""

    claim_limit: int = 50
    batch_size: int = 5
    mode: LifecycleMode = LifecycleMode.CONTINUOUS
    max_empty_polls: int = 10
    loop_sleep_seconds: float = 0.5
    empty_poll_delay_seconds: float = 3.0
    error_backoff_seconds: float = 1.0
    max_error_backoff_seconds: float = 15.0
    max_consecutive_errors: int = 0

    @classmethod
    def from_settings(cls, settings: Settings, mode: Optional[LifecycleMode] = None) -> "LoopConfig":
        return cls(
            claim_limit=settings.claim_limit,
            batch_size=settings.batch_size,
            mode=mode or settings.lifecycle_mode,
            max_empty_polls=settings.max_empty_polls,
            loop_sleep_seconds=settings.loop_sleep_seconds,
            empty_poll_delay_seconds=settings.empty_poll_delay_seconds,
            error_backoff_seconds=settings.error_backoff_seconds,
            max_error_backoff_seconds=settings.max_error_backoff_seconds,
            max_consecutive_errors=settings.max_consecutive_errors,
        )


@dataclass
class ItemOutcome:
    item_id: int
    outcome: Outcome
    error: Optional[str] = None
    committed: bool = True


@dataclass
class BatchSummary:
    claimed: int
    outcomes: list[ItemOutcome] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.outcome == Outcome.SUCCEEDED)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if o.outcome == Outcome.FAILED)


@dataclass
class WorkerStats:
    worker_id: str
    polls: int = 0
    empty_polls: int = 0
    claimed: int = 0
    succeeded: int = 0
    failed: int = 0
    errors: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def describe_error(error: BaseException) -> str:
    if isinstance(error, LeaseWorkerError):
        return f"{error.code}: {error.message}"
    return f"{type(error).__name__}: {error}"


class WorkerLoop:
    """
    One worker's claim/process cycle.

    Items of a batch run concurrently in chunks of ``batch_size``; a failure
    in one item's pipeline is committed as that item's failure and never
    reaches its siblings. Errors outside the per-item pipeline (the store is
    down, say) are logged and retried after a growing backoff.

    Bounded mode exits after ``max_empty_polls`` consecutive empty polls;
    continuous mode polls until stop() is called.
    """

    def __init__(
        self,
        lease_manager: LeaseManager,
        invoker: GenerationInvoker,
        parser: ResultParser,
        updater: RowUpdater,
        prompts: PromptBuilder,
        config: Optional[LoopConfig] = None,
    ):
        self.lease_manager = lease_manager
        self.invoker = invoker
        self.parser = parser
        self.updater = updater
        self.prompts = prompts
        self.config = config or LoopConfig()
        self.worker_id = lease_manager.worker_id
        self.stats = WorkerStats(worker_id=self.worker_id)
        self.log = worker_logger("leaseworker.worker", self.worker_id)
        self._stop_event = asyncio.Event()

    def stop(self) -> None:
        """Ask the loop to finish after the current iteration; interrupts sleeps."""
        self._stop_event.set()

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()

    async def run(self) -> WorkerStats:
        """Main worker loop."""
        cfg = self.config
        self.log.info(
            f"Worker started (mode={cfg.mode.value}, claim_limit={cfg.claim_limit}, "
            f"batch_size={cfg.batch_size})"
        )

        empty_count = 0
        consecutive_errors = 0
        backoff = cfg.error_backoff_seconds

        while not self.stopping:
            try:
                summary = await self.run_once()
            except Exception as e:
                consecutive_errors += 1
                self.stats.errors += 1
                metrics.inc_counter("worker.loop_errors")

                if cfg.max_consecutive_errors and consecutive_errors >= cfg.max_consecutive_errors:
                    self.log.error(
                        f"Giving up after {consecutive_errors} consecutive loop errors: {e}",
                        exc_info=True,
                    )
                    break

                # Jittered so workers that failed together do not retry together
                sleep_for = min(backoff * random.uniform(1.0, 1.5), cfg.max_error_backoff_seconds)
                self.log.error(f"Loop iteration failed: {e}; retry in {sleep_for:.1f}s", exc_info=True)
                await self._sleep(sleep_for)
                backoff = min(backoff * 2, cfg.max_error_backoff_seconds)
                continue

            consecutive_errors = 0
            backoff = cfg.error_backoff_seconds

            if summary.claimed == 0:
                empty_count += 1
                if cfg.mode == LifecycleMode.BOUNDED:
                    self.log.info(f"No work in queue ({empty_count}/{cfg.max_empty_polls})")
                    if empty_count >= cfg.max_empty_polls:
                        break
                else:
                    self.log.debug("No work in queue")
                await self._sleep(cfg.empty_poll_delay_seconds)
                continue

            empty_count = 0
            await self._sleep(cfg.loop_sleep_seconds)

        self.log.info(
            f"Worker exiting: polls={self.stats.polls} claimed={self.stats.claimed} "
            f"succeeded={self.stats.succeeded} failed={self.stats.failed} errors={self.stats.errors}"
        )
        return self.stats

    async def run_once(self) -> BatchSummary:
        """Claim one batch and process it to terminal commits. No sleeping."""
        self.stats.polls += 1
        items = await self.lease_manager.claim(self.config.claim_limit)
        if not items:
            self.stats.empty_polls += 1
            return BatchSummary(claimed=0)

        self.stats.claimed += len(items)
        self.log.info(f"Claimed {len(items)} items (ids {items[0].id}..{items[-1].id})")

        summary = BatchSummary(claimed=len(items))
        size = self.config.batch_size
        for start in range(0, len(items), size):
            chunk = items[start:start + size]
            results = await asyncio.gather(
                *(self._process_item(item) for item in chunk),
                return_exceptions=True,
            )
            for item, result in zip(chunk, results):
                if isinstance(result, BaseException):
                    # _process_item commits its own failures; this is a failure of that handling
                    self.log.error(f"Item {item.id} pipeline escaped handling: {result!r}")
                    await self.lease_manager.release_all([item.id])
                    result = ItemOutcome(item.id, Outcome.FAILED, describe_error(result), committed=False)
                summary.outcomes.append(result)

        self.stats.succeeded += summary.succeeded
        self.stats.failed += summary.failed
        self.log.info(f"Batch done: {summary.succeeded} succeeded, {summary.failed} failed of {summary.claimed}")
        return summary

    async def _process_item(self, item: WorkItem) -> ItemOutcome:
        with metrics.timed("items.duration_ms"):
            try:
                request = self.prompts.build(item)
                raw_text = await self.invoker.invoke(request)
                result = self.parser.parse(raw_text)
            except Exception as e:
                error = describe_error(e)
                if isinstance(e, MalformedResultError) and e.preview:
                    self.log.warning(f"Item {item.id} failed: {error} (raw: {e.preview})")
                else:
                    self.log.warning(f"Item {item.id} failed: {error}")
                return await self._commit_failure(item, error)

            return await self._commit_success(item, result)

    async def _commit_success(self, item: WorkItem, result: Any) -> ItemOutcome:
        lease = item.lease
        now = self.lease_manager.clock()
        if lease is not None and lease.is_stale(self.lease_manager.lease_ttl, now):
            # Another worker may hold the item by now; the write still goes through
            metrics.inc_counter("leases.expired_before_commit")
            self.log.warning(f"Lease on item {item.id} expired before commit (age {lease.age(now)})")

        try:
            await self.updater.commit_success(item, result)
        except Exception as e:
            self.log.error(f"Could not record result for item {item.id}: {e}")
            await self.lease_manager.release_all([item.id])
            return ItemOutcome(item.id, Outcome.FAILED, f"commit failed: {describe_error(e)}", committed=False)
        return ItemOutcome(item.id, Outcome.SUCCEEDED)

    async def _commit_failure(self, item: WorkItem, error: str) -> ItemOutcome:
        try:
            await self.updater.commit_failure(item, error)
        except Exception as e:
            self.log.error(f"Could not record failure for item {item.id}: {e}")
            await self.lease_manager.release_all([item.id])
            return ItemOutcome(item.id, Outcome.FAILED, error, committed=False)
        return ItemOutcome(item.id, Outcome.FAILED, error)

    async def _sleep(self, seconds: float) -> None:
        """Sleep, returning early if stop() is called."""
        if seconds <= 0:
            await asyncio.sleep(0)
            return
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass
