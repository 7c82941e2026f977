"""Batch evaluation of many (period, window) invocations over one snapshot."""

import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Tuple

from ..config.schema import Config
from ..engine.ema import MintFeed
from ..engine.fertilizer import FertilizerYieldEstimator, ProtocolReader, StaticProtocolReader
from ..engine.ledger import LedgerSnapshot
from .runner import WindowResult, YieldStore, evaluate_window

logger = logging.getLogger(__name__)

Task = Tuple[int, int]


@dataclass
class BatchResult:
    """Completed windows plus the tasks that did not finish."""
    results: List[WindowResult] = field(default_factory=list)
    timed_out: List[Task] = field(default_factory=list)
    failed: List[Tuple[Task, str]] = field(default_factory=list)

    def save(self, store: YieldStore) -> None:
        """Write completed windows only."""
        for result in self.results:
            store.save_window(result)


class BatchRunner:
    """Evaluate yield windows against an immutable ledger snapshot."""

    def __init__(
        self,
        config: Config,
        snapshot: LedgerSnapshot,
        feed: MintFeed,
        reader: Optional[ProtocolReader] = None,
        fertilizer_supply: Optional[int] = None
    ):
        """
        Initialize batch runner.

        Args:
            config: Workbench configuration
            snapshot: Ledger state every task reads
            feed: Historical minted value per period
            reader: Live protocol reads for the fertilizer estimator
            fertilizer_supply: Mirrored fertilizer supply (read from ``reader`` when None)
        """
        self.config = config
        self.snapshot = snapshot
        self.feed = feed
        self.fertilizer_supply = fertilizer_supply
        self.fertilizer = FertilizerYieldEstimator(
            reader if reader is not None else StaticProtocolReader(),
            default_humidity=config.fertilizer.default_humidity,
            humidity_precision=config.fertilizer.humidity_precision,
            precision=config.simulation.decimal_precision,
        )

    def tasks_for(self, periods: Iterable[int], windows: Optional[Iterable[int]] = None) -> List[Task]:
        """Every (period, window) pair, windows defaulting to the configured ones."""
        windows = list(windows) if windows is not None else list(self.config.ema.windows)
        return [(p, w) for p in periods for w in windows]

    def evaluate(self, task: Task, timestamp: int = 0) -> WindowResult:
        period, window = task
        return evaluate_window(
            self.config, self.snapshot, self.feed, self.fertilizer,
            period, window, timestamp, self.fertilizer_supply
        )

    def run(
        self,
        tasks: Iterable[Task],
        max_workers: Optional[int] = None,
        timeout: Optional[float] = None,
        timestamp: int = 0
    ) -> BatchResult:
        """
        Evaluate all tasks.

        Args:
            tasks: (period, window) pairs
            max_workers: Thread pool size; tasks run sequentially when None or 1
            timeout: Seconds to wait for each task's result (pool only)

        Returns:
            BatchResult in task order; timed-out tasks produce no records
        """
        tasks = list(tasks)
        batch = BatchResult()

        if not max_workers or max_workers <= 1:
            for task in tasks:
                batch.results.append(self.evaluate(task, timestamp))
            return batch

        pool = ThreadPoolExecutor(max_workers=max_workers)
        try:
            futures = [(task, pool.submit(self.evaluate, task, timestamp)) for task in tasks]
            for task, future in futures:
                try:
                    batch.results.append(future.result(timeout=timeout))
                except FutureTimeout:
                    future.cancel()
                    logger.warning("task period=%d window=%d timed out after %ss", task[0], task[1], timeout)
                    batch.timed_out.append(task)
                except (ArithmeticError, ValueError) as exc:
                    logger.error("task period=%d window=%d failed: %s", task[0], task[1], exc)
                    batch.failed.append((task, str(exc)))
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

        logger.info(
            "batch finished: %d completed, %d timed out, %d failed",
            len(batch.results), len(batch.timed_out), len(batch.failed)
        )
        return batch
