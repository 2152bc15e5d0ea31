"""Bounded fan-out of independent per-accession work.

Feature transfer and cross-reference lookup for each fetched accession are
independent of one another, so :class:`ParallelProcessor` runs them on a
small thread pool while keeping results aligned with the input accessions.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Iterable, List, Optional, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')
R = TypeVar('R')


@dataclass
class ProcessingResult:
    """Outcome for one item: a value, the exception it raised, or skipped."""
    item: Any
    result: Optional[Any] = None
    error: Optional[Exception] = None
    duration: float = 0.0
    skipped: bool = False

    @property
    def success(self) -> bool:
        return not self.skipped and self.error is None


@dataclass
class BatchProcessingStats:
    total_items: int = 0
    processed: int = 0
    successful: int = 0
    failed: int = 0
    skipped: int = 0
    total_duration: float = 0.0

    @classmethod
    def from_results(cls, results: Iterable[ProcessingResult], total_items: int) -> 'BatchProcessingStats':
        stats = cls(total_items=total_items)
        for outcome in results:
            if outcome.skipped:
                stats.skipped += 1
                continue
            stats.processed += 1
            stats.total_duration += outcome.duration
            if outcome.error is None:
                stats.successful += 1
            else:
                stats.failed += 1
        return stats

    @property
    def success_rate(self) -> float:
        return self.successful / self.processed if self.processed else 0.0

    @property
    def average_duration(self) -> float:
        return self.total_duration / self.processed if self.processed else 0.0


class ParallelProcessor:
    """
    Runs a function over items on a thread pool, returning results in input order.

    With ``max_workers`` of 1 the items are processed inline on the calling
    thread. ``should_stop`` is polled before each item starts; items not
    started once it returns True are reported as skipped.
    """

    def __init__(self, max_workers: int = 1, should_stop: Optional[Callable[[], bool]] = None):
        self.max_workers = max(1, max_workers)
        self.should_stop = should_stop

    def process_batch(self, items: List[T],
                      process_func: Callable[[T], R]) -> Tuple[List[ProcessingResult], BatchProcessingStats]:
        """Apply ``process_func`` to every item; exceptions are captured per item."""
        if not items:
            return [], BatchProcessingStats()

        def run(item: T) -> ProcessingResult:
            return self._run_one(item, process_func)

        if self.max_workers == 1 or len(items) == 1:
            results = [run(item) for item in items]
        else:
            with ThreadPoolExecutor(max_workers=min(self.max_workers, len(items))) as pool:
                # map yields in submission order
                results = list(pool.map(run, items))

        return results, BatchProcessingStats.from_results(results, len(items))

    def _run_one(self, item: T, process_func: Callable[[T], R]) -> ProcessingResult:
        if self.should_stop is not None and self.should_stop():
            return ProcessingResult(item=item, skipped=True)

        started = time.monotonic()
        try:
            value = process_func(item)
        except Exception as e:
            logger.error(f"Error processing {item}: {e}")
            return ProcessingResult(item=item, error=e, duration=time.monotonic() - started)
        return ProcessingResult(item=item, result=value, duration=time.monotonic() - started)
