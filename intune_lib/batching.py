"""
Self-throttled batch processing.

Items are split into fixed-size chunks and handled one at a time, with a
fixed pause between chunks and no pause after the last one. Items within
a chunk are never run concurrently.
"""
import logging
import math
import time
from typing import Any, Callable, Iterable, List, Optional, Sequence

from .constants import (
    DEFAULT_BATCH_DELAY,
    DEFAULT_BATCH_SIZE,
    STAT_PROCESSED,
    STAT_SUCCEEDED,
    STAT_UPDATED,
)
from .deadline import RunDeadline
from .errors import AuthenticationError, DeadlineExceeded, ItemProcessingError
from .models import BatchSummary, ItemOutcome, ItemResult, RunStatistics
from .utils import ProgressTracker

logger = logging.getLogger(__name__)

# Per-item action: (item, stats) -> ItemOutcome | ItemResult | None
ItemAction = Callable[[Any, RunStatistics], Any]

# Errors that abort the run even when raised from a per-item action
FATAL_ERRORS = (AuthenticationError, DeadlineExceeded)


def chunk_list(lst: Sequence, chunk_size: int) -> List[List]:
    """Split a list into chunks of specified size."""
    if chunk_size < 1:
        raise ValueError(f"chunk_size must be >= 1, got {chunk_size}")
    return [list(lst[i:i + chunk_size]) for i in range(0, len(lst), chunk_size)]


def batch_count(total: int, batch_size: int) -> int:
    """Number of batches needed for ``total`` items."""
    return math.ceil(total / batch_size) if total else 0


def default_item_ref(item: Any) -> str:
    """Short identifier for an item in logs and error samples."""
    if isinstance(item, dict):
        for key in ('id', 'deviceName', 'userPrincipalName', 'displayName', 'name'):
            if item.get(key):
                return str(item[key])
    return str(item)[:80]


def _normalize_outcome(outcome: Any) -> ItemResult:
    if outcome is None:
        return ItemResult()
    if isinstance(outcome, ItemResult):
        return outcome
    if isinstance(outcome, ItemOutcome):
        return ItemResult(outcome)
    raise TypeError(f"Unsupported item outcome: {outcome!r}")


class BatchProcessor:
    """
    Runs a per-item action over a working set in delayed batches.

    Usage:
        processor = BatchProcessor(batch_size=50, delay_between_batches=10)
        stats = processor.process(devices, sync_device)
    """

    def __init__(
        self,
        batch_size: int = DEFAULT_BATCH_SIZE,
        delay_between_batches: float = DEFAULT_BATCH_DELAY,
        sleep: Callable[[float], None] = time.sleep,
        deadline: Optional[RunDeadline] = None,
        tracker: Optional[ProgressTracker] = None,
        item_ref: Callable[[Any], str] = default_item_ref,
    ):
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        if delay_between_batches < 0:
            raise ValueError(f"delay_between_batches must be >= 0, got {delay_between_batches}")
        self.batch_size = batch_size
        self.delay_between_batches = delay_between_batches
        self._sleep = sleep
        self.deadline = deadline
        self.tracker = tracker
        self.item_ref = item_ref

    def process(self, items: Iterable[Any], action: ItemAction,
                stats: Optional[RunStatistics] = None) -> RunStatistics:
        """
        Apply ``action`` to every item, batch by batch, in input order.

        Args:
            items: Working set
            action: Per-item callback ``(item, stats) -> outcome``
            stats: Statistics to accumulate into (new if omitted)

        Returns:
            The populated RunStatistics (not finalized)
        """
        stats = stats if stats is not None else RunStatistics()
        batches = chunk_list(list(items), self.batch_size)
        total_batches = len(batches)

        if total_batches:
            logger.info(
                f"Processing {sum(len(b) for b in batches):,} items in {total_batches} "
                f"batch(es) of up to {self.batch_size}"
            )

        for batch_number, batch in enumerate(batches, 1):
            if self.deadline is not None:
                self.deadline.check(f"starting batch {batch_number}/{total_batches}")

            logger.info(f"Batch {batch_number}/{total_batches}: {len(batch)} items")
            if self.tracker:
                self.tracker.start_batch(batch_number, total_batches, len(batch))

            summary = self._process_batch(batch_number, batch, action, stats)
            stats.add_batch(summary)
            if self.tracker:
                self.tracker.complete_batch()

            if batch_number < total_batches and self.delay_between_batches > 0:
                logger.info(f"Waiting {self.delay_between_batches}s before next batch...")
                self._sleep(self.delay_between_batches)

        return stats

    def _process_batch(self, batch_number: int, batch: List[Any], action: ItemAction,
                       stats: RunStatistics) -> BatchSummary:
        summary = BatchSummary(batch_number=batch_number, size=len(batch))
        started = time.monotonic()

        for item in batch:
            stats.increment(STAT_PROCESSED)
            try:
                result = _normalize_outcome(action(item, stats))
                # A rejected category fails the item before any outcome is counted
                if result.category:
                    stats.increment_category(result.category)
            except FATAL_ERRORS:
                raise
            except Exception as e:
                ref = self.item_ref(item)
                error = ItemProcessingError(f"Failed to process item {ref}: {e}",
                                            item_ref=ref, original_error=e)
                logger.warning(str(error))
                stats.record_error(ref, error)
                summary.errors += 1
            else:
                if result.outcome is ItemOutcome.SKIPPED:
                    stats.record_skip(result.reason or "unspecified")
                    summary.skipped += 1
                elif result.outcome is ItemOutcome.UPDATED:
                    stats.increment(STAT_UPDATED)
                    stats.increment(STAT_SUCCEEDED)
                    summary.updated += 1
                    summary.succeeded += 1
                else:
                    stats.increment(STAT_SUCCEEDED)
                    summary.succeeded += 1

            if self.tracker:
                self.tracker.advance()

        summary.duration_seconds = round(time.monotonic() - started, 3)
        return summary


def process_in_batches(
    items: Iterable[Any],
    batch_size: int,
    delay_between_batches: float,
    action: ItemAction,
    **kwargs,
) -> RunStatistics:
    """Functional form of BatchProcessor.process()."""
    processor = BatchProcessor(batch_size, delay_between_batches, **kwargs)
    return processor.process(items, action)
