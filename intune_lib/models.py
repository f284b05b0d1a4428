"""
Data models for Intune Graph runbooks.
"""
import time
from collections import Counter
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .constants import (
    MAX_ERROR_SAMPLES,
    SKIP_RECORD_PREFIX,
    STAT_COUNTERS,
    STAT_ERRORS,
    STAT_PROCESSED,
    STAT_SKIPPED,
    STAT_SUCCEEDED,
    STAT_UPDATED,
)
from .utils import get_timestamp


class ItemOutcome(str, Enum):
    """What a per-item action did."""
    SUCCEEDED = "succeeded"
    UPDATED = "updated"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class ItemResult:
    """
    Detailed per-item outcome.

    A per-item action may return a bare ItemOutcome, an ItemResult, or None
    (treated as SUCCEEDED).
    """
    outcome: ItemOutcome = ItemOutcome.SUCCEEDED
    reason: Optional[str] = None
    category: Optional[str] = None

    @classmethod
    def skipped(cls, reason: str, category: Optional[str] = None) -> 'ItemResult':
        return cls(ItemOutcome.SKIPPED, reason=reason, category=category)

    @classmethod
    def updated(cls, category: Optional[str] = None) -> 'ItemResult':
        return cls(ItemOutcome.UPDATED, category=category)


@dataclass
class BatchSummary:
    """Statistics for a single batch."""
    batch_number: int
    size: int
    succeeded: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0
    duration_seconds: float = 0.0

    def to_dict(self) -> Dict:
        """Convert to dictionary for serialization."""
        return asdict(self)


@dataclass
class RunStatistics:
    """
    Counters accumulated over one run.

    Owned by a single run and mutated from a single thread. Call finalize()
    once processing completes; after that the object is read-only.
    """
    processed: int = 0
    succeeded: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0

    skipped_by_reason: Counter = field(default_factory=Counter)
    categories: Counter = field(default_factory=Counter)
    batches: List[BatchSummary] = field(default_factory=list)
    error_samples: List[Dict[str, str]] = field(default_factory=list)

    started_at: str = field(default_factory=get_timestamp)
    completed_at: Optional[str] = None
    duration_seconds: Optional[float] = None

    _start_clock: float = field(default_factory=time.monotonic, repr=False, compare=False)
    _finalized: bool = field(default=False, repr=False, compare=False)

    @property
    def finalized(self) -> bool:
        return self._finalized

    def _check_mutable(self) -> None:
        if self._finalized:
            raise RuntimeError("RunStatistics is finalized and read-only")

    def increment(self, counter: str, by: int = 1) -> int:
        """Increment a named counter and return its new value."""
        if counter not in STAT_COUNTERS:
            raise KeyError(f"Unknown counter: {counter}")
        self._check_mutable()
        value = getattr(self, counter) + by
        setattr(self, counter, value)
        return value

    def increment_category(self, key: str, by: int = 1) -> int:
        """Increment a per-category counter, creating it on first use."""
        self._check_mutable()
        if key in _RESERVED_RECORD_KEYS or key.startswith(SKIP_RECORD_PREFIX):
            raise ValueError(f"Category key collides with a run record field: {key}")
        self.categories[key] += by
        return self.categories[key]

    def record_skip(self, reason: str) -> None:
        self.increment(STAT_SKIPPED)
        self.skipped_by_reason[reason or "unspecified"] += 1

    def record_error(self, item_ref: str, error: Exception) -> None:
        """Count an item failure and keep a bounded sample for the report."""
        self.increment(STAT_ERRORS)
        cause = getattr(error, 'original_error', None) or error
        if len(self.error_samples) < MAX_ERROR_SAMPLES:
            self.error_samples.append({
                'item': item_ref,
                'error_type': type(cause).__name__,
                'message': str(cause),
            })

    def add_batch(self, summary: BatchSummary) -> None:
        self._check_mutable()
        self.batches.append(summary)

    def finalize(self) -> 'RunStatistics':
        """Stamp completion time and make the statistics read-only."""
        if not self._finalized:
            self.completed_at = get_timestamp()
            self.duration_seconds = round(time.monotonic() - self._start_clock, 3)
            self._finalized = True
        return self

    def to_record(self) -> Dict[str, Any]:
        """
        Flat field -> value record returned as the run's result.

        Fixed counters first, then skip reasons as ``skipped_<reason>``,
        then category counters under their own keys.
        """
        record: Dict[str, Any] = {name: getattr(self, name) for name in STAT_COUNTERS}
        record['duration_seconds'] = self.duration_seconds
        for reason, count in sorted(self.skipped_by_reason.items()):
            record[f"{SKIP_RECORD_PREFIX}{reason}"] = count
        for key, count in sorted(self.categories.items()):
            record[key] = count
        return record

    def to_dict(self) -> Dict:
        """Full nested structure for JSON output."""
        return {
            STAT_PROCESSED: self.processed,
            STAT_SUCCEEDED: self.succeeded,
            STAT_UPDATED: self.updated,
            STAT_SKIPPED: self.skipped,
            STAT_ERRORS: self.errors,
            'skipped_by_reason': dict(self.skipped_by_reason),
            'categories': dict(self.categories),
            'batches': [b.to_dict() for b in self.batches],
            'error_samples': list(self.error_samples),
            'started_at': self.started_at,
            'completed_at': self.completed_at,
            'duration_seconds': self.duration_seconds,
        }


_RESERVED_RECORD_KEYS = frozenset(STAT_COUNTERS) | {'duration_seconds'}
