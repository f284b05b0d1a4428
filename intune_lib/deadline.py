"""
Overall wall-clock budget for a run.

Checked by the executor (between retries), the paged collector (between
pages) and the batch processor (between batches). Disabled unless configured.
"""
import logging
import time
from typing import Callable, Optional

from .errors import DeadlineExceeded

logger = logging.getLogger(__name__)


class RunDeadline:
    """Deadline measured from construction on a monotonic clock."""

    def __init__(self, seconds: float, clock: Callable[[], float] = time.monotonic):
        if seconds <= 0:
            raise ValueError(f"deadline must be positive, got {seconds}")
        self.seconds = seconds
        self._clock = clock
        self._expires_at = clock() + seconds

    def remaining(self) -> float:
        return max(0.0, self._expires_at - self._clock())

    def expired(self) -> bool:
        return self._clock() >= self._expires_at

    def check(self, context: str = "") -> None:
        """Raise DeadlineExceeded if the budget is spent."""
        if self.expired():
            where = f" while {context}" if context else ""
            logger.error(f"Run deadline of {self.seconds}s exceeded{where}")
            raise DeadlineExceeded(f"run deadline of {self.seconds}s exceeded{where}")

    def __repr__(self) -> str:
        return f"RunDeadline(seconds={self.seconds}, remaining={self.remaining():.1f})"


def make_deadline(seconds: Optional[float]) -> Optional[RunDeadline]:
    """Build a deadline from an optional config value (None/0 disables)."""
    if not seconds:
        return None
    return RunDeadline(float(seconds))
