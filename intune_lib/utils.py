"""
Utility functions for Intune Graph runbooks.

Logging Level Standards:
------------------------
- ERROR: Failures that abort the run
         "Failed to fetch page 3 of .../managedDevices: ..."
- WARNING: Retries and per-item failures that the run survives
           "Retry 2/5 for GET ... in 10s (status=429)"
           "Failed to process device {id}: {e}"
- INFO: Progress messages, counts
        "Collected 1,204 items across 13 page(s)"
        "Batch 3/25: 50 items"
- DEBUG: Per-item detail
         "Would sync device {id} (dry run)"
"""
import hashlib
import json
import logging
import os
import re
import sys
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

logger = logging.getLogger(__name__)


# =============================================================================
# Progress Tracking
# =============================================================================

class ProgressTracker:
    """
    Progress tracker for batch runs with rich display.

    Falls back to simple print statements if stderr is not a TTY
    (e.g., when running under a scheduler or piping output).

    Usage:
        with ProgressTracker("Device sync", total_items=len(devices)) as tracker:
            for batch_number, batch in enumerate(batches, 1):
                tracker.start_batch(batch_number, len(batches), len(batch))
                for device in batch:
                    ...
                    tracker.advance()
    """

    def __init__(self, title: str, total_items: int = 0, show_progress: bool = True):
        self.title = title
        self.total_items = total_items
        self.show_progress = show_progress and sys.stderr.isatty()

        self.completed_items = 0
        self.completed_batches = 0
        self.total_batches = 0
        self.current_batch = 0

        self._console: Optional[Console] = None
        self._progress: Optional[Progress] = None
        self._main_task: Optional[TaskID] = None
        self._use_rich = self.show_progress

    def __enter__(self):
        if self._use_rich:
            self._console = Console(stderr=True)
            self._progress = Progress(
                SpinnerColumn(),
                TextColumn("[bold blue]{task.description}"),
                BarColumn(),
                MofNCompleteColumn(),
                TimeElapsedColumn(),
                console=self._console,
                transient=False,
            )
            self._main_task = self._progress.add_task(self.title, total=self.total_items or 1)
            self._progress.start()
        else:
            print(f"\n{'='*60}", file=sys.stderr)
            print(f"{self.title} Starting", file=sys.stderr)
            print(f"{'='*60}", file=sys.stderr)
            if self.total_items:
                print(f"Items: {self.total_items:,}", file=sys.stderr)
            print(file=sys.stderr)

        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._use_rich:
            assert self._progress is not None
            assert self._console is not None
            self._progress.stop()
            self._console.print()
            self._print_summary_rich()
        else:
            self._print_summary_plain()
        return False

    def start_batch(self, batch_number: int, total_batches: int, size: int):
        """Mark the start of a batch."""
        self.current_batch = batch_number
        self.total_batches = total_batches
        if self._use_rich:
            assert self._progress is not None
            assert self._main_task is not None
            self._progress.update(
                self._main_task,
                description=f"{self.title} [batch {batch_number}/{total_batches}]"
            )
        else:
            print(f"  [batch {batch_number}/{total_batches}] {size} items...", file=sys.stderr)

    def advance(self, count: int = 1):
        """Record processed items."""
        self.completed_items += count
        if self._use_rich:
            assert self._progress is not None
            assert self._main_task is not None
            self._progress.update(self._main_task, advance=count)

    def complete_batch(self):
        """Mark the current batch as complete."""
        self.completed_batches += 1
        if not self._use_rich:
            print(f"  [batch {self.current_batch}/{self.total_batches}] Complete - "
                  f"Running total: {self.completed_items:,} items", file=sys.stderr)

    def _print_summary_rich(self):
        table = Table(title=f"{self.title} Summary", show_header=False)
        table.add_column("Metric", style="cyan")
        table.add_column("Value", style="green")
        table.add_row("Batches", str(self.completed_batches))
        table.add_row("Items", f"{self.completed_items:,}")

        assert self._console is not None
        self._console.print(Panel(table))

    def _print_summary_plain(self):
        print(f"\n{'='*60}", file=sys.stderr)
        print(f"{self.title} Complete", file=sys.stderr)
        print(f"{'='*60}", file=sys.stderr)
        print(f"  Batches: {self.completed_batches}", file=sys.stderr)
        print(f"  Items:   {self.completed_items:,}", file=sys.stderr)
        print(file=sys.stderr)


def generate_run_id() -> str:
    """Generate a unique run ID."""
    return f"{datetime.now(timezone.utc).strftime('%Y%m%d-%H%M%S')}-{str(uuid.uuid4())[:8]}"


def get_timestamp() -> str:
    """Get current UTC timestamp in ISO format."""
    return datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z')


def parse_graph_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse a Graph ISO-8601 timestamp (``2024-05-01T10:00:00Z``) to an aware datetime.

    Graph reports "never" as 0001-01-01T00:00:00Z; that is returned as None.
    """
    if not value:
        return None
    text = value.replace('Z', '+00:00')
    # Graph may send 1-7 fractional digits; fromisoformat wants exactly 6
    text = re.sub(r'\.(\d+)', lambda m: '.' + m.group(1)[:6].ljust(6, '0'), text, count=1)
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    if parsed.year <= 1:
        return None
    return parsed


def hash_sensitive_id(value: str, prefix: str = "") -> str:
    """
    Hash a sensitive ID using consistent hashing.

    Uses first 8 chars of SHA256 so the same ID always maps to the same
    value, allowing correlation across a log file.

    Example: 0f8fad5b-d9cb-469f-a165-70867728950e -> id-3a1f9c20
    """
    if not value:
        return value
    hash_val = hashlib.sha256(value.encode()).hexdigest()[:8]
    return f"{prefix}{hash_val}" if prefix else hash_val


# Patterns for redacting sensitive data in log messages
_LOG_REDACT_PATTERNS = [
    # Bearer tokens (never hashed, just dropped)
    (re.compile(r'(Bearer\s+)[A-Za-z0-9\-_\.=~+/]+', re.IGNORECASE),
     lambda m: f"{m.group(1)}***"),
    # Bare JWTs
    (re.compile(r'\beyJ[A-Za-z0-9\-_]+\.[A-Za-z0-9\-_]+\.[A-Za-z0-9\-_]*'),
     lambda m: "***"),
    # Email addresses / UPNs
    (re.compile(r'\b([A-Za-z0-9._%+\-]+)@([A-Za-z0-9.\-]+\.[A-Za-z]{2,})\b'),
     lambda m: f"upn-{hash_sensitive_id(m.group(0).lower())}@{m.group(2)}"),
    # GUIDs (device, user, tenant IDs)
    (re.compile(r'\b([0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12})\b', re.IGNORECASE),
     lambda m: f"id-{hash_sensitive_id(m.group(1).lower())}"),
]


def redact_log_message(message: str) -> str:
    """Redact tokens and hash identifiers in a log message."""
    if not message:
        return message

    for pattern, replacer in _LOG_REDACT_PATTERNS:
        message = pattern.sub(replacer, message)

    return message


class RedactingFilter(logging.Filter):
    """
    Logging filter that redacts sensitive data from log messages.

    Uses consistent hashing so the same ID produces the same hash,
    allowing correlation within a log file.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        """Redact sensitive data from the log record message."""
        if record.msg:
            record.msg = redact_log_message(str(record.msg))
        if record.args:
            record.args = tuple(
                redact_log_message(str(arg)) if isinstance(arg, str) else arg
                for arg in record.args
            )
        return True


def setup_logging(level: str = "INFO", output_dir: Optional[str] = None,
                  redact_console: bool = True) -> logging.Logger:
    """
    Setup logging configuration with console and optional file output.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        output_dir: If provided, also write logs to a file in this directory
        redact_console: Apply the redacting filter to console output as well

    Returns:
        Logger instance
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    formatter = logging.Formatter(
        '%(asctime)s - %(levelname)s - %(name)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    # Clear existing handlers to avoid duplicates
    root_logger.handlers.clear()

    # Console handler (stderr; stdout carries the run result)
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(formatter)
    if redact_console:
        console_handler.addFilter(RedactingFilter())
    root_logger.addHandler(console_handler)

    if output_dir:
        os.makedirs(output_dir, exist_ok=True)
        timestamp = datetime.now(timezone.utc).strftime('%Y%m%d_%H%M%S')
        log_file = os.path.join(output_dir, f"runbook_log_{timestamp}.log")

        file_handler = logging.FileHandler(log_file, mode='w')
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(formatter)
        file_handler.addFilter(RedactingFilter())
        root_logger.addHandler(file_handler)

        root_logger.info(f"Logging to: {log_file}")

    return logging.getLogger(__name__)


def write_json(data: Any, filepath: str) -> None:
    """Write data to JSON file with owner-only permissions."""
    fd = os.open(filepath, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, 'w') as f:
        json.dump(data, f, indent=2, default=str)
    logger.info(f"Wrote {filepath}")


def print_summary_table(record: Dict[str, Any], title: str = "RUN SUMMARY") -> None:
    """Print a flat run record as a two-column table on stderr."""
    print("\n" + "="*60, file=sys.stderr)
    print(title, file=sys.stderr)
    print("="*60, file=sys.stderr)
    print(f"{'Field':<40} {'Value':>17}", file=sys.stderr)
    print("-"*60, file=sys.stderr)
    for key, value in record.items():
        if isinstance(value, float):
            value = f"{value:,.2f}"
        elif isinstance(value, int):
            value = f"{value:,}"
        print(f"{key:<40} {str(value):>17}", file=sys.stderr)
    print("="*60 + "\n", file=sys.stderr)
