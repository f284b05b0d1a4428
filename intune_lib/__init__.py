"""
Intune Graph Runbooks shared library.
"""
# Import constants module for easy access
from . import constants
from .auth import TokenProvider, audience_to_scope, normalize_token, resolve_audience
from .batching import BatchProcessor, chunk_list, process_in_batches
from .config import RunConfig, load_config
from .constants import (
    AUDIENCE_GRAPH,
    AUDIENCE_LOG_ANALYTICS,
    AUDIENCE_STORAGE,
    DEFAULT_BATCH_DELAY,
    DEFAULT_BATCH_SIZE,
    DEFAULT_INITIAL_BACKOFF,
    DEFAULT_MAX_RETRIES,
    GRAPH_BASE_URL,
)
from .deadline import RunDeadline
from .errors import (
    AuthenticationError,
    ConfigError,
    DeadlineExceeded,
    ItemProcessingError,
    PageFetchError,
    RequestError,
    RunbookError,
    is_retryable_status,
)
from .executor import RequestSpec, ResilientRequestExecutor, Response, RetryPolicy
from .models import BatchSummary, ItemOutcome, ItemResult, RunStatistics
from .paging import PagedCollector
from .traversal import WalkResult, drive_children_uri, walk_tree
from .utils import (
    ProgressTracker,
    generate_run_id,
    get_timestamp,
    setup_logging,
    write_json,
)

__all__ = [
    # Constants
    'constants',
    'AUDIENCE_GRAPH',
    'AUDIENCE_STORAGE',
    'AUDIENCE_LOG_ANALYTICS',
    'GRAPH_BASE_URL',
    'DEFAULT_MAX_RETRIES',
    'DEFAULT_INITIAL_BACKOFF',
    'DEFAULT_BATCH_SIZE',
    'DEFAULT_BATCH_DELAY',
    # Auth
    'TokenProvider',
    'resolve_audience',
    'audience_to_scope',
    'normalize_token',
    # Requests
    'RequestSpec',
    'RetryPolicy',
    'Response',
    'ResilientRequestExecutor',
    'PagedCollector',
    # Batching
    'BatchProcessor',
    'chunk_list',
    'process_in_batches',
    # Models
    'RunStatistics',
    'BatchSummary',
    'ItemOutcome',
    'ItemResult',
    # Errors
    'RunbookError',
    'ConfigError',
    'AuthenticationError',
    'RequestError',
    'PageFetchError',
    'ItemProcessingError',
    'DeadlineExceeded',
    'is_retryable_status',
    # Config / run control
    'RunConfig',
    'load_config',
    'RunDeadline',
    # Traversal
    'WalkResult',
    'walk_tree',
    'drive_children_uri',
    # Utils
    'ProgressTracker',
    'generate_run_id',
    'get_timestamp',
    'setup_logging',
    'write_json',
]
