"""
Constants for Intune Graph runbooks.

This module defines all magic strings and numbers used across the codebase
to prevent typos, ensure consistency, and make maintenance easier.
"""

# =============================================================================
# Resource Audiences
# =============================================================================

AUDIENCE_GRAPH = "https://graph.microsoft.com"
AUDIENCE_STORAGE = "https://storage.azure.com"
AUDIENCE_LOG_ANALYTICS = "https://api.loganalytics.io"

# Short names accepted in config and on the command line
AUDIENCE_ALIASES = {
    "graph": AUDIENCE_GRAPH,
    "storage": AUDIENCE_STORAGE,
    "loganalytics": AUDIENCE_LOG_ANALYTICS,
    "log_analytics": AUDIENCE_LOG_ANALYTICS,
}

DEFAULT_SCOPE_SUFFIX = "/.default"

# Credential types understood by the token provider
CREDENTIAL_MANAGED_IDENTITY = "managed_identity"
CREDENTIAL_DEFAULT = "default"

# =============================================================================
# Microsoft Graph
# =============================================================================

GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"

# Paged list responses
GRAPH_ITEMS_FIELD = "value"
GRAPH_NEXT_LINK_FIELD = "@odata.nextLink"

# Intune
MANAGED_DEVICES_PATH = "/deviceManagement/managedDevices"
SYNC_DEVICE_ACTION = "syncDevice"

# =============================================================================
# HTTP
# =============================================================================

CONTENT_TYPE_JSON = "application/json"
HEADER_RETRY_AFTER = "Retry-After"

STATUS_TOO_MANY_REQUESTS = 429
# Statuses >= this are server errors
STATUS_SERVER_ERROR_MIN = 500
STATUS_SERVER_ERROR_MAX = 599

METHODS_WITH_BODY = frozenset({"POST", "PUT", "PATCH"})

# (connect, read) timeouts in seconds
DEFAULT_REQUEST_TIMEOUT = (10.0, 60.0)

# =============================================================================
# Default Configuration Values
# =============================================================================

DEFAULT_MAX_RETRIES = 5
DEFAULT_INITIAL_BACKOFF = 5.0
DEFAULT_BATCH_SIZE = 50
DEFAULT_BATCH_DELAY = 10.0
DEFAULT_STALE_DAYS = 7

# Error samples kept in run statistics
MAX_ERROR_SAMPLES = 100

# Tree walk caps
DEFAULT_WALK_MAX_NODES = 5000
DEFAULT_WALK_MAX_ITEMS = 100000

# =============================================================================
# Run Statistics Fields
# =============================================================================

STAT_PROCESSED = "processed"
STAT_SUCCEEDED = "succeeded"
STAT_UPDATED = "updated"
STAT_SKIPPED = "skipped"
STAT_ERRORS = "errors"

STAT_COUNTERS = (
    STAT_PROCESSED,
    STAT_SUCCEEDED,
    STAT_UPDATED,
    STAT_SKIPPED,
    STAT_ERRORS,
)

# Skip reasons appear in the flat run record under this prefix
SKIP_RECORD_PREFIX = "skipped_"

# Skip reasons used by the device sync runbook
SKIP_RECENTLY_SYNCED = "recently_synced"
SKIP_NO_SYNC_TIMESTAMP = "no_sync_timestamp"
