"""
Intune Graph Runbooks - Configuration Management

Supports loading configuration from:
1. YAML config file (--config)
2. Environment variables (INTUNE_*)
3. Command-line arguments (highest priority)

Config file example:
```yaml
log_level: INFO
output: "./runbook_output"
dry_run: false

identity:
  credential: managed_identity
  client_id: ${INTUNE_MI_CLIENT_ID}  # env var substitution

retry:
  max_retries: 5
  initial_backoff: 5

batch:
  size: 50
  delay: 10
```
"""
import logging
import os
import re
import stat
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .constants import (
    CREDENTIAL_DEFAULT,
    CREDENTIAL_MANAGED_IDENTITY,
    DEFAULT_BATCH_DELAY,
    DEFAULT_BATCH_SIZE,
    DEFAULT_INITIAL_BACKOFF,
    DEFAULT_MAX_RETRIES,
    DEFAULT_STALE_DAYS,
    GRAPH_BASE_URL,
)
from .errors import ConfigError
from .executor import RetryPolicy

logger = logging.getLogger(__name__)


# Default config file locations (checked in order)
DEFAULT_CONFIG_PATHS = [
    './intune-config.yaml',
    './intune-config.yml',
    '~/.intune/config.yaml',
    '~/.intune/config.yml',
]

# Mapping from config keys to env vars
ENV_VAR_MAPPING = {
    'log_level': 'INTUNE_LOG_LEVEL',
    'output': 'INTUNE_OUTPUT',
    'dry_run': 'INTUNE_DRY_RUN',
    'deadline_seconds': 'INTUNE_DEADLINE_SECONDS',
    'identity.credential': 'INTUNE_CREDENTIAL',
    'identity.client_id': 'INTUNE_MI_CLIENT_ID',
    'graph.base_url': 'INTUNE_GRAPH_BASE_URL',
    'retry.max_retries': 'INTUNE_MAX_RETRIES',
    'retry.initial_backoff': 'INTUNE_INITIAL_BACKOFF',
    'batch.size': 'INTUNE_BATCH_SIZE',
    'batch.delay': 'INTUNE_BATCH_DELAY',
    'sync.stale_days': 'INTUNE_STALE_DAYS',
}

_BOOL_KEYS = ('dry_run',)
_INT_KEYS = ('retry.max_retries', 'batch.size', 'sync.stale_days')
_FLOAT_KEYS = ('retry.initial_backoff', 'batch.delay', 'deadline_seconds')


def _substitute_env_vars(value: Any) -> Any:
    """Substitute ${ENV_VAR} patterns in string values."""
    if isinstance(value, str):
        # Pattern: ${VAR_NAME} or ${VAR_NAME:-default}
        pattern = r'\$\{([^}:]+)(?::-([^}]*))?\}'

        def replace(match):
            var_name = match.group(1)
            default = match.group(2) or ''
            return os.environ.get(var_name, default)

        return re.sub(pattern, replace, value)
    elif isinstance(value, dict):
        return {k: _substitute_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [_substitute_env_vars(item) for item in value]
    return value


def _get_nested(data: Dict, key_path: str, default: Any = None) -> Any:
    """Get a nested value from a dict using dot notation."""
    keys = key_path.split('.')
    value = data
    for key in keys:
        if isinstance(value, dict) and key in value:
            value = value[key]
        else:
            return default
    return value


def _set_nested(data: Dict, key_path: str, value: Any) -> None:
    """Set a nested value in a dict using dot notation."""
    keys = key_path.split('.')
    for key in keys[:-1]:
        data = data.setdefault(key, {})
    data[keys[-1]] = value


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ('true', '1', 'yes', 'on')


def load_config_file(config_path: str) -> Dict[str, Any]:
    """Load configuration from a YAML file."""
    path = Path(config_path).expanduser()

    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    # Warn if config file has loose permissions
    file_mode = path.stat().st_mode
    if file_mode & (stat.S_IRWXG | stat.S_IRWXO):
        logger.warning(f"Config file {config_path} has loose permissions. "
                       f"Consider: chmod 600 {config_path}")

    logger.info(f"Loading config from {path}")

    try:
        with open(path) as f:
            config = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e

    if not isinstance(config, dict):
        raise ConfigError(f"Config file {config_path} must contain a mapping")

    return _substitute_env_vars(config)


def find_default_config() -> Optional[str]:
    """Find a config file in default locations."""
    for path in DEFAULT_CONFIG_PATHS:
        expanded = Path(path).expanduser()
        if expanded.exists():
            return str(expanded)
    return None


def load_env_config() -> Dict[str, Any]:
    """Load configuration from environment variables."""
    config: Dict[str, Any] = {}

    for config_key, env_var in ENV_VAR_MAPPING.items():
        value = os.environ.get(env_var)
        if value is not None:
            if config_key in _BOOL_KEYS:
                value = _parse_bool(value)
            _set_nested(config, config_key, value)

    return config


def merge_configs(*configs: Dict[str, Any]) -> Dict[str, Any]:
    """Merge multiple config dicts. Later configs override earlier ones."""
    result: Dict[str, Any] = {}

    for config in configs:
        for key, value in config.items():
            if isinstance(value, dict) and isinstance(result.get(key), dict):
                result[key] = merge_configs(result[key], value)
            elif value is not None:
                result[key] = value

    return result


def args_to_config(args) -> Dict[str, Any]:
    """Convert argparse args to config dict format."""
    config: Dict[str, Any] = {}

    arg_mapping = {
        'log_level': 'log_level',
        'output_dir': 'output',
        'dry_run': 'dry_run',
        'deadline_seconds': 'deadline_seconds',
        'credential': 'identity.credential',
        'client_id': 'identity.client_id',
        'graph_base_url': 'graph.base_url',
        'max_retries': 'retry.max_retries',
        'initial_backoff': 'retry.initial_backoff',
        'batch_size': 'batch.size',
        'batch_delay': 'batch.delay',
        'stale_days': 'sync.stale_days',
    }

    for arg_name, config_key in arg_mapping.items():
        value = getattr(args, arg_name, None)
        # store_true flags default to False; only an explicit True overrides
        if value is None or value is False:
            continue
        _set_nested(config, config_key, value)

    return config


def load_config(args) -> Dict[str, Any]:
    """
    Load configuration from all sources and merge them.

    Priority (highest to lowest):
    1. CLI arguments
    2. Config file (--config or default location)
    3. Environment variables

    Returns merged config dict.
    """
    configs = []

    env_config = load_env_config()
    if env_config:
        logger.debug("Loaded config from environment variables")
        configs.append(env_config)

    config_path = getattr(args, 'config', None)
    if config_path:
        configs.append(load_config_file(config_path))
    else:
        default_config = find_default_config()
        if default_config:
            logger.info(f"Found default config file: {default_config}")
            configs.append(load_config_file(default_config))

    configs.append(args_to_config(args))

    return merge_configs(*configs)


def _coerce(config: Dict[str, Any], key_path: str, default: Any, cast) -> Any:
    value = _get_nested(config, key_path, None)
    if value is None or value == '':
        return default
    try:
        return cast(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid value for {key_path}: {value!r}") from e


@dataclass(frozen=True)
class RunConfig:
    """Typed, validated settings for a single runbook run."""
    log_level: str = "INFO"
    output: str = "./runbook_output"
    dry_run: bool = False
    deadline_seconds: Optional[float] = None
    credential: str = CREDENTIAL_MANAGED_IDENTITY
    client_id: Optional[str] = None
    graph_base_url: str = GRAPH_BASE_URL
    max_retries: int = DEFAULT_MAX_RETRIES
    initial_backoff: float = DEFAULT_INITIAL_BACKOFF
    batch_size: int = DEFAULT_BATCH_SIZE
    batch_delay: float = DEFAULT_BATCH_DELAY
    stale_days: int = DEFAULT_STALE_DAYS

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> 'RunConfig':
        """Build from a merged config dict, applying defaults and validation."""
        run_config = cls(
            log_level=str(config.get('log_level') or "INFO").upper(),
            output=str(config.get('output') or "./runbook_output"),
            dry_run=_parse_bool(config.get('dry_run', False)),
            deadline_seconds=_coerce(config, 'deadline_seconds', None, float),
            credential=str(_get_nested(config, 'identity.credential') or CREDENTIAL_MANAGED_IDENTITY),
            client_id=_get_nested(config, 'identity.client_id') or None,
            graph_base_url=str(_get_nested(config, 'graph.base_url') or GRAPH_BASE_URL).rstrip('/'),
            max_retries=_coerce(config, 'retry.max_retries', DEFAULT_MAX_RETRIES, int),
            initial_backoff=_coerce(config, 'retry.initial_backoff', DEFAULT_INITIAL_BACKOFF, float),
            batch_size=_coerce(config, 'batch.size', DEFAULT_BATCH_SIZE, int),
            batch_delay=_coerce(config, 'batch.delay', DEFAULT_BATCH_DELAY, float),
            stale_days=_coerce(config, 'sync.stale_days', DEFAULT_STALE_DAYS, int),
        )
        run_config.validate()
        return run_config

    def validate(self) -> None:
        if self.credential not in (CREDENTIAL_MANAGED_IDENTITY, CREDENTIAL_DEFAULT):
            raise ConfigError(f"Unknown credential type: {self.credential}")
        if self.max_retries < 0:
            raise ConfigError(f"retry.max_retries must be >= 0, got {self.max_retries}")
        if self.initial_backoff <= 0:
            raise ConfigError(f"retry.initial_backoff must be > 0, got {self.initial_backoff}")
        if self.batch_size < 1:
            raise ConfigError(f"batch.size must be >= 1, got {self.batch_size}")
        if self.batch_delay < 0:
            raise ConfigError(f"batch.delay must be >= 0, got {self.batch_delay}")
        if self.stale_days < 0:
            raise ConfigError(f"sync.stale_days must be >= 0, got {self.stale_days}")
        if self.deadline_seconds is not None and self.deadline_seconds < 0:
            raise ConfigError(f"deadline_seconds must be >= 0, got {self.deadline_seconds}")

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(max_retries=self.max_retries, initial_backoff=self.initial_backoff)


def generate_sample_config() -> str:
    """Generate a sample config file content."""
    return '''# Intune Graph Runbooks Configuration
#
# Environment variable substitution supported:
#   ${VAR_NAME}           - required env var
#   ${VAR_NAME:-default}  - env var with default value

# =============================================================================
# Common Settings
# =============================================================================

# Logging level: DEBUG, INFO, WARNING, ERROR
log_level: INFO

# Output directory for run results and log files
output: "./runbook_output"

# Log intended changes without sending them
dry_run: false

# Stop the run after this many seconds (0 or unset disables)
# deadline_seconds: 10800


# =============================================================================
# Identity
# =============================================================================
identity:
  # managed_identity (Automation account identity) or default (DefaultAzureCredential)
  credential: managed_identity

  # Client ID of a user-assigned managed identity (omit for system-assigned)
  # client_id: ${INTUNE_MI_CLIENT_ID}


# =============================================================================
# Request Retry Policy (429 / 5xx)
# =============================================================================
retry:
  # Retries after the first attempt
  max_retries: 5

  # Wait before the first retry, doubled on each subsequent retry (seconds)
  initial_backoff: 5


# =============================================================================
# Batching
# =============================================================================
batch:
  # Items per batch
  size: 50

  # Pause between batches (seconds)
  delay: 10


# =============================================================================
# Device Sync Runbook (device_sync.py)
# =============================================================================
sync:
  # Devices whose last check-in is older than this are sent a sync
  stale_days: 7
'''
