#!/usr/bin/env python3
"""
Intune Graph Runbooks - Device Sync Reminder

Finds Intune managed devices that have not checked in recently and sends
each of them a sync request through Microsoft Graph.

Requirements:
- Managed identity (Automation account or VM) with Microsoft Graph
  application permissions:
  - DeviceManagementManagedDevices.Read.All (list devices)
  - DeviceManagementManagedDevices.PrivilegedOperations.All (syncDevice)

Usage:
    # System-assigned managed identity, default policy
    python device_sync.py

    # Log what would be synced without sending anything
    python device_sync.py --dry-run

    # User-assigned identity, smaller batches
    python device_sync.py --client-id xxx --batch-size 25 --batch-delay 20

    # Local testing with az login / environment credentials
    python device_sync.py --credential default --dry-run
"""
import argparse
import json
import logging
import os
import sys
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from intune_lib.auth import TokenProvider
from intune_lib.batching import BatchProcessor
from intune_lib.config import RunConfig, generate_sample_config, load_config
from intune_lib.constants import (
    MANAGED_DEVICES_PATH,
    SKIP_NO_SYNC_TIMESTAMP,
    SKIP_RECENTLY_SYNCED,
    SYNC_DEVICE_ACTION,
)
from intune_lib.deadline import make_deadline
from intune_lib.errors import AuthenticationError, ConfigError, DeadlineExceeded, RequestError
from intune_lib.executor import ResilientRequestExecutor
from intune_lib.models import ItemResult, RunStatistics
from intune_lib.paging import PagedCollector
from intune_lib.utils import (
    ProgressTracker,
    generate_run_id,
    parse_graph_datetime,
    print_summary_table,
    setup_logging,
    write_json,
)

logger = logging.getLogger(__name__)

DEVICE_FIELDS = "id,deviceName,operatingSystem,lastSyncDateTime,userPrincipalName"


# =============================================================================
# Device Helpers
# =============================================================================

def managed_devices_uri(base_url: str) -> str:
    """List URI for managed devices with only the fields this runbook needs."""
    return f"{base_url.rstrip('/')}{MANAGED_DEVICES_PATH}?$select={DEVICE_FIELDS}"


def sync_device_uri(base_url: str, device_id: str) -> str:
    return f"{base_url.rstrip('/')}{MANAGED_DEVICES_PATH}/{device_id}/{SYNC_DEVICE_ACTION}"


def os_category(device: Dict[str, Any]) -> str:
    """Per-operating-system category key for run statistics."""
    return f"os_{device.get('operatingSystem') or 'Unknown'}"


def make_sync_action(
    executor: ResilientRequestExecutor,
    base_url: str,
    now: datetime,
    stale_days: int,
    dry_run: bool = False,
) -> Callable[[Dict[str, Any], RunStatistics], ItemResult]:
    """
    Build the per-device action for the batch processor.

    Devices with a last sync older than ``stale_days`` get a syncDevice
    call; everything else is skipped with a reason.
    """
    cutoff = now - timedelta(days=stale_days)

    def sync_device(device: Dict[str, Any], stats: RunStatistics) -> ItemResult:
        category = os_category(device)
        last_sync = parse_graph_datetime(device.get('lastSyncDateTime'))

        if last_sync is None:
            return ItemResult.skipped(SKIP_NO_SYNC_TIMESTAMP, category=category)
        if last_sync >= cutoff:
            return ItemResult.skipped(SKIP_RECENTLY_SYNCED, category=category)

        days_since = (now - last_sync).days
        name = device.get('deviceName') or device['id']
        if dry_run:
            logger.info(f"[dry run] Would sync {name} (last sync {days_since} days ago)")
        else:
            executor.post(sync_device_uri(base_url, device['id']))
            logger.debug(f"Sync requested for {name} (last sync {days_since} days ago)")
        return ItemResult.updated(category=category)

    return sync_device


# =============================================================================
# Run
# =============================================================================

def run_device_sync(
    run_config: RunConfig,
    token_provider: Optional[TokenProvider] = None,
    session=None,
    sleep: Callable[[float], None] = time.sleep,
    now: Optional[datetime] = None,
    show_progress: bool = True,
) -> RunStatistics:
    """
    Execute one device sync run and return its finalized statistics.

    Raises:
        AuthenticationError: Token could not be acquired
        PageFetchError: Device listing failed
        DeadlineExceeded: The configured run deadline ran out
    """
    now = now or datetime.now(timezone.utc)
    provider = token_provider or TokenProvider(
        credential_type=run_config.credential,
        client_id=run_config.client_id,
    )
    token = provider.acquire_token("graph")

    deadline = make_deadline(run_config.deadline_seconds)
    executor = ResilientRequestExecutor(
        token,
        session=session,
        default_policy=run_config.retry_policy,
        sleep=sleep,
        deadline=deadline,
    )
    collector = PagedCollector(executor, deadline=deadline)

    logger.info("Collecting Intune managed devices...")
    devices = collector.collect_all(managed_devices_uri(run_config.graph_base_url))
    logger.info(f"Found {len(devices):,} managed devices")

    action = make_sync_action(
        executor,
        run_config.graph_base_url,
        now,
        run_config.stale_days,
        dry_run=run_config.dry_run,
    )

    stats = RunStatistics()
    with ProgressTracker("Device sync", total_items=len(devices),
                         show_progress=show_progress) as tracker:
        processor = BatchProcessor(
            batch_size=run_config.batch_size,
            delay_between_batches=run_config.batch_delay,
            sleep=sleep,
            deadline=deadline,
            tracker=tracker,
        )
        processor.process(devices, action, stats)

    return stats.finalize()


# =============================================================================
# Main Entry Point
# =============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Intune Graph Runbooks - Device Sync Reminder',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python device_sync.py --dry-run
    python device_sync.py --stale-days 14 --batch-size 25
    python device_sync.py --config ./intune-config.yaml
    python device_sync.py --generate-config > intune-config.yaml

Environment variables (lowest priority):
    INTUNE_MI_CLIENT_ID, INTUNE_MAX_RETRIES, INTUNE_BATCH_SIZE,
    INTUNE_BATCH_DELAY, INTUNE_STALE_DAYS, INTUNE_DRY_RUN, ...
        """
    )
    parser.add_argument('--config', help='YAML config file')
    parser.add_argument('--credential', choices=['managed_identity', 'default'],
                        help='Identity to use (default: managed_identity)')
    parser.add_argument('--client-id',
                        help='Client ID of a user-assigned managed identity')
    parser.add_argument('--graph-base-url', help='Graph base URL (default: v1.0 endpoint)')
    parser.add_argument('--stale-days', type=int,
                        help='Sync devices not seen for this many days (default: 7)')
    parser.add_argument('--max-retries', type=int,
                        help='Retries for throttled/server errors (default: 5)')
    parser.add_argument('--initial-backoff', type=float,
                        help='First retry wait in seconds, doubled each retry (default: 5)')
    parser.add_argument('--batch-size', type=int, help='Devices per batch (default: 50)')
    parser.add_argument('--batch-delay', type=float,
                        help='Seconds to pause between batches (default: 10)')
    parser.add_argument('--deadline-seconds', type=float,
                        help='Abort the run after this many seconds')
    parser.add_argument('--dry-run', action='store_true',
                        help='Log devices that would be synced without syncing them')
    parser.add_argument('--output-dir', '-o', help='Output directory (default: ./runbook_output)')
    parser.add_argument('--log-level', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        help='Logging level (default: INFO)')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Enable verbose logging')
    parser.add_argument('--generate-config', action='store_true',
                        help='Print a sample config file and exit')
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    if args.generate_config:
        print(generate_sample_config())
        return 0

    if args.verbose:
        args.log_level = 'DEBUG'

    try:
        run_config = RunConfig.from_dict(load_config(args))
    except (ConfigError, FileNotFoundError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2

    setup_logging(run_config.log_level, run_config.output)
    run_id = generate_run_id()
    logger.info(f"Device sync run {run_id} (dry_run={run_config.dry_run})")

    try:
        stats = run_device_sync(run_config)
    except AuthenticationError as e:
        logger.error(f"Authentication failed: {e}")
        return 1
    except DeadlineExceeded as e:
        logger.error(f"Run aborted: {e}")
        return 1
    except RequestError as e:
        logger.error(f"Run aborted by request failure: {e}")
        return 1

    record = stats.to_record()
    print_summary_table(record, title="DEVICE SYNC SUMMARY")

    output: Dict[str, Any] = {
        'run_id': run_id,
        'dry_run': run_config.dry_run,
        'record': record,
        'details': stats.to_dict(),
    }
    write_json(output, os.path.join(run_config.output, f"device_sync_{run_id}.json"))

    # Machine-readable result for the scheduler
    print(json.dumps(record, default=str))
    return 0


if __name__ == '__main__':
    sys.exit(main())
