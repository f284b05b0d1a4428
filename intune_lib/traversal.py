"""
Bounded breadth-first traversal of hierarchical Graph resources
(SharePoint/OneDrive folders, nested groups).

Uses an explicit work queue instead of recursion, with hard caps on the
number of containers visited, items collected and elapsed time.
"""
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

from .constants import DEFAULT_WALK_MAX_ITEMS, DEFAULT_WALK_MAX_NODES, GRAPH_BASE_URL
from .deadline import RunDeadline
from .paging import PagedCollector

logger = logging.getLogger(__name__)

TRUNCATED_MAX_NODES = "max_nodes"
TRUNCATED_MAX_ITEMS = "max_items"
TRUNCATED_TIMEOUT = "timeout"


@dataclass
class WalkResult:
    """Items found by walk_tree and whether a cap cut the walk short."""
    items: List[Any] = field(default_factory=list)
    nodes_visited: int = 0
    truncated: bool = False
    truncation_reason: Optional[str] = None


def drive_children_uri(item: dict, base_url: str = GRAPH_BASE_URL) -> Optional[str]:
    """Children URI for a driveItem that is a folder, else None."""
    if 'folder' not in item:
        return None
    drive_id = (item.get('parentReference') or {}).get('driveId')
    if not drive_id or not item.get('id'):
        return None
    return f"{base_url.rstrip('/')}/drives/{drive_id}/items/{item['id']}/children"


def walk_tree(
    collector: PagedCollector,
    root_uri: str,
    child_uri_for: Callable[[Any], Optional[str]] = drive_children_uri,
    max_nodes: int = DEFAULT_WALK_MAX_NODES,
    max_items: int = DEFAULT_WALK_MAX_ITEMS,
    deadline: Optional[RunDeadline] = None,
) -> WalkResult:
    """
    Walk a container hierarchy breadth-first.

    Each container URI is fully paginated; every returned item is kept, and
    items for which ``child_uri_for`` returns a URI are queued as containers.

    Args:
        collector: PagedCollector used for each container listing
        root_uri: Listing URI of the root container
        child_uri_for: Maps an item to its children listing URI, or None for leaves
        max_nodes: Maximum containers to list
        max_items: Maximum items to collect
        deadline: Optional time budget for the walk

    Returns:
        WalkResult; page failures propagate as PageFetchError
    """
    result = WalkResult()
    queue = deque([root_uri])

    while queue:
        if result.nodes_visited >= max_nodes:
            return _truncate(result, TRUNCATED_MAX_NODES, len(queue))
        if deadline is not None and deadline.expired():
            return _truncate(result, TRUNCATED_TIMEOUT, len(queue))

        uri = queue.popleft()
        result.nodes_visited += 1

        for item in collector.iter_items(uri):
            if len(result.items) >= max_items:
                return _truncate(result, TRUNCATED_MAX_ITEMS, len(queue))
            result.items.append(item)
            child_uri = child_uri_for(item)
            if child_uri:
                queue.append(child_uri)

    logger.info(f"Walked {result.nodes_visited} containers, {len(result.items)} items")
    return result


def _truncate(result: WalkResult, reason: str, pending: int) -> WalkResult:
    result.truncated = True
    result.truncation_reason = reason
    logger.warning(
        f"Tree walk stopped at {reason} cap: {result.nodes_visited} containers, "
        f"{len(result.items)} items, {pending} containers not visited"
    )
    return result
