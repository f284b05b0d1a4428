"""
Paginated collection over Graph-style list endpoints.

A list response carries its items under ``value`` and, when more pages
exist, a continuation URI under ``@odata.nextLink``. The cursor is treated
as opaque and requested as-is.
"""
import logging
from typing import Any, Iterator, List, Optional

from .constants import GRAPH_ITEMS_FIELD, GRAPH_NEXT_LINK_FIELD
from .deadline import RunDeadline
from .errors import PageFetchError, RequestError
from .executor import RequestSpec, ResilientRequestExecutor, RetryPolicy

logger = logging.getLogger(__name__)


class PagedCollector:
    """
    Follows continuation cursors until a list endpoint is exhausted.

    A failure on any page aborts the whole collection with PageFetchError;
    a partial working set is never returned.
    """

    def __init__(
        self,
        executor: ResilientRequestExecutor,
        items_field: str = GRAPH_ITEMS_FIELD,
        cursor_field: str = GRAPH_NEXT_LINK_FIELD,
        deadline: Optional[RunDeadline] = None,
    ):
        self.executor = executor
        self.items_field = items_field
        self.cursor_field = cursor_field
        self.deadline = deadline

    def iter_pages(self, initial_uri: str,
                   policy: Optional[RetryPolicy] = None) -> Iterator[List[Any]]:
        """Yield each page's item list in order."""
        uri: Optional[str] = initial_uri
        page_number = 0

        while uri:
            page_number += 1
            if self.deadline is not None and page_number > 1:
                self.deadline.check(f"fetching page {page_number}")

            try:
                response = self.executor.execute(RequestSpec('GET', uri), policy)
            except RequestError as e:
                logger.error(f"Failed to fetch page {page_number} of {initial_uri}: {e}")
                raise PageFetchError(page_number, e) from e

            body = response.body if isinstance(response.body, dict) else {}
            items = body.get(self.items_field) or []
            logger.debug(f"Page {page_number}: {len(items)} items")
            yield list(items)

            uri = body.get(self.cursor_field)

    def iter_items(self, initial_uri: str,
                   policy: Optional[RetryPolicy] = None) -> Iterator[Any]:
        """Yield items one at a time across all pages."""
        for page in self.iter_pages(initial_uri, policy):
            yield from page

    def collect_all(self, initial_uri: str,
                    policy: Optional[RetryPolicy] = None) -> List[Any]:
        """
        Fetch every page and return all items in server order.

        Args:
            initial_uri: First page URI
            policy: Retry policy applied to every page request

        Returns:
            List of all items from all pages

        Raises:
            PageFetchError: If any page fails
        """
        all_items: List[Any] = []
        pages = 0
        for page in self.iter_pages(initial_uri, policy):
            all_items.extend(page)
            pages += 1

        logger.info(f"Collected {len(all_items)} items across {pages} page(s)")
        return all_items
