"""
Error types shared by the runbook library.

Errors at or above the collection/authentication level are fatal to a run.
Per-item errors are caught by the batch processor and counted instead.
"""
from typing import Optional

from .constants import (
    STATUS_SERVER_ERROR_MAX,
    STATUS_SERVER_ERROR_MIN,
    STATUS_TOO_MANY_REQUESTS,
)


def is_retryable_status(status_code: Optional[int]) -> bool:
    """Return True for throttling (429) and server errors (5xx)."""
    if status_code is None:
        return False
    return (
        status_code == STATUS_TOO_MANY_REQUESTS
        or STATUS_SERVER_ERROR_MIN <= status_code <= STATUS_SERVER_ERROR_MAX
    )


class RunbookError(Exception):
    """Base class for all runbook library errors."""


class ConfigError(RunbookError, ValueError):
    """Invalid configuration value."""


class AuthenticationError(RunbookError):
    """Raised when a token could not be acquired or came back empty.

    Always fatal: the run aborts without retrying.
    """
    def __init__(self, message: str, audience: Optional[str] = None,
                 original_error: Optional[Exception] = None):
        self.audience = audience
        self.original_error = original_error
        super().__init__(message)


class RequestError(RunbookError):
    """An HTTP request failed.

    The retryable flag is decided once, where the response is received,
    so nothing downstream needs to inspect message text.
    """
    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        method: str = "",
        uri: str = "",
        retryable: Optional[bool] = None,
        retry_after: Optional[float] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.method = method
        self.uri = uri
        self.retryable = is_retryable_status(status_code) if retryable is None else retryable
        self.retry_after = retry_after
        super().__init__(message)

    def __str__(self) -> str:
        status = self.status_code if self.status_code is not None else "no status"
        return f"{self.method} {self.uri} failed ({status}): {self.message}"


class PageFetchError(RequestError):
    """A page of a paginated collection could not be fetched.

    The collection is abandoned; no partial results are returned.
    """
    def __init__(self, page_number: int, cause: RequestError):
        self.page_number = page_number
        super().__init__(
            f"page {page_number}: {cause.message}",
            status_code=cause.status_code,
            method=cause.method,
            uri=cause.uri,
            retryable=cause.retryable,
            retry_after=cause.retry_after,
        )


class ItemProcessingError(RunbookError):
    """Wraps an exception raised while handling a single batch item."""
    def __init__(self, message: str, item_ref: str = "",
                 original_error: Optional[Exception] = None):
        self.item_ref = item_ref
        self.original_error = original_error
        super().__init__(message)


class DeadlineExceeded(RunbookError):
    """The run's overall time budget ran out."""
