"""
Resilient HTTP request execution for Graph, Storage and SharePoint calls.

Every call goes through ResilientRequestExecutor.execute():
- 2xx responses are parsed and returned; an unparseable body is a
  non-retryable RequestError.
- 429 and 5xx are retried with exponential backoff (initial * 2^(n-1)),
  honouring a numeric Retry-After header for that single attempt.
- Anything else is raised immediately.

Retries block the calling thread; a run issues one request at a time.
"""
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional

import requests
from tenacity import (
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    stop_any,
    wait_exponential,
)
from tenacity.wait import wait_base

from .constants import (
    CONTENT_TYPE_JSON,
    DEFAULT_INITIAL_BACKOFF,
    DEFAULT_MAX_RETRIES,
    DEFAULT_REQUEST_TIMEOUT,
    HEADER_RETRY_AFTER,
    METHODS_WITH_BODY,
)
from .deadline import RunDeadline
from .errors import RequestError

logger = logging.getLogger(__name__)

# Longest error body kept in a RequestError message
_MAX_ERROR_TEXT = 400


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff settings."""
    max_retries: int = DEFAULT_MAX_RETRIES
    initial_backoff: float = DEFAULT_INITIAL_BACKOFF

    def __post_init__(self):
        if isinstance(self.max_retries, bool) or not isinstance(self.max_retries, int):
            raise ValueError(f"max_retries must be an integer, got {self.max_retries!r}")
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.initial_backoff <= 0:
            raise ValueError(f"initial_backoff must be > 0, got {self.initial_backoff}")

    def backoff_for(self, retry_number: int) -> float:
        """Computed wait before the given 1-indexed retry."""
        return self.initial_backoff * 2 ** (retry_number - 1)


@dataclass(frozen=True)
class RequestSpec:
    """A single request. Build a new one instead of mutating."""
    method: str
    uri: str
    body: Any = None
    content_type: str = CONTENT_TYPE_JSON
    headers: Mapping[str, str] = field(default_factory=dict)
    retry_policy: Optional[RetryPolicy] = None

    def __post_init__(self):
        object.__setattr__(self, 'method', self.method.upper())


@dataclass
class Response:
    """Parsed response of a successful request."""
    status_code: int
    headers: Mapping[str, str] = field(default_factory=dict)
    body: Any = None

    def json(self) -> Any:
        return self.body


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a numeric Retry-After header into seconds, or None."""
    if value is None:
        return None
    try:
        seconds = float(str(value).strip())
    except ValueError:
        logger.debug(f"Ignoring non-numeric Retry-After value: {value!r}")
        return None
    if seconds < 0:
        return None
    return seconds


def _extract_error_message(response) -> str:
    """Pull the Graph error message out of a failed response."""
    try:
        payload = response.json()
    except ValueError:
        payload = None

    if isinstance(payload, dict):
        error = payload.get('error')
        if isinstance(error, dict):
            code = error.get('code')
            message = error.get('message') or ''
            return f"{code}: {message}" if code else message
        if isinstance(error, str):
            return error

    text = getattr(response, 'text', '') or ''
    return text[:_MAX_ERROR_TEXT] if text else (getattr(response, 'reason', '') or 'request failed')


def _parse_body(response) -> Any:
    if response.status_code == 204 or not response.content:
        return None
    content_type = response.headers.get('Content-Type', '') or ''
    if 'json' in content_type.lower():
        return response.json()
    return response.text


class wait_retry_after_or_exponential(wait_base):
    """
    Wait for the server's Retry-After hint when the last error carries one,
    otherwise initial * 2^(attempt-1).

    The exponential value is derived from the attempt number, so a hint on
    one attempt does not shift the sequence for later attempts. With a
    deadline, no wait extends past it.
    """

    def __init__(self, initial_backoff: float, deadline: Optional[RunDeadline] = None):
        self.exponential = wait_exponential(multiplier=initial_backoff, exp_base=2)
        self.deadline = deadline

    def __call__(self, retry_state) -> float:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        hint = getattr(exc, 'retry_after', None)
        wait = hint if hint is not None else self.exponential(retry_state)
        if self.deadline is not None:
            wait = min(wait, self.deadline.remaining())
        return wait


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, RequestError) and exc.retryable


class ResilientRequestExecutor:
    """
    Issues authenticated requests with a bounded retry policy.

    The bearer token is fixed for the executor's lifetime and never logged.

    Usage:
        executor = ResilientRequestExecutor(token)
        devices = executor.get("https://graph.microsoft.com/v1.0/deviceManagement/managedDevices")
    """

    def __init__(
        self,
        token: str,
        session: Optional[requests.Session] = None,
        default_policy: Optional[RetryPolicy] = None,
        timeout=DEFAULT_REQUEST_TIMEOUT,
        sleep: Callable[[float], None] = time.sleep,
        deadline: Optional[RunDeadline] = None,
    ):
        if not token:
            raise ValueError("token is required")
        self._token = token
        self._session = session or requests.Session()
        self.default_policy = default_policy or RetryPolicy()
        self.timeout = timeout
        self._sleep = sleep
        self.deadline = deadline

    def __repr__(self) -> str:
        return f"ResilientRequestExecutor(default_policy={self.default_policy})"

    # -------------------------------------------------------------------------
    # Core
    # -------------------------------------------------------------------------

    def execute(self, spec: RequestSpec, policy: Optional[RetryPolicy] = None) -> Response:
        """
        Send ``spec`` and retry throttled / server-error responses.

        Args:
            spec: The request to issue
            policy: Retry policy; a policy on the spec itself takes precedence

        Returns:
            Parsed Response for a 2xx status

        Raises:
            RequestError: Non-retryable failure, or retries exhausted
        """
        effective = spec.retry_policy or policy or self.default_policy

        stops = [stop_after_attempt(effective.max_retries + 1)]
        if self.deadline is not None:
            deadline = self.deadline
            stops.append(lambda retry_state: deadline.expired())

        retrying = Retrying(
            stop=stop_any(*stops),
            wait=wait_retry_after_or_exponential(effective.initial_backoff, self.deadline),
            retry=retry_if_exception(_is_retryable),
            sleep=self._sleep,
            before_sleep=self._log_retry(spec, effective),
            reraise=True,
        )

        try:
            return retrying(self._send, spec)
        except RequestError as e:
            logger.error(f"Request failed: {e}")
            raise

    def _send(self, spec: RequestSpec) -> Response:
        """Issue one attempt and classify the outcome."""
        headers = {
            'Authorization': f"Bearer {self._token}",
            'Accept': CONTENT_TYPE_JSON,
        }
        data = None
        if spec.body is not None:
            headers['Content-Type'] = spec.content_type
            data = self._serialize(spec)
        elif spec.method in METHODS_WITH_BODY:
            headers['Content-Type'] = spec.content_type
        headers.update(spec.headers)

        try:
            response = self._session.request(
                spec.method,
                spec.uri,
                headers=headers,
                data=data,
                timeout=self.timeout,
            )
        except (requests.ConnectionError, requests.Timeout) as e:
            # No status code, but positively transient
            raise RequestError(str(e), method=spec.method, uri=spec.uri, retryable=True) from e
        except requests.RequestException as e:
            raise RequestError(str(e), method=spec.method, uri=spec.uri, retryable=False) from e

        if 200 <= response.status_code < 300:
            try:
                body = _parse_body(response)
            except ValueError as e:
                raise RequestError(
                    f"Unparseable response body: {e}",
                    status_code=response.status_code,
                    method=spec.method,
                    uri=spec.uri,
                    retryable=False,
                ) from e
            return Response(
                status_code=response.status_code,
                headers=response.headers,
                body=body,
            )

        raise RequestError(
            _extract_error_message(response),
            status_code=response.status_code,
            method=spec.method,
            uri=spec.uri,
            retry_after=parse_retry_after(response.headers.get(HEADER_RETRY_AFTER)),
        )

    @staticmethod
    def _serialize(spec: RequestSpec):
        if isinstance(spec.body, (str, bytes)):
            return spec.body
        if 'json' in spec.content_type:
            return json.dumps(spec.body, default=str)
        return spec.body

    @staticmethod
    def _log_retry(spec: RequestSpec, policy: RetryPolicy) -> Callable:
        def before_sleep(retry_state) -> None:
            exc = retry_state.outcome.exception()
            wait = retry_state.next_action.sleep if retry_state.next_action else 0
            status = getattr(exc, 'status_code', None)
            logger.warning(
                f"Retry {retry_state.attempt_number}/{policy.max_retries} for "
                f"{spec.method} {spec.uri} in {wait}s (status={status}): "
                f"{getattr(exc, 'message', exc)}"
            )
        return before_sleep

    # -------------------------------------------------------------------------
    # Convenience verbs
    # -------------------------------------------------------------------------

    def request(self, method: str, uri: str, body: Any = None,
                policy: Optional[RetryPolicy] = None, **kwargs) -> Any:
        """Execute a request and return only the parsed body."""
        return self.execute(RequestSpec(method, uri, body=body, **kwargs), policy).body

    def get(self, uri: str, policy: Optional[RetryPolicy] = None, **kwargs) -> Any:
        return self.request('GET', uri, policy=policy, **kwargs)

    def post(self, uri: str, body: Any = None, policy: Optional[RetryPolicy] = None, **kwargs) -> Any:
        return self.request('POST', uri, body=body, policy=policy, **kwargs)

    def patch(self, uri: str, body: Any = None, policy: Optional[RetryPolicy] = None, **kwargs) -> Any:
        return self.request('PATCH', uri, body=body, policy=policy, **kwargs)

    def put(self, uri: str, body: Any = None, policy: Optional[RetryPolicy] = None, **kwargs) -> Any:
        return self.request('PUT', uri, body=body, policy=policy, **kwargs)

    def delete(self, uri: str, policy: Optional[RetryPolicy] = None, **kwargs) -> Any:
        return self.request('DELETE', uri, policy=policy, **kwargs)

