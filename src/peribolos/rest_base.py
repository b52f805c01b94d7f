"""Shared plumbing for the asynchronous REST clients.

Both the Kubernetes and the GitHub clients talk plain REST over a pooled
``httpx.AsyncClient``. This module holds what they share:

- exponential backoff with jitter for rate-limited responses, honouring
  ``Retry-After`` and GitHub's ``X-RateLimit-Reset`` per
  https://docs.github.com/en/rest/using-the-rest-api/rate-limits-for-the-rest-api
- circuit breaker gating and error translation for a single request
- lazy client creation, ``aclose()`` and async context manager support
"""

from __future__ import annotations

import asyncio
import random
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Self, TypeVar

import httpx

from peribolos.circuit_breaker import CircuitBreaker
from peribolos.logging import get_logger

logger = get_logger(__name__)

# Default timeout for HTTP requests (connect, read, write, pool)
DEFAULT_TIMEOUT = httpx.Timeout(10.0, read=30.0)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryConfig:
    """Configuration for retry behavior with exponential backoff.

    Attributes:
        max_retries: Maximum number of retry attempts (default: 4).
        initial_delay: Initial delay in seconds before first retry (default: 1.0).
        max_delay: Maximum delay in seconds between retries (default: 60.0).
        jitter_min: Minimum jitter multiplier (default: 0.7).
        jitter_max: Maximum jitter multiplier (default: 1.3).
    """

    max_retries: int = 4
    initial_delay: float = 1.0
    max_delay: float = 60.0
    jitter_min: float = 0.7
    jitter_max: float = 1.3


DEFAULT_RETRY_CONFIG = RetryConfig()


def _calculate_backoff_delay(
    attempt: int,
    config: RetryConfig,
    retry_after: float | None = None,
) -> float:
    """Calculate the delay before the next retry attempt.

    Args:
        attempt: Current retry attempt number (0-indexed).
        config: Retry configuration.
        retry_after: Optional Retry-After header value in seconds.

    Returns:
        Delay in seconds before next retry.
    """
    if retry_after is not None:
        base_delay = retry_after
    else:
        # Exponential backoff: initial_delay * 2^attempt
        base_delay = min(config.initial_delay * (2**attempt), config.max_delay)

    jitter = random.uniform(config.jitter_min, config.jitter_max)
    return base_delay * jitter


def _check_rate_limit_warning(response: httpx.Response) -> None:
    """Log a warning if the GitHub rate limit is near exhaustion."""
    remaining = response.headers.get("X-RateLimit-Remaining")
    if remaining is not None:
        try:
            if int(remaining) <= 10:
                reset_time = response.headers.get("X-RateLimit-Reset", "unknown")
                logger.warning(
                    "Rate limit near exhaustion. Remaining: %s, Reset: %s",
                    remaining,
                    reset_time,
                )
        except ValueError:
            pass


def _get_retry_after(response: httpx.Response) -> float | None:
    """Extract a retry delay from response headers.

    Checks the standard ``Retry-After`` header first, then GitHub's
    ``X-RateLimit-Reset`` Unix timestamp.

    Returns:
        Delay in seconds, or None if neither header yields one.
    """
    retry_after = response.headers.get("Retry-After")
    if retry_after is not None:
        try:
            return float(retry_after)
        except ValueError:
            logger.warning("Invalid Retry-After header value: %s", retry_after)

    reset_time = response.headers.get("X-RateLimit-Reset")
    if reset_time is not None:
        try:
            delay = int(reset_time) - int(time.time())
            if delay > 0:
                return float(delay)
        except ValueError:
            logger.warning("Invalid X-RateLimit-Reset header value: %s", reset_time)

    return None


def _is_rate_limited(response: httpx.Response, rate_limit_statuses: tuple[int, ...]) -> bool:
    """Decide whether an error response is a rate limit worth retrying.

    A 403 only counts when the ``X-RateLimit-Remaining`` header does not show
    remaining capacity; otherwise it is a permission error.
    """
    if response.status_code not in rate_limit_statuses:
        return False
    if response.status_code == 403:
        remaining = response.headers.get("X-RateLimit-Remaining")
        if remaining is not None:
            try:
                if int(remaining) > 0:
                    return False
            except ValueError:
                pass
    return True


async def _execute_with_retry(
    operation: Callable[[], Awaitable[T]],
    config: RetryConfig = DEFAULT_RETRY_CONFIG,
    rate_limit_error: type[Exception] = Exception,
    rate_limit_statuses: tuple[int, ...] = (403, 429),
) -> T:
    """Execute an HTTP operation, retrying on rate-limit responses.

    Args:
        operation: Coroutine factory performing the request. Should raise
            ``httpx.HTTPStatusError`` for error responses.
        config: Retry configuration.
        rate_limit_error: Exception raised once all retries are exhausted.
        rate_limit_statuses: Status codes that may indicate rate limiting.

    Returns:
        Result from the operation.

    Raises:
        rate_limit_error: If all retries are exhausted.
        httpx.HTTPStatusError: For error responses that are not rate limits.
    """
    attempt = 0
    while True:
        try:
            return await operation()
        except httpx.HTTPStatusError as e:
            if not _is_rate_limited(e.response, rate_limit_statuses):
                raise

            if attempt >= config.max_retries:
                raise rate_limit_error(
                    f"Rate limit exceeded after {config.max_retries} retries"
                ) from e

            delay = _calculate_backoff_delay(attempt, config, _get_retry_after(e.response))
            logger.warning(
                "Rate limited (attempt %s/%s). Retrying in %.2fs",
                attempt + 1,
                config.max_retries + 1,
                delay,
            )
            await asyncio.sleep(delay)
            attempt += 1


def _error_message(prefix: str, response: httpx.Response) -> str:
    """Build an error message including the API's ``message`` field if any."""
    error_msg = f"{prefix} failed with status {response.status_code}"
    try:
        error_data = response.json()
        if isinstance(error_data, dict) and "message" in error_data:
            error_msg += f": {error_data['message']}"
    except ValueError:
        pass
    return error_msg


class BaseAsyncHttpClient:
    """Base class providing a pooled ``httpx.AsyncClient`` and guarded requests.

    Subclasses set ``timeout``, ``_headers``, ``_error_class`` and
    ``_circuit_breaker`` in ``__init__`` before issuing requests. Tests inject an
    ``httpx.MockTransport`` through ``transport``.
    """

    timeout: httpx.Timeout
    _headers: dict[str, str]
    _error_class: type[Exception]
    _rate_limit_error: type[Exception]
    _rate_limit_statuses: tuple[int, ...] = (403, 429)
    _circuit_breaker: CircuitBreaker

    def __init__(
        self,
        retry_config: RetryConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        verify: Any = True,
    ) -> None:
        self.retry_config = retry_config or DEFAULT_RETRY_CONFIG
        self._transport = transport
        self._verify = verify
        # Lazily initialized so that clients can be built outside an event loop
        self._client: httpx.AsyncClient | None = None

    @property
    def circuit_breaker(self) -> CircuitBreaker:
        """Get the circuit breaker for this client."""
        return self._circuit_breaker

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the reusable HTTP client."""
        if self._client is None:
            if getattr(self, "timeout", None) is None or getattr(self, "_headers", None) is None:
                raise RuntimeError(
                    f"{self.__class__.__name__} must set self.timeout and self._headers "
                    "before issuing requests."
                )
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers=self._headers,
                transport=self._transport,
                verify=self._verify,
            )
        return self._client

    async def _request(
        self,
        method: str,
        url: str,
        *,
        action: str,
        json: Any = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        accept_statuses: tuple[int, ...] = (),
    ) -> httpx.Response:
        """Send one request through the circuit breaker and retry policy.

        Args:
            method: HTTP method.
            url: Absolute request URL.
            action: Human readable name of the operation, used in errors.
            json: Optional JSON body.
            params: Optional query parameters.
            headers: Optional per-request headers.
            accept_statuses: Error statuses returned to the caller instead of raised.

        Returns:
            The HTTP response.

        Raises:
            The client's error class on transport errors, error statuses, or an
            open circuit; its rate limit error when retries are exhausted.
        """
        if not self._circuit_breaker.allow_request():
            raise self._error_class(
                f"{self._circuit_breaker.service_name} circuit breaker is open - "
                f"service may be unavailable. State: {self._circuit_breaker.state.value}"
            )

        async def do_request() -> httpx.Response:
            client = self._get_client()
            response = await client.request(
                method, url, json=json, params=params, headers=headers
            )
            _check_rate_limit_warning(response)
            if response.status_code in accept_statuses:
                return response
            response.raise_for_status()
            return response

        try:
            response = await _execute_with_retry(
                do_request,
                self.retry_config,
                self._rate_limit_error,
                self._rate_limit_statuses,
            )
        except self._rate_limit_error as e:
            self._circuit_breaker.record_failure(e)
            raise
        except httpx.TimeoutException as e:
            self._circuit_breaker.record_failure(e)
            raise self._error_class(f"{action} timed out: {e}") from e
        except httpx.HTTPStatusError as e:
            # 4xx responses are the caller's fault, not the service's
            if e.response.status_code >= 500:
                self._circuit_breaker.record_failure(e)
            else:
                self._circuit_breaker.record_success()
            raise self._error_class(_error_message(action, e.response)) from e
        except httpx.RequestError as e:
            self._circuit_breaker.record_failure(e)
            raise self._error_class(f"{action} request failed: {e}") from e

        self._circuit_breaker.record_success()
        return response

    async def aclose(self) -> None:
        """Close the HTTP client and release resources."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()
