"""Tests for the shared REST client plumbing."""

from __future__ import annotations

import time

import httpx
import pytest

from peribolos.rest_base import (
    RetryConfig,
    _calculate_backoff_delay,
    _error_message,
    _get_retry_after,
    _is_rate_limited,
)

NO_JITTER = RetryConfig(jitter_min=1.0, jitter_max=1.0)


class TestBackoffDelay:
    """Tests for _calculate_backoff_delay."""

    @pytest.mark.parametrize("attempt,expected", [(0, 1.0), (1, 2.0), (3, 8.0), (10, 60.0)])
    def test_exponential_with_cap(self, attempt: int, expected: float) -> None:
        assert _calculate_backoff_delay(attempt, NO_JITTER) == expected

    def test_retry_after_takes_precedence(self) -> None:
        assert _calculate_backoff_delay(3, NO_JITTER, retry_after=5.0) == 5.0

    def test_jitter_within_bounds(self) -> None:
        config = RetryConfig(initial_delay=10.0, jitter_min=0.5, jitter_max=1.5)
        for _ in range(20):
            assert 5.0 <= _calculate_backoff_delay(0, config) <= 15.0


class TestRetryAfter:
    """Tests for _get_retry_after."""

    def test_retry_after_header(self) -> None:
        assert _get_retry_after(httpx.Response(429, headers={"Retry-After": "7"})) == 7.0

    def test_rate_limit_reset_header(self) -> None:
        reset = str(int(time.time()) + 30)
        delay = _get_retry_after(httpx.Response(403, headers={"X-RateLimit-Reset": reset}))
        assert delay is not None
        assert 25.0 <= delay <= 30.0

    def test_reset_in_the_past(self) -> None:
        assert _get_retry_after(httpx.Response(403, headers={"X-RateLimit-Reset": "1"})) is None

    def test_invalid_header(self) -> None:
        assert _get_retry_after(httpx.Response(429, headers={"Retry-After": "soon"})) is None


class TestIsRateLimited:
    """Tests for _is_rate_limited."""

    def test_429(self) -> None:
        assert _is_rate_limited(httpx.Response(429), (403, 429))

    def test_status_not_listed(self) -> None:
        assert not _is_rate_limited(httpx.Response(403), (429,))

    def test_403_with_remaining_capacity_is_permission_error(self) -> None:
        response = httpx.Response(403, headers={"X-RateLimit-Remaining": "12"})
        assert not _is_rate_limited(response, (403, 429))

    def test_403_with_exhausted_capacity(self) -> None:
        response = httpx.Response(403, headers={"X-RateLimit-Remaining": "0"})
        assert _is_rate_limited(response, (403, 429))


class TestErrorMessage:
    """Tests for _error_message."""

    def test_includes_api_message(self) -> None:
        response = httpx.Response(404, json={"message": "Not Found"})
        assert _error_message("Create issue", response) == (
            "Create issue failed with status 404: Not Found"
        )

    def test_non_json_body(self) -> None:
        response = httpx.Response(502, text="<html>bad gateway</html>")
        assert _error_message("Get version", response) == "Get version failed with status 502"
