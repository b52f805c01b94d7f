"""GitHub client interface and REST implementation.

The controller needs a small slice of the GitHub REST API: filing and closing
failure issues, commenting on them, creating the ``.github`` repository for a
new installation, and creating the check run a ``peribolos-run`` TaskRun
reports into.

Implements exponential backoff with jitter for rate limiting and a circuit
breaker to prevent cascading failures when the GitHub API is unavailable.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

import httpx

from peribolos.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from peribolos.config import DEFAULT_GITHUB_API_URL
from peribolos.logging import get_logger
from peribolos.rest_base import DEFAULT_TIMEOUT, BaseAsyncHttpClient, RetryConfig

logger = get_logger(__name__)


class GitHubClientError(Exception):
    """Raised when a GitHub API operation fails."""

    pass


class GitHubRateLimitError(GitHubClientError):
    """Raised when rate limit is exceeded and all retries are exhausted."""

    pass


class GitHubClient(ABC):
    """Abstract interface for the GitHub operations used by the controller.

    This allows the reporter, retry controller and dispatcher to work with
    different implementations:
    - Real GitHub API client (production)
    - Mock client (testing)
    """

    @abstractmethod
    async def create_issue(self, owner: str, repo: str, title: str, body: str) -> dict[str, Any]:
        """Create an issue.

        Returns:
            The created issue as returned by the API.

        Raises:
            GitHubClientError: If the operation fails.
        """
        pass

    @abstractmethod
    async def update_issue_state(
        self, owner: str, repo: str, issue_number: int, state: str
    ) -> dict[str, Any]:
        """Set an issue's state to ``"open"`` or ``"closed"``.

        Raises:
            GitHubClientError: If the operation fails.
        """
        pass

    @abstractmethod
    async def create_comment(
        self, owner: str, repo: str, issue_number: int, body: str
    ) -> dict[str, Any]:
        """Add a comment to an issue.

        Raises:
            GitHubClientError: If the operation fails.
        """
        pass

    @abstractmethod
    async def create_org_repository(self, org: str, name: str) -> dict[str, Any]:
        """Create a repository in an organization.

        Raises:
            GitHubClientError: If the operation fails.
        """
        pass

    @abstractmethod
    async def create_check_run(
        self, owner: str, repo: str, name: str, head_sha: str
    ) -> dict[str, Any]:
        """Create a queued check run on a commit.

        Raises:
            GitHubClientError: If the operation fails.
        """
        pass

    async def aclose(self) -> None:
        """Release any resources held by the client."""
        pass


class GitHubRestClient(BaseAsyncHttpClient, GitHubClient):
    """GitHub client that uses direct REST API calls.

    Supports both GitHub.com and GitHub Enterprise via configurable base URL.
    One instance is bound to one access token, i.e. one installation.
    """

    _error_class = GitHubClientError
    _rate_limit_error = GitHubRateLimitError
    _rate_limit_statuses = (403, 429)

    def __init__(
        self,
        token: str,
        base_url: str | None = None,
        timeout: httpx.Timeout | None = None,
        retry_config: RetryConfig | None = None,
        circuit_breaker: CircuitBreaker | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the GitHub REST client.

        Args:
            token: Installation access token or personal access token.
            base_url: Optional custom API base URL for GitHub Enterprise.
                     Defaults to "https://api.github.com".
                     For GitHub Enterprise: "https://your-ghe-host/api/v3"
            timeout: Optional custom timeout configuration.
            retry_config: Optional retry configuration for rate limiting.
            circuit_breaker: Circuit breaker instance for resilience. If not provided,
                creates a default circuit breaker for the "github" service.
            transport: Optional transport override, used by tests.
        """
        super().__init__(retry_config=retry_config, transport=transport)
        self.base_url = (base_url or DEFAULT_GITHUB_API_URL).rstrip("/")
        self.timeout = timeout or DEFAULT_TIMEOUT
        self._circuit_breaker = circuit_breaker or CircuitBreaker(
            service_name="github",
            config=CircuitBreakerConfig(),
        )
        self._headers = {
            "Accept": "application/vnd.github+json",
            "Authorization": f"Bearer {token}",
            "X-GitHub-Api-Version": "2022-11-28",
        }

    async def create_issue(self, owner: str, repo: str, title: str, body: str) -> dict[str, Any]:
        response = await self._request(
            "POST",
            f"{self.base_url}/repos/{owner}/{repo}/issues",
            action="Create issue",
            json={"title": title, "body": body},
        )
        issue: dict[str, Any] = response.json()
        logger.info("Created issue %s/%s#%s: %s", owner, repo, issue.get("number"), title)
        return issue

    async def update_issue_state(
        self, owner: str, repo: str, issue_number: int, state: str
    ) -> dict[str, Any]:
        response = await self._request(
            "PATCH",
            f"{self.base_url}/repos/{owner}/{repo}/issues/{issue_number}",
            action="Update issue",
            json={"state": state},
        )
        logger.info("Set %s/%s#%s to %s", owner, repo, issue_number, state)
        result: dict[str, Any] = response.json()
        return result

    async def create_comment(
        self, owner: str, repo: str, issue_number: int, body: str
    ) -> dict[str, Any]:
        response = await self._request(
            "POST",
            f"{self.base_url}/repos/{owner}/{repo}/issues/{issue_number}/comments",
            action="Create comment",
            json={"body": body},
        )
        result: dict[str, Any] = response.json()
        return result

    async def create_org_repository(self, org: str, name: str) -> dict[str, Any]:
        response = await self._request(
            "POST",
            f"{self.base_url}/orgs/{org}/repos",
            action="Create repository",
            json={"name": name},
        )
        logger.info("Created repository %s/%s", org, name)
        result: dict[str, Any] = response.json()
        return result

    async def create_check_run(
        self, owner: str, repo: str, name: str, head_sha: str
    ) -> dict[str, Any]:
        response = await self._request(
            "POST",
            f"{self.base_url}/repos/{owner}/{repo}/check-runs",
            action="Create check run",
            json={"name": name, "head_sha": head_sha, "status": "queued"},
        )
        result: dict[str, Any] = response.json()
        return result

    async def get_rate_limit(self) -> dict[str, Any]:
        """Read the rate limit status, used as a connectivity check."""
        response = await self._request(
            "GET", f"{self.base_url}/rate_limit", action="Get rate limit"
        )
        result: dict[str, Any] = response.json()
        return result
