"""Health checks for the controller's external dependencies.

- Liveness: the process is up and serving requests
- Readiness: the Kubernetes API server and, when a token is configured, the
  GitHub API are reachable

Usage:
    checker = HealthChecker.from_config(config, kubernetes_client, github_client)
    readiness = await checker.check_readiness()
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from peribolos.github_client import GitHubClientError
from peribolos.kubernetes_client import KubernetesClientError
from peribolos.logging import get_logger

if TYPE_CHECKING:
    from peribolos.config import Config
    from peribolos.github_client import GitHubRestClient
    from peribolos.kubernetes_client import KubernetesRestClient

logger = get_logger(__name__)

HealthCall = Callable[[], Awaitable[Any]]


class HealthStatus(Enum):
    """Health status values for service checks."""

    UP = "up"
    DOWN = "down"


@dataclass
class ServiceHealth:
    """Health status for an individual service.

    Attributes:
        status: The health status (up, down).
        latency_ms: Latency in milliseconds for the health check.
        error: Optional error message if the check failed.
    """

    status: HealthStatus
    latency_ms: float
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        result: dict[str, Any] = {
            "status": self.status.value,
            "latency_ms": round(self.latency_ms, 2),
        }
        if self.error:
            result["error"] = self.error
        return result


@dataclass
class HealthCheckResult:
    """Result of a health check operation.

    Attributes:
        status: Overall health status ("healthy", "unhealthy", "degraded").
        checks: Dictionary of individual service health checks.
        timestamp: Unix timestamp of the health check.
    """

    status: str
    checks: dict[str, ServiceHealth] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "status": self.status,
            "timestamp": self.timestamp,
            "checks": {name: check.to_dict() for name, check in self.checks.items()},
        }


class HealthChecker:
    """Liveness and readiness checks for the controller."""

    def __init__(
        self,
        kubernetes_client: KubernetesRestClient | None = None,
        github_client: GitHubRestClient | None = None,
        timeout: float = 5.0,
        enabled: bool = True,
    ) -> None:
        self.kubernetes_client = kubernetes_client
        self.github_client = github_client
        self.timeout = timeout
        self.enabled = enabled

    @classmethod
    def from_config(
        cls,
        config: Config,
        kubernetes_client: KubernetesRestClient | None = None,
        github_client: GitHubRestClient | None = None,
    ) -> HealthChecker:
        """Create a HealthChecker from application Config."""
        return cls(
            kubernetes_client=kubernetes_client,
            github_client=github_client,
            timeout=config.health_check_timeout,
            enabled=config.health_check_enabled,
        )

    def check_liveness(self) -> HealthCheckResult:
        """Perform a basic liveness check; never touches dependencies."""
        return HealthCheckResult(status="healthy")

    async def check_readiness(self) -> HealthCheckResult:
        """Check every configured dependency concurrently.

        Returns:
            HealthCheckResult with overall status and individual service checks.
        """
        if not self.enabled:
            return HealthCheckResult(status="healthy")

        calls: dict[str, HealthCall] = {}
        if self.kubernetes_client is not None:
            calls["kubernetes"] = self.kubernetes_client.get_version
        if self.github_client is not None:
            calls["github"] = self.github_client.get_rate_limit

        results = await asyncio.gather(
            *(self._check(name, call) for name, call in calls.items())
        )
        checks = dict(zip(calls, results, strict=True))

        if not checks or all(c.status == HealthStatus.UP for c in checks.values()):
            status = "healthy"
        elif all(c.status == HealthStatus.DOWN for c in checks.values()):
            status = "unhealthy"
        else:
            status = "degraded"
        return HealthCheckResult(status=status, checks=checks)

    async def _check(self, name: str, call: HealthCall) -> ServiceHealth:
        start_time = time.perf_counter()
        try:
            await asyncio.wait_for(call(), timeout=self.timeout)
        except TimeoutError:
            latency_ms = (time.perf_counter() - start_time) * 1000
            logger.warning("%s health check timed out after %.2fms", name, latency_ms)
            return ServiceHealth(
                status=HealthStatus.DOWN,
                latency_ms=latency_ms,
                error="Health check timed out",
            )
        except (KubernetesClientError, GitHubClientError) as e:
            latency_ms = (time.perf_counter() - start_time) * 1000
            logger.warning("%s health check failed: %s", name, e)
            return ServiceHealth(status=HealthStatus.DOWN, latency_ms=latency_ms, error=str(e))

        latency_ms = (time.perf_counter() - start_time) * 1000
        logger.debug("%s health check succeeded in %.2fms", name, latency_ms)
        return ServiceHealth(status=HealthStatus.UP, latency_ms=latency_ms)


__all__ = ["HealthCheckResult", "HealthChecker", "HealthStatus", "ServiceHealth"]
