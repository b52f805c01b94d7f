"""REST client for the Kubernetes API.

Talks directly to the API server over HTTPS using the pod's service account,
covering the handful of calls the controller needs:

- Tekton ``TaskRun`` custom objects (create, read, read status)
- pod logs of the TaskRun's step pod
- ``Secret`` objects holding per-installation credentials

Implements the same circuit breaker and backoff policy as the GitHub client;
the Kubernetes API signals throttling with HTTP 429 only.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import httpx

from peribolos.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from peribolos.config import DEFAULT_KUBERNETES_API_URL
from peribolos.logging import get_logger
from peribolos.rest_base import DEFAULT_TIMEOUT, BaseAsyncHttpClient, RetryConfig

logger = get_logger(__name__)

TEKTON_GROUP = "tekton.dev"
TEKTON_VERSION = "v1beta1"
TASK_RUN_PLURAL = "taskruns"


class KubernetesClientError(Exception):
    """Raised when a Kubernetes API operation fails."""

    pass


class KubernetesRateLimitError(KubernetesClientError):
    """Raised when the API server keeps throttling after all retries."""

    pass


class KubernetesNotFoundError(KubernetesClientError):
    """Raised when a requested object does not exist."""

    pass


class KubernetesConflictError(KubernetesClientError):
    """Raised when an object to be created already exists."""

    pass


class KubernetesRestClient(BaseAsyncHttpClient):
    """Namespaced Kubernetes client using direct REST calls.

    All operations are scoped to the namespace the controller runs in.
    """

    _error_class = KubernetesClientError
    _rate_limit_error = KubernetesRateLimitError
    _rate_limit_statuses = (429,)

    def __init__(
        self,
        namespace: str,
        base_url: str | None = None,
        token: str | None = None,
        ca_path: Path | None = None,
        timeout: httpx.Timeout | None = None,
        retry_config: RetryConfig | None = None,
        circuit_breaker: CircuitBreaker | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the Kubernetes REST client.

        Args:
            namespace: Namespace holding TaskRuns and credential secrets.
            base_url: API server URL. Defaults to the in-cluster service address.
            token: Bearer token. When None, requests are sent unauthenticated
                (e.g. through ``kubectl proxy``).
            ca_path: CA bundle used to verify the API server certificate.
            timeout: Optional custom timeout configuration.
            retry_config: Optional retry configuration for throttling.
            circuit_breaker: Circuit breaker instance for resilience. If not
                provided, creates a default one for the "kubernetes" service.
            transport: Optional transport override, used by tests.
        """
        verify: Any = str(ca_path) if ca_path is not None and ca_path.exists() else True
        super().__init__(retry_config=retry_config, transport=transport, verify=verify)
        self.namespace = namespace
        self.base_url = (base_url or DEFAULT_KUBERNETES_API_URL).rstrip("/")
        self.timeout = timeout or DEFAULT_TIMEOUT
        self._circuit_breaker = circuit_breaker or CircuitBreaker(
            service_name="kubernetes",
            config=CircuitBreakerConfig(),
        )
        self._headers = {"Accept": "application/json"}
        if token:
            self._headers["Authorization"] = f"Bearer {token}"

    @classmethod
    def from_service_account(
        cls,
        namespace: str,
        base_url: str,
        token_path: Path,
        ca_path: Path,
        circuit_breaker: CircuitBreaker | None = None,
    ) -> KubernetesRestClient:
        """Build a client from the mounted service account credentials.

        A missing token file yields an unauthenticated client and a warning.
        """
        token: str | None = None
        try:
            token = token_path.read_text(encoding="utf-8").strip()
        except OSError as e:
            logger.warning(
                "Service account token not readable at %s (%s); using unauthenticated client",
                token_path,
                e,
            )
        return cls(
            namespace=namespace,
            base_url=base_url,
            token=token,
            ca_path=ca_path,
            circuit_breaker=circuit_breaker,
        )

    def _task_runs_url(self) -> str:
        return (
            f"{self.base_url}/apis/{TEKTON_GROUP}/{TEKTON_VERSION}"
            f"/namespaces/{self.namespace}/{TASK_RUN_PLURAL}"
        )

    def _secrets_url(self) -> str:
        return f"{self.base_url}/api/v1/namespaces/{self.namespace}/secrets"

    async def create_task_run(self, body: dict[str, Any]) -> dict[str, Any]:
        """Create a TaskRun custom object.

        Args:
            body: Full TaskRun manifest.

        Returns:
            The created object as returned by the API server.

        Raises:
            KubernetesClientError: If the API server rejects the object.
        """
        response = await self._request(
            "POST", self._task_runs_url(), action="Create TaskRun", json=body
        )
        result: dict[str, Any] = response.json()
        return result

    async def get_task_run_status(self, name: str) -> dict[str, Any]:
        """Read the status subresource of a TaskRun."""
        response = await self._request(
            "GET", f"{self._task_runs_url()}/{name}/status", action="Get TaskRun status"
        )
        result: dict[str, Any] = response.json()
        return result

    async def get_task_run(self, name: str) -> dict[str, Any]:
        """Read a TaskRun object."""
        response = await self._request(
            "GET", f"{self._task_runs_url()}/{name}", action="Get TaskRun"
        )
        result: dict[str, Any] = response.json()
        return result

    async def read_pod_log(self, pod_name: str, container: str | None = None) -> str:
        """Read the log of a pod.

        Args:
            pod_name: Name of the pod.
            container: Optional container name. Required by the API server
                when the pod has more than one container.

        Returns:
            The log text.
        """
        params: dict[str, Any] = {}
        if container:
            params["container"] = container
        response = await self._request(
            "GET",
            f"{self.base_url}/api/v1/namespaces/{self.namespace}/pods/{pod_name}/log",
            action="Read pod log",
            params=params or None,
            headers={"Accept": "*/*"},
        )
        return response.text

    async def create_secret(self, body: dict[str, Any]) -> dict[str, Any]:
        """Create a Secret.

        Raises:
            KubernetesConflictError: If a secret of that name already exists.
        """
        response = await self._request(
            "POST",
            self._secrets_url(),
            action="Create secret",
            json=body,
            accept_statuses=(409,),
        )
        if response.status_code == 409:
            raise KubernetesConflictError(f"Secret {body['metadata']['name']} already exists")
        result: dict[str, Any] = response.json()
        return result

    async def replace_secret(self, name: str, body: dict[str, Any]) -> dict[str, Any]:
        """Replace an existing Secret.

        Raises:
            KubernetesNotFoundError: If the secret does not exist.
        """
        response = await self._request(
            "PUT",
            f"{self._secrets_url()}/{name}",
            action="Replace secret",
            json=body,
            accept_statuses=(404,),
        )
        if response.status_code == 404:
            raise KubernetesNotFoundError(f"Secret {name} not found")
        result: dict[str, Any] = response.json()
        return result

    async def read_secret(self, name: str) -> dict[str, Any]:
        """Read a Secret.

        Raises:
            KubernetesNotFoundError: If the secret does not exist.
        """
        response = await self._request(
            "GET",
            f"{self._secrets_url()}/{name}",
            action="Read secret",
            accept_statuses=(404,),
        )
        if response.status_code == 404:
            raise KubernetesNotFoundError(f"Secret {name} not found")
        result: dict[str, Any] = response.json()
        return result

    async def delete_secret(self, name: str) -> bool:
        """Delete a Secret.

        Returns:
            True if the secret was deleted, False if it did not exist.
        """
        response = await self._request(
            "DELETE",
            f"{self._secrets_url()}/{name}",
            action="Delete secret",
            accept_statuses=(404,),
        )
        if response.status_code == 404:
            logger.debug("Secret %s already absent", name)
            return False
        return True

    async def get_version(self) -> dict[str, Any]:
        """Read the API server version, used as a connectivity check."""
        response = await self._request("GET", f"{self.base_url}/version", action="Get version")
        result: dict[str, Any] = response.json()
        return result
