"""Per-installation credential secrets.

Every installation gets a Kubernetes Secret holding the organization login
(``orgName``) and an access token (``token``). TaskRuns mount it through their
``SECRET_NAME`` parameter; the failure reporter decodes ``orgName`` to find
where to file issues.

Issuing the access token itself is delegated to a :class:`TokenIssuer`. The
bundled :class:`StaticTokenIssuer` hands out one configured token, which suits
single-organization deployments; GitHub App token minting plugs in at the same
seam.
"""

from __future__ import annotations

import base64
import binascii
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Protocol

from cachetools import TTLCache

from peribolos.errors import CredentialError
from peribolos.kubernetes_client import (
    KubernetesClientError,
    KubernetesConflictError,
    KubernetesNotFoundError,
    KubernetesRestClient,
)
from peribolos.logging import get_logger

logger = get_logger(__name__)

ORG_NAME_KEY = "orgName"
TOKEN_KEY = "token"
INSTALLATION_LABEL = "peribolos.io/installation"


@dataclass(frozen=True)
class InstallationCredential:
    """Decoded content of an installation's credential secret."""

    installation_id: int
    account: str
    token: str


class TokenIssuer(Protocol):
    """Issues access tokens for an installation."""

    async def __call__(self, installation_id: int) -> str: ...


class StaticTokenIssuer:
    """Token issuer returning the same preconfigured token for every installation."""

    def __init__(self, token: str) -> None:
        self._token = token

    async def __call__(self, installation_id: int) -> str:
        if not self._token:
            raise CredentialError(
                f"No access token configured for installation {installation_id} "
                "(set GITHUB_TOKEN)"
            )
        return self._token


class CredentialProvider(ABC):
    """Lifecycle of the per-installation credential secret."""

    @abstractmethod
    def secret_name(self, installation_id: int) -> str:
        """Return the name of the installation's secret."""
        pass

    @abstractmethod
    async def issue_credential(self, installation_id: int, account: str) -> None:
        """Create the secret for a new installation.

        Raises:
            CredentialError: If the secret cannot be created.
        """
        pass

    @abstractmethod
    async def refresh_credential(self, installation_id: int, account: str) -> None:
        """Replace the stored token with a fresh one, creating the secret if absent.

        Raises:
            CredentialError: If the secret cannot be written.
        """
        pass

    @abstractmethod
    async def revoke_credential(self, installation_id: int) -> None:
        """Delete the installation's secret. Deleting a missing secret is not an error.

        Raises:
            CredentialError: If the secret cannot be deleted.
        """
        pass

    @abstractmethod
    async def read_credential(self, installation_id: int) -> InstallationCredential:
        """Read and decode the installation's secret.

        Raises:
            CredentialError: If the secret is missing or undecodable.
        """
        pass


def _encode(value: str) -> str:
    return base64.b64encode(value.encode("utf-8")).decode("ascii")


def _decode(data: dict[str, Any], key: str, secret_name: str) -> str:
    raw = data.get(key)
    if not raw:
        raise CredentialError(f"Secret {secret_name} has no {key!r} field")
    try:
        return base64.b64decode(raw, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError, TypeError) as e:
        raise CredentialError(f"Secret {secret_name} field {key!r} is not valid base64: {e}") from e


class KubernetesSecretCredentialProvider(CredentialProvider):
    """Credential provider storing credentials as Kubernetes Secrets."""

    def __init__(
        self,
        client: KubernetesRestClient,
        token_issuer: TokenIssuer,
        secret_prefix: str = "peribolos-token",
        cache_ttl: float = 60.0,
    ) -> None:
        self._client = client
        self._token_issuer = token_issuer
        self._secret_prefix = secret_prefix
        # Decoded credentials; writes through this provider invalidate their entry
        self._cache: TTLCache[int, InstallationCredential] = TTLCache(maxsize=256, ttl=cache_ttl)

    def secret_name(self, installation_id: int) -> str:
        return f"{self._secret_prefix}-{installation_id}"

    async def _build_secret(self, installation_id: int, account: str) -> dict[str, Any]:
        token = await self._token_issuer(installation_id)
        return {
            "apiVersion": "v1",
            "kind": "Secret",
            "type": "Opaque",
            "metadata": {
                "name": self.secret_name(installation_id),
                "labels": {
                    "app.kubernetes.io/managed-by": "peribolos",
                    INSTALLATION_LABEL: str(installation_id),
                },
            },
            "data": {
                ORG_NAME_KEY: _encode(account),
                TOKEN_KEY: _encode(token),
            },
        }

    async def issue_credential(self, installation_id: int, account: str) -> None:
        self._cache.pop(installation_id, None)
        name = self.secret_name(installation_id)
        body = await self._build_secret(installation_id, account)
        try:
            try:
                await self._client.create_secret(body)
            except KubernetesConflictError:
                # Left over from an earlier installation of the same id
                logger.info("Credential secret %s already exists, replacing it", name)
                await self._client.replace_secret(name, body)
        except KubernetesClientError as e:
            raise CredentialError(
                f"Failed to create secret for installation {installation_id}: {e}"
            ) from e
        logger.info("Issued credential secret %s", name)

    async def refresh_credential(self, installation_id: int, account: str) -> None:
        self._cache.pop(installation_id, None)
        name = self.secret_name(installation_id)
        body = await self._build_secret(installation_id, account)
        try:
            try:
                await self._client.replace_secret(name, body)
            except KubernetesNotFoundError:
                logger.info("Credential secret %s missing, recreating it", name)
                await self._client.create_secret(body)
        except KubernetesClientError as e:
            raise CredentialError(
                f"Failed to refresh secret for installation {installation_id}: {e}"
            ) from e
        logger.debug("Refreshed credential secret %s", name)

    async def revoke_credential(self, installation_id: int) -> None:
        self._cache.pop(installation_id, None)
        name = self.secret_name(installation_id)
        try:
            deleted = await self._client.delete_secret(name)
        except KubernetesClientError as e:
            raise CredentialError(
                f"Failed to delete secret for installation {installation_id}: {e}"
            ) from e
        if deleted:
            logger.info("Deleted credential secret %s", name)

    async def read_credential(self, installation_id: int) -> InstallationCredential:
        cached = self._cache.get(installation_id)
        if cached is not None:
            return cached
        name = self.secret_name(installation_id)
        try:
            secret = await self._client.read_secret(name)
        except KubernetesClientError as e:
            raise CredentialError(f"Failed to read secret {name}: {e}") from e
        data = secret.get("data") or {}
        credential = InstallationCredential(
            installation_id=installation_id,
            account=_decode(data, ORG_NAME_KEY, name),
            token=_decode(data, TOKEN_KEY, name),
        )
        self._cache[installation_id] = credential
        return credential
