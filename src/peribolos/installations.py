"""Installation-scoped GitHub access.

GitHub calls made on behalf of an installation use the token stored in that
installation's credential secret, so every call site first reads the
credential and then talks to GitHub with a client bound to its token.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager

from peribolos.credentials import CredentialProvider, InstallationCredential
from peribolos.github_client import GitHubClient

GitHubClientFactory = Callable[[str], GitHubClient]


class InstallationClients:
    """Opens GitHub clients authenticated as an installation.

    Usage:
        async with installations.session(42) as (credential, github):
            await github.create_issue(credential.account, ".github", title, body)
    """

    def __init__(
        self,
        credentials: CredentialProvider,
        client_factory: GitHubClientFactory,
    ) -> None:
        """Initialize the installation client helper.

        Args:
            credentials: Provider holding the per-installation tokens.
            client_factory: Builds a GitHub client for an access token.
        """
        self.credentials = credentials
        self._client_factory = client_factory

    @asynccontextmanager
    async def session(
        self, installation_id: int
    ) -> AsyncIterator[tuple[InstallationCredential, GitHubClient]]:
        """Yield the installation's credential and a client using its token.

        Raises:
            CredentialError: If the credential cannot be read.
        """
        credential = await self.credentials.read_credential(installation_id)
        client = self._client_factory(credential.token)
        try:
            yield credential, client
        finally:
            await client.aclose()


__all__ = ["GitHubClientFactory", "InstallationClients"]
