"""Pydantic models for the webhook payloads the controller acts on.

Only the fields the handlers read are modelled; everything else in a payload
is ignored.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

__all__: list[str] = [
    "Account",
    "Commit",
    "Installation",
    "InstallationEvent",
    "InstallationRepository",
    "Issue",
    "IssuesEvent",
    "PushEvent",
    "Repository",
]


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore")


class Account(_Payload):
    """User or organization owning an installation or repository."""

    login: str


class Installation(_Payload):
    """GitHub App installation reference."""

    id: int
    account: Account | None = None


class InstallationRepository(_Payload):
    """Repository entry of an ``installation`` event."""

    name: str


class Repository(_Payload):
    """Repository an event happened in."""

    name: str
    owner: Account


class InstallationEvent(_Payload):
    """Payload of ``installation.created`` and ``installation.deleted``."""

    action: str
    installation: Installation
    repositories: list[InstallationRepository] | None = None

    def has_repository(self, name: str) -> bool:
        """Return True if the installation was granted a repository of that name."""
        return any(repo.name == name for repo in self.repositories or [])


class Commit(_Payload):
    """Commit of a ``push`` event."""

    id: str = ""
    added: list[str] = Field(default_factory=list)
    modified: list[str] = Field(default_factory=list)
    removed: list[str] = Field(default_factory=list)


class PushEvent(_Payload):
    """Payload of a ``push`` event."""

    ref: str = ""
    after: str = ""
    repository: Repository
    installation: Installation
    commits: list[Commit] = Field(default_factory=list)

    def touched_paths(self) -> set[str]:
        """Union of added, modified and removed paths over all commits."""
        paths: set[str] = set()
        for commit in self.commits:
            paths.update(commit.added)
            paths.update(commit.modified)
            paths.update(commit.removed)
        return paths


class Issue(_Payload):
    """Issue of an ``issues`` event."""

    number: int
    title: str
    body: str | None = None
    state: str = "open"


class IssuesEvent(_Payload):
    """Payload of an ``issues`` event such as ``issues.edited``."""

    action: str
    issue: Issue
    repository: Repository
    installation: Installation | None = None
