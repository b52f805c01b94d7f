"""Test helper functions for peribolos controller tests.

Usage
=====

Import and use helpers directly in tests::

    from tests.helpers import make_config, make_harness, push_payload

    async def test_example():
        harness = make_harness()
        await harness.dispatcher.dispatch("push", push_payload(modified=["peribolos.yaml"]))
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from peribolos.config import Config
from peribolos.credentials import InstallationCredential
from peribolos.dispatcher import EventDispatcher
from peribolos.failure_reporter import FailureReporter
from peribolos.installations import InstallationClients
from peribolos.issue_format import RETRY_MARKER, RETRY_MARKER_ACTIVATED
from peribolos.pipeline import TaskRunPipeline
from peribolos.retry_controller import RetryController
from peribolos.status_poller import TaskRunPoller
from peribolos.submitter import TaskRunSubmitter
from tests.mocks import (
    MockCredentialProvider,
    MockGitHubClient,
    MockKubernetesClient,
    RecordingMetricsSink,
)

INSTALLATION_ID = 42
ACCOUNT = "acme"


def make_config(**overrides: Any) -> Config:
    """Create a Config with test-friendly defaults."""
    defaults: dict[str, Any] = {
        "namespace": "peribolos",
        "github_token": "static-token",
        "poll_interval": 0.0,
    }
    defaults.update(overrides)
    return Config(**defaults)


async def no_sleep(_: float) -> None:
    """Sleep replacement that returns immediately."""
    return None


@dataclass
class Harness:
    """Fully wired controller backed by mocks."""

    kubernetes: MockKubernetesClient
    github: MockGitHubClient
    credentials: MockCredentialProvider
    metrics: RecordingMetricsSink
    pipeline: TaskRunPipeline
    retry_controller: RetryController
    dispatcher: EventDispatcher
    tokens_used: list[str] = field(default_factory=list)


def make_harness(
    kubernetes: MockKubernetesClient | None = None,
    github: MockGitHubClient | None = None,
    credentials: MockCredentialProvider | None = None,
    error_count_limit: int = 50,
) -> Harness:
    """Wire the pipeline, retry controller and dispatcher around mocks.

    The credential provider starts with a credential for ``INSTALLATION_ID``
    owned by ``ACCOUNT`` unless one is passed in.
    """
    kubernetes = kubernetes or MockKubernetesClient(pod_log="boom")
    github = github or MockGitHubClient()
    if credentials is None:
        credentials = MockCredentialProvider(
            {INSTALLATION_ID: InstallationCredential(INSTALLATION_ID, ACCOUNT, "token-42")}
        )
    metrics = RecordingMetricsSink()
    tokens_used: list[str] = []

    def client_factory(token: str) -> MockGitHubClient:
        tokens_used.append(token)
        return github

    installations = InstallationClients(credentials, client_factory)
    pipeline = TaskRunPipeline(
        submitter=TaskRunSubmitter(kubernetes, credentials.secret_name),  # type: ignore[arg-type]
        poller=TaskRunPoller(kubernetes, sleep=no_sleep),  # type: ignore[arg-type]
        reporter=FailureReporter(kubernetes, installations),  # type: ignore[arg-type]
        metrics=metrics,
        error_count_limit=error_count_limit,
        poll_interval=0.0,
    )
    retry_controller = RetryController(pipeline, installations)
    dispatcher = EventDispatcher(
        pipeline=pipeline,
        retry_controller=retry_controller,
        credentials=credentials,
        installations=installations,
        metrics=metrics,
    )
    return Harness(
        kubernetes=kubernetes,
        github=github,
        credentials=credentials,
        metrics=metrics,
        pipeline=pipeline,
        retry_controller=retry_controller,
        dispatcher=dispatcher,
        tokens_used=tokens_used,
    )


def installation_payload(
    action: str = "created",
    installation_id: int = INSTALLATION_ID,
    account: str = ACCOUNT,
    repositories: list[str] | None = None,
) -> dict[str, Any]:
    """Build an ``installation`` webhook payload."""
    payload: dict[str, Any] = {
        "action": action,
        "installation": {"id": installation_id, "account": {"login": account}},
    }
    if repositories is not None:
        payload["repositories"] = [{"name": name} for name in repositories]
    return payload


def push_payload(
    added: list[str] | None = None,
    modified: list[str] | None = None,
    removed: list[str] | None = None,
    repository: str = ".github",
    owner: str = ACCOUNT,
    after: str = "a" * 40,
    installation_id: int = INSTALLATION_ID,
    commits: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    """Build a ``push`` webhook payload with a single commit by default."""
    if commits is None:
        commits = [
            {
                "id": "c1",
                "added": added or [],
                "modified": modified or [],
                "removed": removed or [],
            }
        ]
    return {
        "ref": "refs/heads/main",
        "after": after,
        "repository": {"name": repository, "owner": {"login": owner}},
        "installation": {"id": installation_id},
        "commits": commits,
    }


def report_body(checked: bool, annotation: str = "") -> str:
    """Build a failure report body with the retry checkbox in either state."""
    marker = RETRY_MARKER_ACTIVATED if checked else RETRY_MARKER
    body = f"Logs for `peribolos-run-ab3f9`:\n```json\nboom\n```\n\n{marker}\n"
    if annotation:
        body += f"\n{annotation}\n"
    return body


def issue_edited_payload(
    title: str = "peribolos-run-ab3f9 failed",
    body: str | None = None,
    state: str = "open",
    number: int = 7,
    installation_id: int | None = INSTALLATION_ID,
) -> dict[str, Any]:
    """Build an ``issues.edited`` webhook payload."""
    payload: dict[str, Any] = {
        "action": "edited",
        "issue": {
            "number": number,
            "title": title,
            "body": body if body is not None else report_body(checked=True),
            "state": state,
        },
        "repository": {"name": ".github", "owner": {"login": ACCOUNT}},
    }
    if installation_id is not None:
        payload["installation"] = {"id": installation_id}
    return payload
