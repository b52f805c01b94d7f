"""Tests for filing failure reports."""

from __future__ import annotations

from typing import Any

import pytest

from peribolos.credentials import InstallationCredential
from peribolos.failure_reporter import FailureReporter
from peribolos.installations import InstallationClients
from peribolos.issue_format import RETRY_MARKER, parse_annotation
from peribolos.kubernetes_client import KubernetesClientError
from peribolos.types import JobRequest, TaskTemplate
from tests.mocks import MockCredentialProvider, MockGitHubClient, MockKubernetesClient


def make_reporter(
    kubernetes: MockKubernetesClient | None = None,
    github: MockGitHubClient | None = None,
    credentials: MockCredentialProvider | None = None,
    log_excerpt_limit: int | None = None,
) -> tuple[FailureReporter, MockKubernetesClient, MockGitHubClient]:
    kubernetes = kubernetes or MockKubernetesClient(pod_log="error: team acme/admins not found")
    github = github or MockGitHubClient()
    if credentials is None:
        credentials = MockCredentialProvider({42: InstallationCredential(42, "acme", "t")})
    installations = InstallationClients(credentials, lambda token: github)
    reporter = FailureReporter(
        kubernetes,  # type: ignore[arg-type]
        installations,
        log_excerpt_limit=log_excerpt_limit,
    )
    return reporter, kubernetes, github


REQUEST = JobRequest(TaskTemplate.RUN, 42, {"REPO_NAME": ".github", "CHECK_RUN_ID": "9001"})


class TestFailureReporter:
    """Tests for FailureReporter.report."""

    @pytest.mark.asyncio
    async def test_files_one_issue_in_the_account_dot_github_repo(self) -> None:
        reporter, _, github = make_reporter()

        issue = await reporter.report("peribolos-run-ab3f9", 42, REQUEST)

        assert issue is not None
        assert (issue.owner, issue.repo, issue.number) == ("acme", ".github", 1)
        assert issue.title == "peribolos-run-ab3f9 failed"
        assert len(github.issues) == 1
        owner, repo, title, body = github.issues[0]
        assert (owner, repo, title) == ("acme", ".github", "peribolos-run-ab3f9 failed")
        assert "error: team acme/admins not found" in body
        assert RETRY_MARKER in body

    @pytest.mark.asyncio
    async def test_body_carries_the_original_request(self) -> None:
        reporter, _, github = make_reporter()

        await reporter.report("peribolos-run-ab3f9", 42, REQUEST)

        annotation = parse_annotation(github.issues[0][3])
        assert annotation is not None
        assert annotation.template == TaskTemplate.RUN
        assert annotation.task_run == "peribolos-run-ab3f9"
        assert annotation.installation_id == 42
        assert annotation.parameters == {"REPO_NAME": ".github", "CHECK_RUN_ID": "9001"}

    @pytest.mark.asyncio
    async def test_reads_the_log_of_the_task_run_pod(self) -> None:
        kubernetes = MockKubernetesClient(pod_log="log", pod_name="peribolos-run-ab3f9-pod")
        reporter, _, _ = make_reporter(kubernetes=kubernetes)

        await reporter.report("peribolos-run-ab3f9", 42, REQUEST)

        assert kubernetes.log_requests == [("peribolos-run-ab3f9-pod", None)]

    @pytest.mark.asyncio
    async def test_reads_every_step_container_of_multi_step_pods(self) -> None:
        kubernetes = MockKubernetesClient(pod_log="step output")

        async def get_task_run(name: str) -> dict[str, Any]:
            return {
                "status": {
                    "podName": "pod-1",
                    "steps": [{"container": "step-clone"}, {"container": "step-apply"}],
                }
            }

        kubernetes.get_task_run = get_task_run  # type: ignore[method-assign]
        reporter, _, github = make_reporter(kubernetes=kubernetes)

        await reporter.report("peribolos-run-ab3f9", 42, REQUEST)

        assert kubernetes.log_requests == [("pod-1", "step-clone"), ("pod-1", "step-apply")]
        body = github.issues[0][3]
        assert "--- step-clone ---" in body
        assert "--- step-apply ---" in body

    @pytest.mark.asyncio
    async def test_truncates_long_logs(self) -> None:
        kubernetes = MockKubernetesClient(pod_log="x" * 100 + "END")
        reporter, _, github = make_reporter(kubernetes=kubernetes, log_excerpt_limit=10)

        await reporter.report("peribolos-run-ab3f9", 42, REQUEST)

        body = github.issues[0][3]
        assert "x" * 20 not in body
        assert "xxxxxxxEND" in body

    @pytest.mark.asyncio
    async def test_missing_credential_files_nothing(self) -> None:
        reporter, kubernetes, github = make_reporter(credentials=MockCredentialProvider())

        assert await reporter.report("peribolos-run-ab3f9", 42, REQUEST) is None
        assert github.issues == []
        assert kubernetes.log_requests == []

    @pytest.mark.asyncio
    async def test_missing_pod_files_nothing(self) -> None:
        kubernetes = MockKubernetesClient(pod_name="")
        reporter, _, github = make_reporter(kubernetes=kubernetes)

        assert await reporter.report("peribolos-run-ab3f9", 42, REQUEST) is None
        assert github.issues == []

    @pytest.mark.asyncio
    async def test_cluster_error_files_nothing(self) -> None:
        kubernetes = MockKubernetesClient()
        kubernetes.get_task_run_error = KubernetesClientError("Get TaskRun failed with status 404")
        reporter, _, github = make_reporter(kubernetes=kubernetes)

        assert await reporter.report("peribolos-run-ab3f9", 42, REQUEST) is None
        assert github.issues == []

    @pytest.mark.asyncio
    async def test_github_error_returns_none(self) -> None:
        reporter, _, github = make_reporter(github=MockGitHubClient(fail_on=["create_issue"]))

        assert await reporter.report("peribolos-run-ab3f9", 42, REQUEST) is None
        assert github.close_count == 1
