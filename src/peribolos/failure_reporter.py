"""Files a GitHub issue for a failed TaskRun.

The report goes to the ``.github`` repository of the installation's account
and contains the TaskRun's pod log plus the retry checkbox. All data is
gathered before the issue is created, so a broken chain files nothing.
"""

from __future__ import annotations

from typing import Any

from peribolos.errors import CredentialError, ReportingError
from peribolos.github_client import GitHubClientError
from peribolos.installations import InstallationClients
from peribolos.issue_format import TaskRunAnnotation, render_body, render_title
from peribolos.kubernetes_client import KubernetesClientError, KubernetesRestClient
from peribolos.logging import get_logger
from peribolos.types import FiledIssue, JobRequest

logger = get_logger(__name__)

REPORT_REPOSITORY = ".github"


def _step_containers(task_run: dict[str, Any]) -> list[str]:
    """Return the step container names reported in a TaskRun's status."""
    steps = (task_run.get("status") or {}).get("steps") or []
    return [
        step["container"]
        for step in steps
        if isinstance(step, dict) and isinstance(step.get("container"), str)
    ]


class FailureReporter:
    """Turns a failed TaskRun into a retriable GitHub issue."""

    def __init__(
        self,
        kubernetes: KubernetesRestClient,
        installations: InstallationClients,
        log_excerpt_limit: int | None = None,
        repository: str = REPORT_REPOSITORY,
    ) -> None:
        self._kubernetes = kubernetes
        self._installations = installations
        self._log_excerpt_limit = log_excerpt_limit
        self._repository = repository

    async def report(
        self,
        task_run_name: str,
        installation_id: int,
        request: JobRequest,
    ) -> FiledIssue | None:
        """File the failure report for a TaskRun.

        Args:
            task_run_name: Name of the failed TaskRun.
            installation_id: Installation the TaskRun ran for.
            request: The request the TaskRun was submitted from; embedded in
                the report so a retry can resubmit it unchanged.

        Returns:
            The filed issue, or None if any step of reporting failed. Failures
            are logged, never raised.
        """
        log = logger.with_context(
            installation_id=installation_id,
            template=request.template.value,
            task_run=task_run_name,
        )
        try:
            issue = await self._file(task_run_name, installation_id, request)
        except ReportingError as e:
            log.error("Could not report failure of %s: %s", task_run_name, e)
            return None
        log.info(
            "Reported failure of %s as %s/%s#%s",
            task_run_name,
            issue.owner,
            issue.repo,
            issue.number,
            extra={"issue": issue.number},
        )
        return issue

    async def _read_log(self, task_run_name: str) -> str:
        task_run = await self._kubernetes.get_task_run(task_run_name)
        pod_name = (task_run.get("status") or {}).get("podName")
        if not pod_name:
            raise ReportingError(f"TaskRun {task_run_name} has no pod")

        containers = _step_containers(task_run)
        if len(containers) <= 1:
            return await self._kubernetes.read_pod_log(
                pod_name, containers[0] if containers else None
            )

        # Multi-step pods need one request per step container
        sections = []
        for container in containers:
            text = await self._kubernetes.read_pod_log(pod_name, container)
            sections.append(f"--- {container} ---\n{text.rstrip()}")
        return "\n".join(sections)

    async def _file(
        self,
        task_run_name: str,
        installation_id: int,
        request: JobRequest,
    ) -> FiledIssue:
        annotation = TaskRunAnnotation(
            template=request.template,
            task_run=task_run_name,
            installation_id=installation_id,
            parameters=dict(request.parameters),
        )
        title = render_title(task_run_name)
        try:
            async with self._installations.session(installation_id) as (credential, github):
                log_text = await self._read_log(task_run_name)
                body = render_body(annotation, log_text, self._log_excerpt_limit)
                created = await github.create_issue(
                    credential.account, self._repository, title, body
                )
                return FiledIssue(
                    owner=credential.account,
                    repo=self._repository,
                    number=int(created["number"]),
                    title=title,
                    url=created.get("html_url", ""),
                )
        except (CredentialError, KubernetesClientError, GitHubClientError) as e:
            raise ReportingError(str(e)) from e
        except (KeyError, TypeError, ValueError) as e:
            raise ReportingError(f"Unexpected response while reporting: {e}") from e


__all__ = ["REPORT_REPOSITORY", "FailureReporter"]
