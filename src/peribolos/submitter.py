"""Job submission: turns a template and parameters into a Tekton TaskRun."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any

from peribolos.errors import SubmissionError
from peribolos.kubernetes_client import (
    TEKTON_GROUP,
    TEKTON_VERSION,
    KubernetesClientError,
    KubernetesRestClient,
)
from peribolos.logging import get_logger
from peribolos.types import TaskTemplate

logger = get_logger(__name__)

SECRET_NAME_PARAM = "SECRET_NAME"


def build_task_run(
    template: TaskTemplate,
    secret_name: str,
    parameters: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Build a TaskRun manifest for a template.

    The API server appends a random 5-character suffix to ``generateName``,
    so every submission yields a fresh, unique TaskRun.

    Args:
        template: Task to run; also the name prefix of the TaskRun.
        secret_name: Credential secret of the installation, always passed as
            ``SECRET_NAME``.
        parameters: Additional TaskRun params. A ``SECRET_NAME`` entry here
            is overridden by ``secret_name``.

    Returns:
        The TaskRun manifest.
    """
    params = dict(parameters or {})
    params[SECRET_NAME_PARAM] = secret_name
    return {
        "apiVersion": f"{TEKTON_GROUP}/{TEKTON_VERSION}",
        "kind": "TaskRun",
        "metadata": {"generateName": f"{template.value}-"},
        "spec": {
            "taskRef": {"name": template.value},
            "params": [{"name": name, "value": value} for name, value in params.items()],
        },
    }


class TaskRunSubmitter:
    """Creates TaskRuns in the controller's namespace.

    Submission is never retried here; a rejected request surfaces as
    :class:`~peribolos.errors.SubmissionError` and the caller decides.
    """

    def __init__(
        self,
        client: KubernetesRestClient,
        secret_name: Callable[[int], str],
    ) -> None:
        """Initialize the submitter.

        Args:
            client: Kubernetes client used to create TaskRuns.
            secret_name: Maps an installation id to its credential secret name.
        """
        self._client = client
        self._secret_name = secret_name

    async def submit(
        self,
        template: TaskTemplate,
        installation_id: int,
        parameters: Mapping[str, str] | None = None,
    ) -> str:
        """Submit a TaskRun and return its server-generated name.

        Raises:
            SubmissionError: If the API server rejects the TaskRun or the
                response carries no name.
        """
        body = build_task_run(template, self._secret_name(installation_id), parameters)
        log = logger.with_context(installation_id=installation_id, template=template.value)
        try:
            created = await self._client.create_task_run(body)
        except KubernetesClientError as e:
            log.error("TaskRun submission rejected: %s", e)
            raise SubmissionError(template.value, str(e)) from e

        name = (created.get("metadata") or {}).get("name")
        if not isinstance(name, str) or not name:
            raise SubmissionError(template.value, "response did not include metadata.name")

        log.info("Submitted TaskRun %s", name, extra={"task_run": name})
        return name


__all__ = ["SECRET_NAME_PARAM", "TaskRunSubmitter", "build_task_run"]
