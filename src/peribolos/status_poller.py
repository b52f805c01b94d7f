"""Polls a TaskRun until it reaches a terminal state.

The poller is a small state machine over :class:`~peribolos.types.TaskRunState`:

- PENDING: no condition reported yet
- RUNNING: a condition is reported but the run has not finished
- SUCCEEDED / FAILED: terminal

Every cycle reads the TaskRun's ``/status`` subresource and re-evaluates the
state. Failed status queries are absorbed into an error counter; once the
counter reaches the limit the run is treated as failed. There is no
wall-clock timeout, so a TaskRun that keeps reporting a non-terminal condition
without query errors is polled until it finishes.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

from peribolos.errors import TransportError
from peribolos.kubernetes_client import KubernetesClientError, KubernetesRestClient
from peribolos.logging import get_logger
from peribolos.types import PollOutcome, TaskRunState

logger = get_logger(__name__)

DEFAULT_ERROR_COUNT_LIMIT = 50
DEFAULT_POLL_INTERVAL = 1.0

REASON_SUCCEEDED = "Succeeded"
REASON_FAILED = "Failed"


def evaluate_status(document: Any) -> TaskRunState:
    """Derive the TaskRun state from a status document.

    Reads the reason of the first condition. ``Succeeded`` and ``Failed`` are
    terminal; a condition whose status is ``"False"`` (timeouts, cancellations)
    is also a failure.

    Raises:
        TransportError: If the document does not have the expected shape.
    """
    if not isinstance(document, dict):
        raise TransportError(f"Unexpected status document type: {type(document).__name__}")
    status = document.get("status") or {}
    if not isinstance(status, dict):
        raise TransportError("TaskRun status is not an object")
    conditions = status.get("conditions") or []
    if not isinstance(conditions, list):
        raise TransportError("TaskRun status.conditions is not a list")
    if not conditions:
        return TaskRunState.PENDING

    condition = conditions[0]
    if not isinstance(condition, dict):
        raise TransportError("TaskRun condition is not an object")

    reason = condition.get("reason")
    if reason == REASON_SUCCEEDED:
        return TaskRunState.SUCCEEDED
    if reason == REASON_FAILED or condition.get("status") == "False":
        return TaskRunState.FAILED
    return TaskRunState.RUNNING


class TaskRunPoller:
    """Waits for TaskRuns to finish."""

    def __init__(
        self,
        client: KubernetesRestClient,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the poller.

        Args:
            client: Kubernetes client used for status queries.
            sleep: Coroutine used to wait between polls. Tests pass a no-op.
        """
        self._client = client
        self._sleep = sleep

    async def _query(self, name: str) -> TaskRunState:
        try:
            document = await self._client.get_task_run_status(name)
        except KubernetesClientError as e:
            raise TransportError(str(e)) from e
        except ValueError as e:
            # 2xx with a body that is not JSON, e.g. an HTML page from a proxy
            raise TransportError(f"Unreadable status of {name}: {e}") from e
        return evaluate_status(document)

    async def wait(
        self,
        name: str,
        error_count_limit: int = DEFAULT_ERROR_COUNT_LIMIT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ) -> PollOutcome:
        """Poll a TaskRun until it succeeds, fails or runs out of error budget.

        Args:
            name: TaskRun name.
            error_count_limit: Failed queries tolerated before giving up.
            poll_interval: Seconds between queries.

        Returns:
            PollOutcome with ``failed=True`` for a failed run or an exhausted
            error budget, ``failed=False`` for a successful run.
        """
        log = logger.with_context(task_run=name)
        state = TaskRunState.PENDING
        error_count = 0

        while True:
            try:
                observed = await self._query(name)
            except TransportError as e:
                error_count += 1
                log.debug(
                    "Status query %s/%s for %s failed: %s",
                    error_count,
                    error_count_limit,
                    name,
                    e,
                    extra={"diagnostic_tag": "polling"},
                )
                if error_count >= error_count_limit:
                    log.warning(
                        "Giving up on %s after %s failed status queries", name, error_count
                    )
                    return PollOutcome(failed=True, state=state, error_count=error_count)
            else:
                if observed != state:
                    log.debug(
                        "TaskRun %s: %s -> %s",
                        name,
                        state.value,
                        observed.value,
                        extra={"diagnostic_tag": "polling"},
                    )
                state = observed
                if state.is_terminal:
                    log.info("TaskRun %s finished: %s", name, state.value)
                    return PollOutcome(
                        failed=state == TaskRunState.FAILED,
                        state=state,
                        error_count=error_count,
                    )

            await self._sleep(poll_interval)


__all__ = [
    "DEFAULT_ERROR_COUNT_LIMIT",
    "DEFAULT_POLL_INTERVAL",
    "TaskRunPoller",
    "evaluate_status",
]
