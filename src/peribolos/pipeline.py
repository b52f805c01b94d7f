"""Submit, wait, report: the lifecycle of one TaskRun."""

from __future__ import annotations

from dataclasses import dataclass

from peribolos.failure_reporter import FailureReporter
from peribolos.logging import get_logger
from peribolos.metrics import MetricsSink, OperationLabels, observe_operation
from peribolos.status_poller import (
    DEFAULT_ERROR_COUNT_LIMIT,
    DEFAULT_POLL_INTERVAL,
    TaskRunPoller,
)
from peribolos.submitter import TaskRunSubmitter
from peribolos.types import FiledIssue, JobRequest, PollOutcome

logger = get_logger(__name__)


@dataclass(frozen=True)
class PipelineResult:
    """What happened to one submitted TaskRun."""

    task_run: str
    outcome: PollOutcome
    issue: FiledIssue | None = None

    @property
    def failed(self) -> bool:
        return self.outcome.failed


class TaskRunPipeline:
    """Runs a :class:`~peribolos.types.JobRequest` to completion.

    The submission is wrapped in :func:`~peribolos.metrics.observe_operation`
    under the caller's method label. A rejected submission raises
    :class:`~peribolos.errors.SubmissionError`; nothing is polled or reported
    for it.
    """

    def __init__(
        self,
        submitter: TaskRunSubmitter,
        poller: TaskRunPoller,
        reporter: FailureReporter,
        metrics: MetricsSink,
        error_count_limit: int = DEFAULT_ERROR_COUNT_LIMIT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ) -> None:
        self._submitter = submitter
        self._poller = poller
        self._reporter = reporter
        self._metrics = metrics
        self._error_count_limit = error_count_limit
        self._poll_interval = poll_interval
        self._in_flight: set[str] = set()

    @property
    def in_flight(self) -> frozenset[str]:
        """Names of TaskRuns currently being polled."""
        return frozenset(self._in_flight)

    async def run(self, request: JobRequest, method: str) -> PipelineResult:
        """Submit a TaskRun, wait for it and report it if it failed.

        Args:
            request: What to run.
            method: Metric label of the submission, e.g. ``schedulePushTask``.

        Returns:
            PipelineResult of the run.

        Raises:
            SubmissionError: If the TaskRun could not be created.
        """
        name = await observe_operation(
            self._submitter.submit(
                request.template, request.installation_id, request.parameters
            ),
            OperationLabels(installation_id=request.installation_id, method=method),
            self._metrics,
        )

        self._in_flight.add(name)
        try:
            outcome = await self._poller.wait(
                name,
                error_count_limit=self._error_count_limit,
                poll_interval=self._poll_interval,
            )
        finally:
            self._in_flight.discard(name)

        if not outcome.failed:
            return PipelineResult(task_run=name, outcome=outcome)

        logger.warning(
            "TaskRun %s failed (state=%s, query errors=%s)",
            name,
            outcome.state.value,
            outcome.error_count,
            extra={"installation_id": request.installation_id, "task_run": name},
        )
        issue = await self._reporter.report(name, request.installation_id, request)
        return PipelineResult(task_run=name, outcome=outcome, issue=issue)


__all__ = ["PipelineResult", "TaskRunPipeline"]
