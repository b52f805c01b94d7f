"""Re-runs failed TaskRuns when their failure report asks for it.

A failure report is retried when an ``issues.edited`` event shows:

1. a title produced by the failure reporter (``<template>-<suffix> failed``)
2. the ticked checkbox ``- [x] Re-run this task`` in the body
3. an issue that is still open

The check is on the edited content only, so any edit of an open report with a
ticked box triggers a retry. Closing the report as part of the retry makes
later edits of the same report no-ops.
"""

from __future__ import annotations

from peribolos.events import IssuesEvent
from peribolos.installations import InstallationClients
from peribolos.issue_format import is_retry_requested, parse_annotation, parse_title
from peribolos.logging import get_logger
from peribolos.pipeline import PipelineResult, TaskRunPipeline
from peribolos.types import JobRequest

logger = get_logger(__name__)

RETRY_METHOD = "scheduleRetryTask"
ACKNOWLEDGEMENT = "Re-running `{template}` as requested. A new report will be filed if it fails again."


class RetryController:
    """Handles edits of failure report issues."""

    def __init__(self, pipeline: TaskRunPipeline, installations: InstallationClients) -> None:
        self._pipeline = pipeline
        self._installations = installations

    def build_request(self, event: IssuesEvent) -> JobRequest | None:
        """Decide whether an edit requests a retry, and of what.

        Returns:
            The request to resubmit, or None if the edit is not a retry request.
        """
        issue = event.issue
        parsed = parse_title(issue.title)
        if parsed is None:
            logger.debug("Ignoring edit of #%s: not a failure report", issue.number)
            return None
        if not is_retry_requested(issue.body):
            logger.debug("Ignoring edit of #%s: retry not requested", issue.number)
            return None
        if issue.state == "closed":
            logger.info("Ignoring edit of closed failure report #%s", issue.number)
            return None
        if event.installation is None:
            logger.warning("Edit of #%s has no installation, cannot retry", issue.number)
            return None

        annotation = parse_annotation(issue.body)
        parameters: dict[str, str] = {}
        if annotation is not None and annotation.template == parsed.template:
            parameters = dict(annotation.parameters)
        elif annotation is not None:
            logger.warning(
                "Annotation of #%s names %s but the title names %s; using the title",
                issue.number,
                annotation.template.value,
                parsed.template.value,
            )

        return JobRequest(
            template=parsed.template,
            installation_id=event.installation.id,
            parameters=parameters,
        )

    async def handle_issue_edited(self, event: IssuesEvent) -> PipelineResult | None:
        """Acknowledge, close and re-run a failure report if requested.

        Returns:
            The result of the re-run, or None if the edit was not a retry request.

        Raises:
            CredentialError: If the installation's credential cannot be read.
            GitHubClientError: If the issue cannot be commented on or closed.
            SubmissionError: If the re-run cannot be submitted.
        """
        request = self.build_request(event)
        if request is None:
            return None

        issue = event.issue
        owner = event.repository.owner.login
        repo = event.repository.name
        log = logger.with_context(
            installation_id=request.installation_id,
            template=request.template.value,
            issue=issue.number,
        )

        async with self._installations.session(request.installation_id) as (_, github):
            await github.create_comment(
                owner,
                repo,
                issue.number,
                ACKNOWLEDGEMENT.format(template=request.template.value),
            )
            await github.update_issue_state(owner, repo, issue.number, "closed")
        log.info("Retrying %s from %s/%s#%s", request.template.value, owner, repo, issue.number)

        return await self._pipeline.run(request, RETRY_METHOD)


__all__ = ["ACKNOWLEDGEMENT", "RETRY_METHOD", "RetryController"]
