"""Routes webhook events to their handlers.

| Event                  | Action                                                  |
|------------------------|---------------------------------------------------------|
| installation.created   | issue credential, ensure ``.github``, dump org config   |
| installation.deleted   | revoke credential                                       |
| push                   | if the watched file changed: refresh credential, run    |
| issues.edited          | retry a failure report if requested                     |

Every event, handled or not, is counted. Each event is processed in its own
asyncio task and a failing handler is logged without affecting other events.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from peribolos.credentials import CredentialProvider
from peribolos.errors import CredentialError
from peribolos.events import InstallationEvent, IssuesEvent, PushEvent
from peribolos.failure_reporter import REPORT_REPOSITORY
from peribolos.github_client import GitHubClientError
from peribolos.installations import InstallationClients
from peribolos.logging import get_logger
from peribolos.metrics import MetricsSink, OperationLabels, observe_operation
from peribolos.pipeline import TaskRunPipeline
from peribolos.retry_controller import RetryController
from peribolos.types import JobRequest, TaskTemplate

logger = get_logger(__name__)

CHECK_RUN_NAME = "peribolos"
NULL_SHA = "0" * 40

Handler = Callable[[Mapping[str, Any]], Awaitable[None]]


def _installation_id(payload: Mapping[str, Any]) -> int | None:
    installation = payload.get("installation")
    if isinstance(installation, Mapping) and isinstance(installation.get("id"), int):
        return installation["id"]
    return None


class EventDispatcher:
    """Dispatches GitHub webhook events."""

    def __init__(
        self,
        pipeline: TaskRunPipeline,
        retry_controller: RetryController,
        credentials: CredentialProvider,
        installations: InstallationClients,
        metrics: MetricsSink,
        watched_file: str = "peribolos.yaml",
    ) -> None:
        self._pipeline = pipeline
        self._retry_controller = retry_controller
        self._credentials = credentials
        self._installations = installations
        self._metrics = metrics
        self._watched_file = watched_file
        self._tasks: set[asyncio.Task[None]] = set()
        self._handlers: dict[str, Handler] = {
            "installation.created": self.on_installation_created,
            "installation.deleted": self.on_installation_deleted,
            "push": self.on_push,
            "issues.edited": self.on_issues_edited,
        }

    @property
    def pending(self) -> int:
        """Number of scheduled events still being processed."""
        return len(self._tasks)

    def schedule(self, event_name: str, payload: Mapping[str, Any]) -> asyncio.Task[None]:
        """Process an event in the background.

        The task is retained until it finishes so it cannot be garbage
        collected mid-flight.
        """
        task = asyncio.create_task(
            self.dispatch(event_name, payload), name=f"event-{event_name}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def dispatch(self, event_name: str, payload: Mapping[str, Any]) -> None:
        """Count an event and run its handler, if it has one.

        Handler errors are logged and never raised.
        """
        action = payload.get("action")
        action_label = action if isinstance(action, str) else ""
        installation_id = _installation_id(payload)
        self._metrics.record_action(installation_id, action_label)

        key = f"{event_name}.{action_label}" if action_label else event_name
        handler = self._handlers.get(key) or self._handlers.get(event_name)
        if handler is None:
            logger.debug("No handler for %s", key)
            return

        try:
            await handler(payload)
        except Exception:
            logger.exception(
                "Handler for %s failed",
                key,
                extra={"installation_id": installation_id},
            )

    async def on_installation_created(self, payload: Mapping[str, Any]) -> None:
        self._metrics.record_install()
        event = InstallationEvent.model_validate(payload)
        installation_id = event.installation.id
        if event.installation.account is None:
            raise ValueError(f"Installation {installation_id} payload has no account")
        account = event.installation.account.login
        log = logger.with_context(installation_id=installation_id)

        await observe_operation(
            self._credentials.issue_credential(installation_id, account),
            OperationLabels(installation_id=installation_id, method="createSecret"),
            self._metrics,
        )

        if not event.has_repository(REPORT_REPOSITORY):
            log.info("Creating '%s' repository in %s", REPORT_REPOSITORY, account)
            try:
                async with self._installations.session(installation_id) as (_, github):
                    await github.create_org_repository(account, REPORT_REPOSITORY)
            except (CredentialError, GitHubClientError) as e:
                log.warning("Error creating repository %s/%s: %s", account, REPORT_REPOSITORY, e)

        await self._pipeline.run(
            JobRequest(template=TaskTemplate.DUMP_CONFIG, installation_id=installation_id),
            "scheduleDumpConfig",
        )

    async def on_installation_deleted(self, payload: Mapping[str, Any]) -> None:
        self._metrics.record_uninstall()
        event = InstallationEvent.model_validate(payload)
        await observe_operation(
            self._credentials.revoke_credential(event.installation.id),
            OperationLabels(installation_id=event.installation.id, method="deleteSecret"),
            self._metrics,
        )

    async def _create_check_run(self, event: PushEvent) -> str:
        """Create the check run the TaskRun reports into; "" if that is not possible."""
        if not event.after or event.after == NULL_SHA:
            return ""
        owner = event.repository.owner.login
        repo = event.repository.name
        try:
            async with self._installations.session(event.installation.id) as (_, github):
                check_run = await github.create_check_run(
                    owner, repo, CHECK_RUN_NAME, event.after
                )
            return str(check_run["id"])
        except (CredentialError, GitHubClientError, KeyError) as e:
            logger.warning(
                "Could not create check run on %s/%s@%s: %s", owner, repo, event.after, e
            )
            return ""

    async def on_push(self, payload: Mapping[str, Any]) -> None:
        event = PushEvent.model_validate(payload)
        installation_id = event.installation.id
        log = logger.with_context(installation_id=installation_id)
        if self._watched_file not in event.touched_paths():
            log.info("No changes in %s, skipping run", self._watched_file)
            return

        try:
            await observe_operation(
                self._credentials.refresh_credential(
                    installation_id, event.repository.owner.login
                ),
                OperationLabels(installation_id=installation_id, method="updateSecret"),
                self._metrics,
            )
        except CredentialError as e:
            # The existing secret may still hold a usable token
            log.warning("Credential refresh failed, continuing with stored token: %s", e)

        check_run_id = await self._create_check_run(event)
        await self._pipeline.run(
            JobRequest(
                template=TaskTemplate.RUN,
                installation_id=installation_id,
                parameters={
                    "REPO_NAME": event.repository.name,
                    "CHECK_RUN_ID": check_run_id,
                },
            ),
            "schedulePushTask",
        )

    async def on_issues_edited(self, payload: Mapping[str, Any]) -> None:
        event = IssuesEvent.model_validate(payload)
        await self._retry_controller.handle_issue_edited(event)


__all__ = ["CHECK_RUN_NAME", "EventDispatcher"]
