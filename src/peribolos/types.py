"""Type definitions and enums for the TaskRun controller.

This module provides the value types that flow between the dispatcher, the
submitter, the status poller and the failure reporter, replacing magic strings
with type-safe constants.

Usage:
    from peribolos.types import JobRequest, TaskTemplate

    request = JobRequest(
        template=TaskTemplate.RUN,
        installation_id=42,
        parameters={"SECRET_NAME": "peribolos-token-42"},
    )
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum


class TaskTemplate(StrEnum):
    """Enum for the fixed set of Tekton Task templates this controller runs.

    Values are the full Task names referenced by ``spec.taskRef.name`` and used
    as the ``generateName`` prefix of every TaskRun.

    Values:
        RUN: Apply ``peribolos.yaml`` to the organization ("peribolos-run")
        DUMP_CONFIG: Dump the current organization config ("peribolos-dump-config")
    """

    RUN = "peribolos-run"
    DUMP_CONFIG = "peribolos-dump-config"

    @classmethod
    def values(cls) -> frozenset[str]:
        """Return all template names as a frozenset."""
        return frozenset(member.value for member in cls)


class TaskRunState(StrEnum):
    """States of a TaskRun as observed by the status poller.

    PENDING and RUNNING are non-terminal; SUCCEEDED and FAILED are terminal.
    """

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """Return True for SUCCEEDED and FAILED."""
        return self in (TaskRunState.SUCCEEDED, TaskRunState.FAILED)


class OperationStatus(StrEnum):
    """Outcome label recorded for wrapped cluster operations."""

    SUCCEEDED = "Succeeded"
    FAILED = "Failed"


@dataclass(frozen=True)
class JobRequest:
    """An immutable request to run one TaskRun for an installation.

    Attributes:
        template: The Task template to run.
        installation_id: GitHub App installation the run belongs to.
        parameters: TaskRun params as a name -> value mapping.
    """

    template: TaskTemplate
    installation_id: int
    parameters: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class PollOutcome:
    """Binary outcome of polling a TaskRun.

    ``failed`` is True both for a genuine ``Failed`` condition and for an
    exhausted error budget; ``state`` and ``error_count`` keep the distinction
    available for logging.
    """

    failed: bool
    state: TaskRunState
    error_count: int = 0


@dataclass(frozen=True)
class FiledIssue:
    """A failure report that was successfully filed."""

    owner: str
    repo: str
    number: int
    title: str
    url: str = ""


__all__ = [
    "FiledIssue",
    "JobRequest",
    "OperationStatus",
    "PollOutcome",
    "TaskRunState",
    "TaskTemplate",
]
