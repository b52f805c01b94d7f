"""Exception taxonomy for the TaskRun controller.

Client-level failures (HTTP transport, status codes, open circuits) are raised
by the REST clients as :class:`~peribolos.kubernetes_client.KubernetesClientError`
and :class:`~peribolos.github_client.GitHubClientError`. The pipeline components
translate them into the domain errors below so callers can decide, per error
kind, whether to surface, absorb or drop.
"""

from __future__ import annotations


class PeribolosError(Exception):
    """Base class for all controller errors."""

    pass


class SubmissionError(PeribolosError):
    """Raised when the cluster API rejects creation of a TaskRun.

    Surfaced to the caller and never retried by the submitter itself.
    """

    def __init__(self, template: str, message: str) -> None:
        self.template = template
        super().__init__(f"Failed to submit TaskRun for {template}: {message}")


class TransportError(PeribolosError):
    """Raised when a status query cannot be completed or parsed.

    The status poller absorbs these into its error counter; they never escape
    :meth:`~peribolos.status_poller.TaskRunPoller.wait`.
    """

    pass


class ReportingError(PeribolosError):
    """Raised when the data needed for a failure report cannot be gathered."""

    pass


class CredentialError(PeribolosError):
    """Raised when an installation credential cannot be issued, read or revoked."""

    pass


__all__ = [
    "CredentialError",
    "PeribolosError",
    "ReportingError",
    "SubmissionError",
    "TransportError",
]
