"""Operation metrics for the TaskRun controller.

Metrics are recorded through an injected :class:`MetricsSink` with fixed label
schemas. The production sink, :class:`PrometheusMetricsSink`, owns a
``prometheus_client`` registry created once at startup; exposing that registry
is left to the hosting process.

Cluster calls are wrapped with :func:`observe_operation`, which records the
outcome of the awaited call and hands back its result or re-raises its
exception unchanged.
"""

from __future__ import annotations

from collections.abc import Awaitable
from dataclasses import dataclass
from typing import Protocol, TypeVar

from prometheus_client import CollectorRegistry, Counter

from peribolos.logging import get_logger
from peribolos.types import OperationStatus

logger = get_logger(__name__)

T = TypeVar("T")

# Value of the "operation" label for every wrapped cluster call
CLUSTER_OPERATION = "k8s"


@dataclass(frozen=True)
class OperationLabels:
    """Label schema of the ``operations_triggered`` counter.

    Attributes:
        installation_id: GitHub App installation the operation was done for.
        method: Operation name, e.g. ``createSecret`` or ``schedulePushTask``.
    """

    installation_id: int
    method: str


class MetricsSink(Protocol):
    """Interface for recording controller metrics."""

    def record_install(self) -> None:
        """Count an ``installation.created`` event."""
        ...

    def record_uninstall(self) -> None:
        """Count an ``installation.deleted`` event."""
        ...

    def record_action(self, installation_id: int | None, action: str) -> None:
        """Count any received webhook event."""
        ...

    def record_operation(self, labels: OperationLabels, status: OperationStatus) -> None:
        """Count a settled cluster operation."""
        ...


class PrometheusMetricsSink:
    """Metrics sink backed by ``prometheus_client`` counters.

    Counter names and labels match the dashboards built for the original
    operator, so they must not change.
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or CollectorRegistry()
        self._installs = Counter(
            "num_of_install_total",
            "Total number of installs received",
            registry=self.registry,
        )
        self._uninstalls = Counter(
            "num_of_uninstall_total",
            "Total number of uninstalls received",
            registry=self.registry,
        )
        self._actions = Counter(
            "num_of_actions_total",
            "Total number of actions received",
            labelnames=["install", "action"],
            registry=self.registry,
        )
        self._operations = Counter(
            "operations_triggered",
            "Metrics for action triggered by the operator with respect to the kubernetes operations.",
            labelnames=["install", "operation", "status", "method"],
            registry=self.registry,
        )

    def record_install(self) -> None:
        self._installs.inc()

    def record_uninstall(self) -> None:
        self._uninstalls.inc()

    def record_action(self, installation_id: int | None, action: str) -> None:
        install = "" if installation_id is None else str(installation_id)
        self._actions.labels(install=install, action=action).inc()

    def record_operation(self, labels: OperationLabels, status: OperationStatus) -> None:
        self._operations.labels(
            install=str(labels.installation_id),
            operation=CLUSTER_OPERATION,
            status=status.value,
            method=labels.method,
        ).inc()


async def observe_operation(
    operation: Awaitable[T],
    labels: OperationLabels,
    sink: MetricsSink,
) -> T:
    """Await a cluster operation and record its outcome.

    Args:
        operation: The awaitable to observe.
        labels: Labels identifying the operation.
        sink: Metrics sink receiving the outcome.

    Returns:
        Whatever the operation returns.

    Raises:
        Whatever the operation raises, unchanged.
    """
    try:
        result = await operation
    except BaseException:
        _record(sink, labels, OperationStatus.FAILED)
        raise
    _record(sink, labels, OperationStatus.SUCCEEDED)
    return result


def _record(sink: MetricsSink, labels: OperationLabels, status: OperationStatus) -> None:
    """Record an outcome; a broken sink must not alter the observed result."""
    try:
        sink.record_operation(labels, status)
    except Exception:
        logger.exception("Failed to record %s for %s", status.value, labels.method)
