"""Tests for operation metrics."""

from __future__ import annotations

import pytest
from prometheus_client import CollectorRegistry

from peribolos.metrics import OperationLabels, PrometheusMetricsSink, observe_operation
from peribolos.types import OperationStatus
from tests.mocks import RecordingMetricsSink

LABELS = OperationLabels(installation_id=42, method="createSecret")


async def succeed() -> str:
    return "done"


async def fail() -> str:
    raise RuntimeError("cluster said no")


class TestObserveOperation:
    """Tests for observe_operation."""

    @pytest.mark.asyncio
    async def test_returns_result_and_records_success(self) -> None:
        sink = RecordingMetricsSink()

        assert await observe_operation(succeed(), LABELS, sink) == "done"
        assert sink.operations == [(LABELS, OperationStatus.SUCCEEDED)]

    @pytest.mark.asyncio
    async def test_reraises_original_exception_and_records_failure(self) -> None:
        sink = RecordingMetricsSink()
        coro = fail()

        with pytest.raises(RuntimeError, match="cluster said no"):
            await observe_operation(coro, LABELS, sink)
        assert sink.operations == [(LABELS, OperationStatus.FAILED)]

    @pytest.mark.asyncio
    async def test_broken_sink_does_not_change_the_result(self) -> None:
        class BrokenSink(RecordingMetricsSink):
            def record_operation(self, labels, status) -> None:  # type: ignore[no-untyped-def]
                raise ValueError("sink down")

        assert await observe_operation(succeed(), LABELS, BrokenSink()) == "done"


class TestPrometheusMetricsSink:
    """Tests for the prometheus_client backed sink."""

    def test_operation_counter_labels(self) -> None:
        registry = CollectorRegistry()
        sink = PrometheusMetricsSink(registry)

        sink.record_operation(LABELS, OperationStatus.SUCCEEDED)
        sink.record_operation(LABELS, OperationStatus.SUCCEEDED)
        sink.record_operation(LABELS, OperationStatus.FAILED)

        labels = {"install": "42", "operation": "k8s", "method": "createSecret"}
        assert (
            registry.get_sample_value(
                "operations_triggered_total", {**labels, "status": "Succeeded"}
            )
            == 2.0
        )
        assert (
            registry.get_sample_value("operations_triggered_total", {**labels, "status": "Failed"})
            == 1.0
        )

    def test_install_and_uninstall_counters(self) -> None:
        sink = PrometheusMetricsSink()

        sink.record_install()
        sink.record_install()
        sink.record_uninstall()

        assert sink.registry.get_sample_value("num_of_install_total") == 2.0
        assert sink.registry.get_sample_value("num_of_uninstall_total") == 1.0

    def test_action_counter(self) -> None:
        sink = PrometheusMetricsSink()

        sink.record_action(42, "created")
        sink.record_action(None, "")

        assert (
            sink.registry.get_sample_value(
                "num_of_actions_total", {"install": "42", "action": "created"}
            )
            == 1.0
        )
        assert (
            sink.registry.get_sample_value("num_of_actions_total", {"install": "", "action": ""})
            == 1.0
        )

    def test_sinks_have_independent_registries(self) -> None:
        first = PrometheusMetricsSink()
        second = PrometheusMetricsSink()

        first.record_install()

        assert second.registry.get_sample_value("num_of_install_total") == 0.0
