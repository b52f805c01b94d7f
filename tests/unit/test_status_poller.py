"""Tests for the TaskRun status poller."""

from __future__ import annotations

import httpx
import pytest

from peribolos.errors import TransportError
from peribolos.kubernetes_client import KubernetesClientError, KubernetesRestClient
from peribolos.status_poller import TaskRunPoller, evaluate_status
from peribolos.types import TaskRunState
from tests.helpers import no_sleep
from tests.mocks import MockKubernetesClient, status_document


class TestEvaluateStatus:
    """Tests for deriving the state from a status document."""

    def test_no_conditions_is_pending(self) -> None:
        assert evaluate_status({"status": {}}) == TaskRunState.PENDING
        assert evaluate_status({}) == TaskRunState.PENDING

    def test_running(self) -> None:
        assert evaluate_status(status_document("Running")) == TaskRunState.RUNNING

    def test_succeeded(self) -> None:
        assert evaluate_status(status_document("Succeeded", "True")) == TaskRunState.SUCCEEDED

    def test_failed(self) -> None:
        assert evaluate_status(status_document("Failed", "False")) == TaskRunState.FAILED

    def test_timeout_counts_as_failed(self) -> None:
        assert evaluate_status(status_document("TaskRunTimeout", "False")) == TaskRunState.FAILED

    @pytest.mark.parametrize(
        "document",
        [
            "not a dict",
            {"status": "broken"},
            {"status": {"conditions": "broken"}},
            {"status": {"conditions": ["broken"]}},
        ],
    )
    def test_malformed_documents_raise(self, document: object) -> None:
        with pytest.raises(TransportError):
            evaluate_status(document)


class TestTaskRunPoller:
    """Tests for TaskRunPoller.wait."""

    @pytest.mark.asyncio
    async def test_succeeded_run(self) -> None:
        kubernetes = MockKubernetesClient(
            statuses=[
                status_document(None),
                status_document("Running"),
                status_document("Succeeded", "True"),
            ]
        )
        poller = TaskRunPoller(kubernetes, sleep=no_sleep)  # type: ignore[arg-type]

        outcome = await poller.wait("peribolos-run-ab3f9")

        assert outcome.failed is False
        assert outcome.state == TaskRunState.SUCCEEDED
        assert len(kubernetes.status_queries) == 3

    @pytest.mark.asyncio
    async def test_failed_run(self) -> None:
        kubernetes = MockKubernetesClient(statuses=[status_document("Failed", "False")])
        poller = TaskRunPoller(kubernetes, sleep=no_sleep)  # type: ignore[arg-type]

        outcome = await poller.wait("peribolos-run-ab3f9")

        assert outcome.failed is True
        assert outcome.state == TaskRunState.FAILED
        assert outcome.error_count == 0

    @pytest.mark.asyncio
    async def test_always_erroring_stub_makes_exactly_fifty_queries(self) -> None:
        kubernetes = MockKubernetesClient(statuses=[KubernetesClientError("unreachable")])
        poller = TaskRunPoller(kubernetes, sleep=no_sleep)  # type: ignore[arg-type]

        outcome = await poller.wait("peribolos-run-ab3f9")

        assert outcome.failed is True
        assert outcome.error_count == 50
        assert len(kubernetes.status_queries) == 50

    @pytest.mark.asyncio
    async def test_custom_error_limit(self) -> None:
        kubernetes = MockKubernetesClient(statuses=[{"status": "garbage"}])
        poller = TaskRunPoller(kubernetes, sleep=no_sleep)  # type: ignore[arg-type]

        outcome = await poller.wait("peribolos-run-ab3f9", error_count_limit=3)

        assert outcome.failed is True
        assert len(kubernetes.status_queries) == 3

    @pytest.mark.asyncio
    async def test_transient_errors_do_not_fail_the_run(self) -> None:
        kubernetes = MockKubernetesClient(
            statuses=[
                KubernetesClientError("blip"),
                KubernetesClientError("blip"),
                status_document("Running"),
                status_document("Succeeded", "True"),
            ]
        )
        poller = TaskRunPoller(kubernetes, sleep=no_sleep)  # type: ignore[arg-type]

        outcome = await poller.wait("peribolos-run-ab3f9", error_count_limit=3)

        assert outcome.failed is False
        assert outcome.error_count == 2

    @pytest.mark.asyncio
    async def test_sleeps_between_polls_with_interval(self) -> None:
        kubernetes = MockKubernetesClient(
            statuses=[status_document("Running"), status_document("Succeeded", "True")]
        )
        delays: list[float] = []

        async def record_sleep(delay: float) -> None:
            delays.append(delay)

        poller = TaskRunPoller(kubernetes, sleep=record_sleep)  # type: ignore[arg-type]
        await poller.wait("peribolos-run-ab3f9", poll_interval=2.5)

        assert delays == [2.5]

    @pytest.mark.asyncio
    async def test_unreadable_status_body_counts_as_error(self) -> None:
        queries: list[httpx.Request] = []

        def proxy_error(request: httpx.Request) -> httpx.Response:
            queries.append(request)
            return httpx.Response(200, text="<html>proxy error</html>")

        client = KubernetesRestClient(
            namespace="peribolos",
            base_url="https://k8s.test",
            transport=httpx.MockTransport(proxy_error),
        )
        poller = TaskRunPoller(client, sleep=no_sleep)

        outcome = await poller.wait("peribolos-run-ab3f9", error_count_limit=3)
        await client.aclose()

        assert outcome.failed is True
        assert outcome.error_count == 3
        assert len(queries) == 3
