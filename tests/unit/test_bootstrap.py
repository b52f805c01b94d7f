"""Tests for CLI parsing and dependency wiring."""

from __future__ import annotations

from pathlib import Path

import pytest

from peribolos.bootstrap import (
    apply_cli_overrides,
    build_context,
    create_github_client_factory,
)
from peribolos.circuit_breaker import CircuitBreakerRegistry
from peribolos.cli import parse_args
from peribolos.credentials import KubernetesSecretCredentialProvider
from peribolos.github_client import GitHubRestClient
from tests.helpers import make_config
from tests.mocks import MockGitHubClient, MockKubernetesClient, RecordingMetricsSink


class TestParseArgs:
    """Tests for parse_args."""

    def test_defaults(self) -> None:
        parsed = parse_args([])

        assert parsed.env_file is None
        assert parsed.log_level is None
        assert parsed.host is None
        assert parsed.port is None

    def test_all_options(self) -> None:
        parsed = parse_args(
            ["--env-file", "prod.env", "--log-level", "DEBUG", "--host", "127.0.0.1", "--port", "8080"]
        )

        assert parsed.env_file == Path("prod.env")
        assert parsed.log_level == "DEBUG"
        assert parsed.host == "127.0.0.1"
        assert parsed.port == 8080

    def test_invalid_log_level_exits(self) -> None:
        with pytest.raises(SystemExit):
            parse_args(["--log-level", "TRACE"])


class TestApplyCliOverrides:
    """Tests for apply_cli_overrides."""

    def test_no_overrides_returns_same_config(self) -> None:
        config = make_config()
        assert apply_cli_overrides(config, parse_args([])) is config

    def test_overrides_applied(self) -> None:
        config = apply_cli_overrides(
            make_config(), parse_args(["--log-level", "WARNING", "--port", "9000"])
        )

        assert config.log_level == "WARNING"
        assert config.port == 9000
        assert config.host == "0.0.0.0"


class TestBuildContext:
    """Tests for build_context."""

    def test_wires_components(self) -> None:
        kubernetes = MockKubernetesClient()
        metrics = RecordingMetricsSink()

        context = build_context(
            make_config(secret_prefix="acme-token"),
            kubernetes_client=kubernetes,  # type: ignore[arg-type]
            github_client_factory=lambda token: MockGitHubClient(),
            metrics=metrics,
        )

        assert isinstance(context.credentials, KubernetesSecretCredentialProvider)
        assert context.credentials.secret_name(42) == "acme-token-42"
        assert context.metrics is metrics
        assert context.kubernetes_client is kubernetes
        assert context.health_checker.kubernetes_client is kubernetes
        assert isinstance(context.github_client, GitHubRestClient)

    def test_no_static_token_means_no_github_health_client(self) -> None:
        context = build_context(
            make_config(github_token=""),
            kubernetes_client=MockKubernetesClient(),  # type: ignore[arg-type]
            metrics=RecordingMetricsSink(),
        )

        assert context.github_client is None
        assert context.health_checker.github_client is None

    @pytest.mark.asyncio
    async def test_aclose_closes_kubernetes_client(self) -> None:
        kubernetes = MockKubernetesClient()
        context = build_context(
            make_config(github_token=""),
            kubernetes_client=kubernetes,  # type: ignore[arg-type]
            metrics=RecordingMetricsSink(),
        )

        await context.aclose()

        assert kubernetes.closed is True


class TestGitHubClientFactory:
    """Tests for create_github_client_factory."""

    def test_clients_share_circuit_breaker(self) -> None:
        registry = CircuitBreakerRegistry()
        factory = create_github_client_factory(
            make_config(github_api_url="https://ghe.example/api/v3"), registry
        )

        first = factory("token-a")
        second = factory("token-b")

        assert isinstance(first, GitHubRestClient)
        assert first.circuit_breaker is second.circuit_breaker is registry.get("github")
        assert first.base_url == "https://ghe.example/api/v3"
