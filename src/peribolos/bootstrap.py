"""Bootstrap and dependency wiring for the peribolos controller.

This module is the composition root. It loads configuration, configures
logging and builds, in dependency order:

- the circuit breaker registry (one breaker each for Kubernetes and GitHub)
- the Kubernetes REST client, authenticated with the pod's service account
- the credential provider and installation-scoped GitHub clients
- the metrics sink
- the TaskRun pipeline, retry controller and event dispatcher
- the health checker

Circuit breakers are injected into the clients rather than held globally, so
every client talking to one service shares that service's breaker.
"""

from __future__ import annotations

import argparse
from dataclasses import replace
from typing import Any

from peribolos.circuit_breaker import CircuitBreakerConfig, CircuitBreakerRegistry
from peribolos.config import Config, load_config
from peribolos.credentials import (
    CredentialProvider,
    KubernetesSecretCredentialProvider,
    StaticTokenIssuer,
    TokenIssuer,
)
from peribolos.dispatcher import EventDispatcher
from peribolos.failure_reporter import FailureReporter
from peribolos.github_client import GitHubRestClient
from peribolos.health import HealthChecker
from peribolos.installations import GitHubClientFactory, InstallationClients
from peribolos.kubernetes_client import KubernetesRestClient
from peribolos.logging import get_logger, setup_logging
from peribolos.metrics import MetricsSink, PrometheusMetricsSink
from peribolos.pipeline import TaskRunPipeline
from peribolos.retry_controller import RetryController
from peribolos.status_poller import TaskRunPoller
from peribolos.submitter import TaskRunSubmitter

logger = get_logger(__name__)


class BootstrapContext:
    """Container for all bootstrapped dependencies."""

    def __init__(
        self,
        config: Config,
        circuit_breaker_registry: CircuitBreakerRegistry,
        kubernetes_client: KubernetesRestClient,
        credentials: CredentialProvider,
        metrics: MetricsSink,
        pipeline: TaskRunPipeline,
        dispatcher: EventDispatcher,
        health_checker: HealthChecker,
        github_client: GitHubRestClient | None = None,
    ) -> None:
        """Initialize the bootstrap context.

        Args:
            config: Application configuration.
            circuit_breaker_registry: Registry for managing circuit breakers.
            kubernetes_client: Client for the Kubernetes API.
            credentials: Provider of per-installation credentials.
            metrics: Metrics sink.
            pipeline: Submit/poll/report pipeline.
            dispatcher: Webhook event dispatcher.
            health_checker: Readiness and liveness checks.
            github_client: Optional client using the static token, used for
                health checks only.
        """
        self.config = config
        self.circuit_breaker_registry = circuit_breaker_registry
        self.kubernetes_client = kubernetes_client
        self.credentials = credentials
        self.metrics = metrics
        self.pipeline = pipeline
        self.dispatcher = dispatcher
        self.health_checker = health_checker
        self.github_client = github_client

    async def aclose(self) -> None:
        """Close the long-lived HTTP clients."""
        await self.kubernetes_client.aclose()
        if self.github_client is not None:
            await self.github_client.aclose()


def apply_cli_overrides(config: Config, parsed: argparse.Namespace) -> Config:
    """Apply CLI argument overrides to the configuration.

    Args:
        config: Base configuration loaded from environment.
        parsed: Parsed command-line arguments.

    Returns:
        New Config instance with CLI overrides applied.
    """
    overrides: dict[str, Any] = {}

    if parsed.log_level:
        overrides["log_level"] = parsed.log_level
    if parsed.host:
        overrides["host"] = parsed.host
    if parsed.port:
        overrides["port"] = parsed.port

    if overrides:
        return replace(config, **overrides)
    return config


def create_kubernetes_client(
    config: Config,
    circuit_breaker_registry: CircuitBreakerRegistry | None = None,
) -> KubernetesRestClient:
    """Create the Kubernetes client from the mounted service account."""
    return KubernetesRestClient.from_service_account(
        namespace=config.namespace,
        base_url=config.kubernetes_api_url,
        token_path=config.kubernetes_token_path,
        ca_path=config.kubernetes_ca_path,
        circuit_breaker=(
            circuit_breaker_registry.get("kubernetes") if circuit_breaker_registry else None
        ),
    )


def create_github_client_factory(
    config: Config,
    circuit_breaker_registry: CircuitBreakerRegistry | None = None,
) -> GitHubClientFactory:
    """Return a factory building GitHub clients that share one circuit breaker."""
    github_circuit_breaker = (
        circuit_breaker_registry.get("github") if circuit_breaker_registry else None
    )

    def factory(token: str) -> GitHubRestClient:
        return GitHubRestClient(
            token=token,
            base_url=config.github_api_url,
            circuit_breaker=github_circuit_breaker,
        )

    return factory


def build_context(
    config: Config,
    kubernetes_client: KubernetesRestClient | None = None,
    github_client_factory: GitHubClientFactory | None = None,
    token_issuer: TokenIssuer | None = None,
    metrics: MetricsSink | None = None,
) -> BootstrapContext:
    """Wire all components for a configuration.

    Every collaborator can be replaced, which tests use to substitute fakes.
    """
    registry = CircuitBreakerRegistry(CircuitBreakerConfig.from_config(config))
    kubernetes = kubernetes_client or create_kubernetes_client(config, registry)
    client_factory = github_client_factory or create_github_client_factory(config, registry)
    metrics_sink = metrics if metrics is not None else PrometheusMetricsSink()

    credentials = KubernetesSecretCredentialProvider(
        client=kubernetes,
        token_issuer=token_issuer or StaticTokenIssuer(config.github_token),
        secret_prefix=config.secret_prefix,
    )
    installations = InstallationClients(credentials, client_factory)

    pipeline = TaskRunPipeline(
        submitter=TaskRunSubmitter(kubernetes, credentials.secret_name),
        poller=TaskRunPoller(kubernetes),
        reporter=FailureReporter(
            kubernetes,
            installations,
            log_excerpt_limit=config.log_excerpt_limit,
        ),
        metrics=metrics_sink,
        error_count_limit=config.poll_error_limit,
        poll_interval=config.poll_interval,
    )
    dispatcher = EventDispatcher(
        pipeline=pipeline,
        retry_controller=RetryController(pipeline, installations),
        credentials=credentials,
        installations=installations,
        metrics=metrics_sink,
        watched_file=config.watched_file,
    )

    github_client: GitHubRestClient | None = None
    if config.github_configured:
        github_client = GitHubRestClient(
            token=config.github_token,
            base_url=config.github_api_url,
            circuit_breaker=registry.get("github"),
        )

    return BootstrapContext(
        config=config,
        circuit_breaker_registry=registry,
        kubernetes_client=kubernetes,
        credentials=credentials,
        metrics=metrics_sink,
        pipeline=pipeline,
        dispatcher=dispatcher,
        health_checker=HealthChecker.from_config(config, kubernetes, github_client),
        github_client=github_client,
    )


def bootstrap(parsed: argparse.Namespace) -> BootstrapContext:
    """Load configuration, set up logging and wire the controller.

    Args:
        parsed: Parsed command-line arguments.

    Returns:
        BootstrapContext with all dependencies initialized.
    """
    config = apply_cli_overrides(load_config(parsed.env_file), parsed)
    setup_logging(
        config.log_level,
        json_format=config.log_json,
        diagnostic_tags=config.diagnostic_tags,
    )

    logger.info(
        "Starting peribolos controller in namespace %s (watching %s)",
        config.namespace,
        config.watched_file,
    )
    if not config.github_configured:
        logger.warning(
            "GITHUB_TOKEN not set. Credential secrets cannot be issued until a token is configured."
        )

    return build_context(config)


__all__ = [
    "BootstrapContext",
    "apply_cli_overrides",
    "bootstrap",
    "build_context",
    "create_github_client_factory",
    "create_kubernetes_client",
]
