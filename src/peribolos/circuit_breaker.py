"""Circuit breakers guarding the Kubernetes and GitHub APIs.

After ``failure_threshold`` consecutive failures a breaker opens and the REST
clients refuse requests without touching the network. Once
``recovery_timeout`` seconds have passed it lets ``half_open_max_calls`` trial
requests through: that many successes close it again, a single failure
reopens it.

A status poller counts every refused query against its error limit, so an open
Kubernetes breaker ends a poll quickly instead of hammering a broken API
server. All breakers live on the event loop thread; no locking is needed.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from peribolos.logging import get_logger

if TYPE_CHECKING:
    from peribolos.config import Config

logger = get_logger(__name__)


class CircuitState(Enum):
    """States of a circuit breaker."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerConfigError(ValueError):
    """Raised when circuit breaker configuration is invalid."""

    pass


def _require_positive_int(name: str, value: object) -> None:
    # bool is a subclass of int
    if isinstance(value, bool) or not isinstance(value, int):
        raise CircuitBreakerConfigError(f"{name} must be an integer, got {type(value).__name__}")
    if value <= 0:
        raise CircuitBreakerConfigError(f"{name} must be positive, got {value}")


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """Thresholds shared by every breaker of a registry.

    Raises:
        CircuitBreakerConfigError: If a threshold is not positive.
    """

    failure_threshold: int = 5
    recovery_timeout: float = 30.0
    half_open_max_calls: int = 3
    enabled: bool = True

    def __post_init__(self) -> None:
        _require_positive_int("failure_threshold", self.failure_threshold)
        _require_positive_int("half_open_max_calls", self.half_open_max_calls)
        if self.recovery_timeout <= 0:
            raise CircuitBreakerConfigError(
                f"recovery_timeout must be positive, got {self.recovery_timeout}"
            )

    @classmethod
    def from_config(cls, config: Config) -> CircuitBreakerConfig:
        """Build breaker thresholds from the ``PERIBOLOS_CIRCUIT_BREAKER_*`` settings."""
        return cls(
            failure_threshold=config.circuit_breaker_failure_threshold,
            recovery_timeout=config.circuit_breaker_recovery_timeout,
            half_open_max_calls=config.circuit_breaker_half_open_max_calls,
            enabled=config.circuit_breaker_enabled,
        )


class CircuitBreaker:
    """Breaker for one external service.

    The REST clients ask :meth:`allow_request` before each call and report the
    outcome with :meth:`record_success` or :meth:`record_failure`.
    """

    def __init__(self, service_name: str, config: CircuitBreakerConfig | None = None) -> None:
        self.service_name = service_name
        self.config = config or CircuitBreakerConfig()
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._trial_calls = 0
        self._trial_successes = 0
        self._opened_at = 0.0

    @property
    def state(self) -> CircuitState:
        """Current state; an open breaker turns half-open once its timeout expires."""
        if (
            self._state is CircuitState.OPEN
            and time.monotonic() - self._opened_at >= self.config.recovery_timeout
        ):
            self._enter(CircuitState.HALF_OPEN)
        return self._state

    @property
    def failure_count(self) -> int:
        """Consecutive failures recorded while closed."""
        return self._failures

    def _enter(self, state: CircuitState) -> None:
        logger.info(
            "[CIRCUIT_BREAKER] %s: %s -> %s", self.service_name, self._state.value, state.value
        )
        self._state = state
        if state is CircuitState.OPEN:
            self._opened_at = time.monotonic()
        elif state is CircuitState.HALF_OPEN:
            self._trial_calls = 0
            self._trial_successes = 0
        else:
            self._failures = 0

    def allow_request(self) -> bool:
        """Return True if a request may be sent now."""
        if not self.config.enabled:
            return True
        state = self.state
        if state is CircuitState.CLOSED:
            return True
        if state is CircuitState.HALF_OPEN and self._trial_calls < self.config.half_open_max_calls:
            self._trial_calls += 1
            return True
        logger.warning(
            "[CIRCUIT_BREAKER] %s: request rejected while %s", self.service_name, state.value
        )
        return False

    def record_success(self) -> None:
        """Record a successful call."""
        if not self.config.enabled:
            return
        if self._state is CircuitState.HALF_OPEN:
            self._trial_successes += 1
            if self._trial_successes >= self.config.half_open_max_calls:
                self._enter(CircuitState.CLOSED)
        else:
            self._failures = 0

    def record_failure(self, exception: BaseException | None = None) -> None:
        """Record a failed call, opening the breaker when the threshold is reached."""
        if not self.config.enabled:
            return
        logger.warning(
            "[CIRCUIT_BREAKER] %s: failure recorded: %r", self.service_name, exception
        )
        if self._state is CircuitState.HALF_OPEN:
            self._enter(CircuitState.OPEN)
            return
        self._failures += 1
        if self._state is CircuitState.CLOSED and self._failures >= self.config.failure_threshold:
            self._enter(CircuitState.OPEN)


class CircuitBreakerRegistry:
    """Hands out one breaker per service name, so clients of a service share it."""

    def __init__(self, default_config: CircuitBreakerConfig | None = None) -> None:
        self._default_config = default_config or CircuitBreakerConfig()
        self._breakers: dict[str, CircuitBreaker] = {}

    def get(self, service_name: str) -> CircuitBreaker:
        """Return the breaker for ``service_name``, creating it on first use."""
        breaker = self._breakers.get(service_name)
        if breaker is None:
            breaker = CircuitBreaker(service_name, self._default_config)
            self._breakers[service_name] = breaker
        return breaker
