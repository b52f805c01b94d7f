"""Configuration loading from environment variables."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

# Valid log levels
VALID_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})

# Port validation bounds
MIN_PORT = 1
MAX_PORT = 65535

# In-cluster service account mount
SERVICE_ACCOUNT_DIR = Path("/var/run/secrets/kubernetes.io/serviceaccount")
DEFAULT_TOKEN_PATH = SERVICE_ACCOUNT_DIR / "token"
DEFAULT_CA_PATH = SERVICE_ACCOUNT_DIR / "ca.crt"
DEFAULT_NAMESPACE_PATH = SERVICE_ACCOUNT_DIR / "namespace"

DEFAULT_KUBERNETES_API_URL = "https://kubernetes.default.svc"
DEFAULT_GITHUB_API_URL = "https://api.github.com"


@dataclass(frozen=True)
class Config:
    """Application configuration loaded from environment.

    This dataclass is frozen (immutable) to prevent accidental modification
    after creation.
    """

    # Logging
    log_level: str = "INFO"
    log_json: bool = False
    diagnostic_tags: str = ""

    # Webhook intake server
    host: str = "0.0.0.0"
    port: int = 3000

    # Kubernetes API configuration
    kubernetes_api_url: str = DEFAULT_KUBERNETES_API_URL
    namespace: str = "default"
    kubernetes_token_path: Path = DEFAULT_TOKEN_PATH
    kubernetes_ca_path: Path = DEFAULT_CA_PATH

    # GitHub REST API configuration
    github_api_url: str = DEFAULT_GITHUB_API_URL
    github_token: str = ""  # Static token handed out by the bundled token issuer

    # Orchestration
    watched_file: str = "peribolos.yaml"  # Push events touching this path trigger a run
    secret_prefix: str = "peribolos-token"  # Credential secrets are <prefix>-<installation id>
    poll_interval: float = 1.0  # seconds between TaskRun status queries
    poll_error_limit: int = 50  # status query errors tolerated before giving up
    log_excerpt_limit: int = 60000  # characters of pod log kept in a failure report

    # Circuit breaker configuration
    circuit_breaker_enabled: bool = True
    circuit_breaker_failure_threshold: int = 5
    circuit_breaker_recovery_timeout: float = 30.0
    circuit_breaker_half_open_max_calls: int = 3

    # Health check configuration
    health_check_enabled: bool = True
    health_check_timeout: float = 5.0

    @property
    def github_configured(self) -> bool:
        """Check if a static GitHub token is configured."""
        return bool(self.github_token)

    def secret_name(self, installation_id: int) -> str:
        """Return the credential secret name for an installation."""
        return f"{self.secret_prefix}-{installation_id}"


def _parse_positive_int(value: str, name: str, default: int) -> int:
    """Parse a string as a positive integer with validation.

    Args:
        value: The string value to parse.
        name: The name of the setting (for error messages).
        default: The default value to use if parsing fails.

    Returns:
        The parsed positive integer, or the default if invalid.
    """
    try:
        parsed = int(value)
        if parsed <= 0:
            logging.warning(
                "Invalid %s: %d is not positive, using default %d",
                name,
                parsed,
                default,
            )
            return default
        return parsed
    except ValueError:
        logging.warning(
            "Invalid %s: '%s' is not a valid integer, using default %d",
            name,
            value,
            default,
        )
        return default


def _parse_port(value: str, name: str, default: int) -> int:
    """Parse a string as a valid TCP port number with range validation."""
    try:
        parsed = int(value)
        if parsed < MIN_PORT or parsed > MAX_PORT:
            logging.warning(
                "Invalid %s: %d is not a valid port (must be %d-%d), using default %d",
                name,
                parsed,
                MIN_PORT,
                MAX_PORT,
                default,
            )
            return default
        return parsed
    except ValueError:
        logging.warning(
            "Invalid %s: '%s' is not a valid integer, using default %d",
            name,
            value,
            default,
        )
        return default


def _validate_log_level(value: str, default: str = "INFO") -> str:
    """Validate and normalize a log level string.

    Args:
        value: The log level string to validate.
        default: The default value to use if invalid.

    Returns:
        The validated log level (uppercase), or the default if invalid.
    """
    normalized = value.upper()
    if normalized not in VALID_LOG_LEVELS:
        logging.warning(
            "Invalid PERIBOLOS_LOG_LEVEL: '%s' is not valid, using default '%s'. Valid values: %s",
            value,
            default,
            ", ".join(sorted(VALID_LOG_LEVELS)),
        )
        return default
    return normalized


def _parse_bool(value: str) -> bool:
    """Parse a string as a boolean.

    Returns:
        True if value is "true", "1", or "yes" (case-insensitive), False otherwise.
    """
    return value.lower() in ("true", "1", "yes")


def _parse_positive_float(value: str, name: str, default: float) -> float:
    """Parse a string as a strictly positive float with validation."""
    try:
        parsed = float(value)
        if parsed <= 0:
            logging.warning(
                "Invalid %s: %f is not positive, using default %f",
                name,
                parsed,
                default,
            )
            return default
        return parsed
    except ValueError:
        logging.warning(
            "Invalid %s: '%s' is not a valid number, using default %f",
            name,
            value,
            default,
        )
        return default


def _read_namespace(path: Path, default: str = "default") -> str:
    """Read the namespace the controller runs in from the service account mount.

    Args:
        path: Path of the namespace file.
        default: Namespace used when the file is absent or empty.

    Returns:
        The namespace name.
    """
    try:
        namespace = path.read_text(encoding="utf-8").strip()
    except OSError:
        return default
    return namespace or default


def load_config(env_file: Path | None = None) -> Config:
    """Load configuration from environment variables.

    Args:
        env_file: Optional path to .env file. If not provided,
                  looks for .env in current directory.

    Returns:
        Config object with loaded values.

    Values are validated and defaults are used for invalid inputs.
    """
    if env_file:
        load_dotenv(env_file)
    else:
        load_dotenv()

    log_level = _validate_log_level(os.getenv("PERIBOLOS_LOG_LEVEL", "INFO"))
    log_json = _parse_bool(os.getenv("PERIBOLOS_LOG_JSON", ""))

    port = _parse_port(os.getenv("PERIBOLOS_PORT", "3000"), "PERIBOLOS_PORT", 3000)

    token_path = Path(os.getenv("KUBERNETES_TOKEN_PATH", str(DEFAULT_TOKEN_PATH)))
    ca_path = Path(os.getenv("KUBERNETES_CA_PATH", str(DEFAULT_CA_PATH)))
    namespace = os.getenv("KUBERNETES_NAMESPACE", "") or _read_namespace(DEFAULT_NAMESPACE_PATH)

    poll_interval = _parse_positive_float(
        os.getenv("PERIBOLOS_POLL_INTERVAL", "1.0"),
        "PERIBOLOS_POLL_INTERVAL",
        1.0,
    )
    poll_error_limit = _parse_positive_int(
        os.getenv("PERIBOLOS_POLL_ERROR_LIMIT", "50"),
        "PERIBOLOS_POLL_ERROR_LIMIT",
        50,
    )
    log_excerpt_limit = _parse_positive_int(
        os.getenv("PERIBOLOS_LOG_EXCERPT_LIMIT", "60000"),
        "PERIBOLOS_LOG_EXCERPT_LIMIT",
        60000,
    )

    circuit_breaker_enabled = _parse_bool(
        os.getenv("PERIBOLOS_CIRCUIT_BREAKER_ENABLED", "true")
    )
    circuit_breaker_failure_threshold = _parse_positive_int(
        os.getenv("PERIBOLOS_CIRCUIT_BREAKER_FAILURE_THRESHOLD", "5"),
        "PERIBOLOS_CIRCUIT_BREAKER_FAILURE_THRESHOLD",
        5,
    )
    circuit_breaker_recovery_timeout = _parse_positive_float(
        os.getenv("PERIBOLOS_CIRCUIT_BREAKER_RECOVERY_TIMEOUT", "30.0"),
        "PERIBOLOS_CIRCUIT_BREAKER_RECOVERY_TIMEOUT",
        30.0,
    )
    circuit_breaker_half_open_max_calls = _parse_positive_int(
        os.getenv("PERIBOLOS_CIRCUIT_BREAKER_HALF_OPEN_MAX_CALLS", "3"),
        "PERIBOLOS_CIRCUIT_BREAKER_HALF_OPEN_MAX_CALLS",
        3,
    )

    health_check_enabled = _parse_bool(os.getenv("PERIBOLOS_HEALTH_CHECK_ENABLED", "true"))
    health_check_timeout = _parse_positive_float(
        os.getenv("PERIBOLOS_HEALTH_CHECK_TIMEOUT", "5.0"),
        "PERIBOLOS_HEALTH_CHECK_TIMEOUT",
        5.0,
    )

    return Config(
        log_level=log_level,
        log_json=log_json,
        diagnostic_tags=os.getenv("PERIBOLOS_DIAGNOSTIC_TAGS", ""),
        host=os.getenv("PERIBOLOS_HOST", "0.0.0.0"),
        port=port,
        kubernetes_api_url=os.getenv("KUBERNETES_API_URL", DEFAULT_KUBERNETES_API_URL),
        namespace=namespace,
        kubernetes_token_path=token_path,
        kubernetes_ca_path=ca_path,
        github_api_url=os.getenv("GITHUB_API_URL", "") or DEFAULT_GITHUB_API_URL,
        github_token=os.getenv("GITHUB_TOKEN", ""),
        watched_file=os.getenv("PERIBOLOS_WATCHED_FILE", "peribolos.yaml"),
        secret_prefix=os.getenv("PERIBOLOS_SECRET_PREFIX", "peribolos-token"),
        poll_interval=poll_interval,
        poll_error_limit=poll_error_limit,
        log_excerpt_limit=log_excerpt_limit,
        circuit_breaker_enabled=circuit_breaker_enabled,
        circuit_breaker_failure_threshold=circuit_breaker_failure_threshold,
        circuit_breaker_recovery_timeout=circuit_breaker_recovery_timeout,
        circuit_breaker_half_open_max_calls=circuit_breaker_half_open_max_calls,
        health_check_enabled=health_check_enabled,
        health_check_timeout=health_check_timeout,
    )
