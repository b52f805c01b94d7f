"""Structured logging configuration for the TaskRun controller."""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import MutableMapping
from datetime import UTC, datetime
from typing import Any

# Context fields rendered by both formatters when present on a record
CONTEXT_FIELDS = ("installation_id", "template", "task_run", "issue")


class DiagnosticFilter(logging.Filter):
    """Filter that gates debug log messages based on diagnostic tags.

    DEBUG records carrying a ``diagnostic_tag`` attribute (set via ``extra``)
    are only emitted when their tag is enabled. Records at other levels, or
    without a tag, always pass through.

    The per-poll status line of the TaskRun poller is tagged ``polling`` so
    that a busy controller does not flood DEBUG output::

        logger.debug("Status of %s: %s", name, reason, extra={"diagnostic_tag": "polling"})

    Configuration::

        PERIBOLOS_DIAGNOSTIC_TAGS=polling   # enable specific tags
        PERIBOLOS_DIAGNOSTIC_TAGS=*         # enable all tags
    """

    def __init__(self, enabled_tags: frozenset[str] | None = None) -> None:
        super().__init__()
        self.enabled_tags: frozenset[str] = enabled_tags or frozenset()
        self.allow_all: bool = "*" in self.enabled_tags

    def filter(self, record: logging.LogRecord) -> bool:
        """Decide whether the log record should be emitted."""
        if record.levelno != logging.DEBUG:
            return True

        tag: str | None = getattr(record, "diagnostic_tag", None)
        if tag is None:
            return True

        if self.allow_all:
            return True

        return tag in self.enabled_tags

    @classmethod
    def from_config_string(cls, tags_csv: str) -> DiagnosticFilter:
        """Create a filter from a comma-separated configuration string.

        Args:
            tags_csv: Comma-separated list of tags. ``"*"`` enables all tags,
                an empty string enables none.

        Returns:
            A configured ``DiagnosticFilter`` instance.
        """
        if not tags_csv.strip():
            return cls(frozenset())
        tags = frozenset(t.strip() for t in tags_csv.split(",") if t.strip())
        return cls(tags)


class StructuredFormatter(logging.Formatter):
    """Formatter that outputs structured log messages.

    Includes timestamp, level, component, message, and any extra context.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record with structured output.

        Args:
            record: The log record to format.

        Returns:
            Formatted log string.
        """
        # Extract component from logger name (e.g., "peribolos.dispatcher" -> "dispatcher")
        component = record.name.split(".")[-1] if "." in record.name else record.name

        timestamp = datetime.fromtimestamp(record.created, tz=UTC).strftime("%Y-%m-%d %H:%M:%S.%f")[
            :-3
        ]

        parts = [
            f"{timestamp}",
            f"[{record.levelname:8}]",
            f"[{component:16}]",
        ]

        context_parts = []
        for key in CONTEXT_FIELDS:
            if hasattr(record, key):
                value = getattr(record, key)
                context_parts.append(f"{key}={value}")

        if context_parts:
            parts.append(f"[{' '.join(context_parts)}]")

        parts.append(record.getMessage())

        if record.exc_info:
            parts.append(self.formatException(record.exc_info))

        return " ".join(parts)


class JSONFormatter(logging.Formatter):
    """Formatter that outputs JSON log messages for machine parsing."""

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record as JSON.

        Args:
            record: The log record to format.

        Returns:
            JSON-formatted log string.
        """
        component = record.name.split(".")[-1] if "." in record.name else record.name

        log_data: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "component": component,
            "message": record.getMessage(),
        }

        for key in (*CONTEXT_FIELDS, "event", "status"):
            if hasattr(record, key):
                log_data[key] = getattr(record, key)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class ContextAdapter(logging.LoggerAdapter[logging.Logger]):
    """Logger adapter that adds context to all log messages.

    Usage:
        logger = get_logger(__name__)
        ctx_logger = logger.with_context(installation_id=42, template="peribolos-run")
        ctx_logger.info("Submitting TaskRun")
    """

    def process(
        self, msg: str, kwargs: MutableMapping[str, Any]
    ) -> tuple[str, MutableMapping[str, Any]]:
        """Add context to the log record."""
        extra = kwargs.get("extra", {})
        if self.extra is not None:
            extra.update(self.extra)
        kwargs["extra"] = extra
        return msg, kwargs

    def with_context(self, **context: Any) -> ContextAdapter:
        """Create a new adapter extending this adapter's context."""
        merged = dict(self.extra or {})
        merged.update(context)
        return ContextAdapter(self.logger, merged)


class PeribolosLogger(logging.Logger):
    """Custom logger with context support."""

    def with_context(self, **context: Any) -> ContextAdapter:
        """Create a logger adapter with additional context.

        Args:
            **context: Context fields to add to all log messages.

        Returns:
            ContextAdapter with the specified context.
        """
        return ContextAdapter(self, context)


# Register our custom logger class
logging.setLoggerClass(PeribolosLogger)


def get_logger(name: str) -> PeribolosLogger:
    """Get a logger with the custom PeribolosLogger class.

    Args:
        name: Logger name (typically __name__).

    Returns:
        PeribolosLogger instance.
    """
    return logging.getLogger(name)  # type: ignore[return-value]


def setup_logging(
    level: str = "INFO",
    json_format: bool = False,
    replace_handlers: bool = True,
    diagnostic_tags: str = "",
) -> None:
    """Configure logging for the application.

    Args:
        level: Log level string (DEBUG, INFO, WARNING, ERROR).
        json_format: If True, output JSON-formatted logs.
        replace_handlers: If True, remove existing handlers before adding new ones.
        diagnostic_tags: Comma-separated list of diagnostic tags to enable.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    if replace_handlers:
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(numeric_level)

    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(StructuredFormatter())

    handler.addFilter(DiagnosticFilter.from_config_string(diagnostic_tags))

    root_logger.addHandler(handler)

    logging.getLogger("peribolos").setLevel(numeric_level)
    # httpx logs every request at INFO; the clients log what matters themselves
    logging.getLogger("httpx").setLevel(max(numeric_level, logging.WARNING))
