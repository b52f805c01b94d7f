"""Command-line interface argument parsing for the peribolos controller.

This module provides the CLI argument parser that handles:
- Environment file specification
- Log level override
- Listen address override
"""

from __future__ import annotations

import argparse
from pathlib import Path


def parse_args(args: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments.

    Args:
        args: Optional list of arguments to parse. If None, uses sys.argv.

    Returns:
        Parsed arguments namespace with the following attributes:
        - env_file: Path to .env file
        - log_level: Logging level
        - host: Address to listen on
        - port: Port to listen on
    """
    parser = argparse.ArgumentParser(
        description="peribolos controller - runs Tekton TaskRuns for GitHub App events",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Path to .env file (default: ./.env)",
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Log level (overrides PERIBOLOS_LOG_LEVEL)",
    )

    parser.add_argument(
        "--host",
        default=None,
        help="Address to listen on (overrides PERIBOLOS_HOST)",
    )

    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port to listen on (overrides PERIBOLOS_PORT)",
    )

    return parser.parse_args(args)


__all__ = ["parse_args"]
