"""Application entry point for the peribolos controller.

Parses the command line, bootstraps the dependencies and serves the webhook
intake with uvicorn until interrupted.
"""

from __future__ import annotations

import sys

import uvicorn

from peribolos.bootstrap import bootstrap
from peribolos.cli import parse_args
from peribolos.logging import get_logger
from peribolos.server import create_app

logger = get_logger(__name__)


def main(args: list[str] | None = None) -> int:
    """Main entry point for the application.

    Args:
        args: Optional list of command-line arguments.

    Returns:
        Exit code for the application.
    """
    parsed = parse_args(args)
    context = bootstrap(parsed)

    app = create_app(context)
    logger.info("Listening on %s:%s", context.config.host, context.config.port)
    uvicorn.run(
        app,
        host=context.config.host,
        port=context.config.port,
        log_level=context.config.log_level.lower(),
        access_log=False,
        log_config=None,
    )
    return 0


__all__ = ["main"]


if __name__ == "__main__":
    sys.exit(main())
