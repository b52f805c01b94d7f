"""HTTP surface of the controller.

Routes:
- POST /: GitHub webhook intake (also served at /api/github/webhooks)
- GET /healthz: plain-text liveness check
- GET /health/live: liveness probe
- GET /health/ready: readiness probe (checks Kubernetes and GitHub)

Webhook deliveries are acknowledged with 202 as soon as they are parsed and
processed in the background; a delivery never waits for its TaskRun.
Signatures are not verified here, so the intake must only be reachable
through a trusted proxy.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, FastAPI, Header, HTTPException, Request, status
from fastapi.responses import PlainTextResponse

from peribolos.logging import get_logger

if TYPE_CHECKING:
    from peribolos.bootstrap import BootstrapContext
    from peribolos.dispatcher import EventDispatcher
    from peribolos.health import HealthChecker

logger = get_logger(__name__)

WEBHOOK_PATHS = ("/", "/api/github/webhooks")


def create_routes(dispatcher: EventDispatcher, health_checker: HealthChecker) -> APIRouter:
    """Create the webhook and health routes."""
    router = APIRouter()

    async def receive_webhook(
        request: Request,
        x_github_event: str | None = Header(default=None),
        x_github_delivery: str | None = Header(default=None),
    ) -> dict[str, Any]:
        """Accept a webhook delivery and process it in the background."""
        if not x_github_event:
            raise HTTPException(status_code=400, detail="Missing X-GitHub-Event header")
        try:
            payload = json.loads(await request.body())
        except ValueError as e:
            raise HTTPException(status_code=400, detail=f"Invalid JSON payload: {e}") from e
        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail="Payload must be a JSON object")

        logger.debug("Received %s delivery %s", x_github_event, x_github_delivery)
        dispatcher.schedule(x_github_event, payload)
        return {"status": "accepted", "event": x_github_event}

    for path in WEBHOOK_PATHS:
        router.add_api_route(
            path,
            receive_webhook,
            methods=["POST"],
            status_code=status.HTTP_202_ACCEPTED,
        )

    @router.get("/healthz", response_class=PlainTextResponse)
    async def healthz() -> str:
        return "OK"

    @router.get("/health/live")
    async def health_live() -> dict[str, Any]:
        """Liveness probe endpoint. Does not check external dependencies."""
        return health_checker.check_liveness().to_dict()

    @router.get("/health/ready")
    async def health_ready() -> dict[str, Any]:
        """Readiness probe endpoint.

        Example response:
            {
                "status": "healthy",
                "timestamp": 1706472123.456,
                "checks": {
                    "kubernetes": {"status": "up", "latency_ms": 12},
                    "github": {"status": "up", "latency_ms": 32}
                }
            }
        """
        return (await health_checker.check_readiness()).to_dict()

    return router


def create_app(context: BootstrapContext) -> FastAPI:
    """Create the FastAPI application for a bootstrapped controller."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        in_flight = context.pipeline.in_flight
        if context.dispatcher.pending or in_flight:
            logger.warning(
                "Shutting down with %s events pending; abandoning TaskRuns: %s",
                context.dispatcher.pending,
                ", ".join(sorted(in_flight)) or "none",
            )
        await context.aclose()

    app = FastAPI(
        title="peribolos controller",
        description="Runs peribolos TaskRuns for GitHub App events",
        lifespan=lifespan,
    )
    app.state.context = context
    app.include_router(create_routes(context.dispatcher, context.health_checker))
    return app


__all__ = ["WEBHOOK_PATHS", "create_app", "create_routes"]
