"""FastAPI application serving the operation endpoint and event stream.

Key Responsibilities:
    - Assemble the backing store, identity verifier, bus, rate limiter,
      context builder and orchestrator for one process
    - Configure logging, tracing and the middleware pipeline
    - Serve ``POST /v1/operations``, ``GET /v1/events``, ``/health`` and
      ``/metrics``

Collaborators:
    - Upstream: ASGI server (Uvicorn)
    - Downstream: :class:`~survey_gateway.gateway.orchestrator.Orchestrator`

Side Effects:
    - Installs the structlog configuration and, when enabled, a tracer provider
    - Closes the notification bus on shutdown

Example:
    >>> from survey_gateway.gateway.app import create_app
    >>> app = create_app()
    >>> # Run with: uvicorn survey_gateway.gateway.app:create_app --factory
"""

# ==============================================================================
# IMPORTS
# ==============================================================================

from __future__ import annotations

import json
import math
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from .. import __version__
from ..auth.jwt import IdentityVerifier, build_verifier
from ..auth.rate_limit import RateLimiter, build_rate_limiter
from ..config.settings import AppSettings, get_settings
from ..events.bus import NotificationBus, build_bus
from ..storage.base import BackingStore
from ..storage.memory import InMemoryStore
from ..utils.errors import RateLimited, ValidationFailed
from ..utils.logging import configure_logging, configure_tracing, get_logger
from .context import ContextBuilder
from .middleware import RequestLifecycleMiddleware, SecurityHeadersMiddleware
from .orchestrator import Orchestrator
from .resolvers import build_registries
from .sse import router as sse_router

logger = get_logger(__name__)


# ==============================================================================
# ERROR RESPONSES
# ==============================================================================


def rate_limited_response(exc: RateLimited) -> JSONResponse:
    return JSONResponse(
        {"data": None, "errors": [exc.payload().as_json()]},
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        headers={"Retry-After": str(max(1, math.ceil(exc.retry_after)))},
    )


def bad_request(message: str) -> JSONResponse:
    error = ValidationFailed(message).payload()
    return JSONResponse(
        {"data": None, "errors": [error.as_json()]}, status_code=status.HTTP_400_BAD_REQUEST
    )


# ==============================================================================
# APPLICATION FACTORY
# ==============================================================================


def create_app(
    *,
    settings: AppSettings | None = None,
    store: BackingStore | None = None,
    bus: NotificationBus | None = None,
    verifier: IdentityVerifier | None = None,
    rate_limiter: RateLimiter | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.logging)
    configure_tracing(settings.service_name, settings.telemetry)

    store = store or InMemoryStore()
    bus = bus or build_bus(settings)
    contexts = ContextBuilder(
        store, verifier=verifier or build_verifier(settings), bus=bus, settings=settings
    )
    operations, types = build_registries()
    orchestrator = Orchestrator(
        contexts,
        operations=operations,
        types=types,
        rate_limiter=rate_limiter or build_rate_limiter(settings),
    )

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        logger.info("gateway.startup", environment=settings.environment.value, operations=len(operations))
        yield
        await bus.close()
        logger.info("gateway.shutdown")

    app = FastAPI(title="Survey Gateway", version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store
    app.state.bus = bus
    app.state.contexts = contexts
    app.state.orchestrator = orchestrator

    app.add_middleware(
        RequestLifecycleMiddleware,
        correlation_header=settings.logging.correlation_id_header,
    )
    app.add_middleware(
        SecurityHeadersMiddleware,
        headers_config=settings.security.headers,
        enforce_https=settings.security.enforce_https,
    )
    app.include_router(sse_router)

    @app.post("/v1/operations")
    async def run_operations(request: Request) -> Any:
        try:
            payload = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            return bad_request("Request body must be valid JSON")
        try:
            return await orchestrator.handle(
                payload,
                request.headers.get("authorization"),
                client_ip=request.client.host if request.client else None,
                correlation_id=getattr(request.state, "correlation_id", None),
            )
        except RateLimited as exc:
            return rate_limited_response(exc)

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {"status": "ok", "version": __version__, "operations": len(operations)}

    @app.get("/metrics", include_in_schema=False)
    async def metrics() -> Response:
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return app


__all__ = ["create_app"]
