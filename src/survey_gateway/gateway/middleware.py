"""HTTP middleware: request lifecycle tracking and security headers.

Key Responsibilities:
    - Bind a correlation id to every request and echo it on the response
    - Log ``gateway.request``/``gateway.response`` and record HTTP metrics
    - Apply HSTS, CSP and related headers; optionally refuse plain HTTP

Collaborators:
    - Upstream: ASGI server
    - Downstream: Route handlers in :mod:`survey_gateway.gateway.app`

Thread Safety:
    - Request state lives in context variables and ``request.state``
"""

from __future__ import annotations

# ==============================================================================
# IMPORTS
# ==============================================================================

from time import perf_counter
from uuid import uuid4

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from ..config.settings import SecurityHeaderSettings
from ..observability.metrics import record_request
from ..utils.errors import ValidationFailed
from ..utils.logging import bind_correlation_id, get_logger, reset_correlation_id

logger = get_logger(__name__)


# ==============================================================================
# MIDDLEWARE IMPLEMENTATION
# ==============================================================================


class RequestLifecycleMiddleware(BaseHTTPMiddleware):
    """Binds a correlation id and timing information to each request."""

    def __init__(self, app, *, correlation_header: str | None = None):  # type: ignore[override]
        super().__init__(app)
        self._correlation_header = correlation_header or "X-Correlation-ID"

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        correlation_id = request.headers.get(self._correlation_header) or str(uuid4())
        request.state.correlation_id = correlation_id
        token = bind_correlation_id(correlation_id)
        started = perf_counter()
        route = request.url.path
        logger.info("gateway.request", method=request.method, path=route)
        try:
            response = await call_next(request)
        except Exception:
            duration = perf_counter() - started
            record_request(request.method, route, 500, duration)
            logger.exception(
                "gateway.request.error",
                method=request.method,
                path=route,
                duration_ms=round(duration * 1000, 2),
            )
            reset_correlation_id(token)
            raise

        duration = perf_counter() - started
        record_request(request.method, route, response.status_code, duration)
        response.headers.setdefault(self._correlation_header, correlation_id)
        response.headers.setdefault("X-Response-Time-Ms", f"{duration * 1000:.2f}")
        logger.info(
            "gateway.response",
            method=request.method,
            path=route,
            status_code=response.status_code,
            duration_ms=round(duration * 1000, 2),
        )
        reset_correlation_id(token)
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    def __init__(  # type: ignore[override]
        self, app: FastAPI, *, headers_config: SecurityHeaderSettings, enforce_https: bool = False
    ) -> None:
        super().__init__(app)
        self._cfg = headers_config
        self._enforce_https = enforce_https

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        if self._enforce_https and request.url.scheme != "https":
            if request.headers.get("x-forwarded-proto") != "https":
                error = ValidationFailed("HTTPS is required").payload()
                return JSONResponse(
                    {"data": None, "errors": [error.as_json()]},
                    status_code=status.HTTP_400_BAD_REQUEST,
                )
        response = await call_next(request)
        response.headers.setdefault(
            "Strict-Transport-Security", f"max-age={self._cfg.hsts_max_age}; includeSubDomains"
        )
        response.headers.setdefault("Content-Security-Policy", self._cfg.content_security_policy)
        response.headers.setdefault("X-Frame-Options", self._cfg.frame_options)
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        return response


__all__ = ["RequestLifecycleMiddleware", "SecurityHeadersMiddleware"]
