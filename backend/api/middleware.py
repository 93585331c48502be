"""
API middleware stack.

- Request ID injection (X-Request-ID header), bound to every log line
- Structured request/response logging
- Domain and global exception handlers
- CORS configuration
"""
from __future__ import annotations

import time
import uuid

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from shared.config import get_settings
from shared.errors import (
    ActionNotFoundError,
    FeedUnavailableError,
    GameNotFoundError,
    MonitorError,
    RefreshInProgressError,
    StoreError,
)
from shared.utils.logging import get_logger

logger = get_logger(__name__)

QUIET_PATHS = ("/health", "/healthz", "/metrics", "/ready")

# Most specific first; the first isinstance match wins.
ERROR_STATUS: tuple[tuple[type[MonitorError], int, str], ...] = (
    (GameNotFoundError, 404, "game_not_found"),
    (ActionNotFoundError, 404, "action_not_found"),
    (RefreshInProgressError, 409, "refresh_in_progress"),
    (FeedUnavailableError, 502, "feed_unavailable"),
    (StoreError, 503, "store_unavailable"),
)


def error_status(exc: MonitorError) -> tuple[int, str]:
    for exc_type, status, code in ERROR_STATUS:
        if isinstance(exc, exc_type):
            return status, code
    return 400, "monitor_error"


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Injects a unique X-Request-ID header into every request/response."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex[:16]
        request.state.request_id = request_id

        with structlog.contextvars.bound_contextvars(request_id=request_id):
            response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs structured request/response information."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if path in QUIET_PATHS:
            return await call_next(request)

        start = time.monotonic()
        response = await call_next(request)
        logger.info(
            "http_request",
            method=request.method,
            path=path,
            status=response.status_code,
            duration_ms=round((time.monotonic() - start) * 1000, 2),
            request_id=getattr(request.state, "request_id", "unknown"),
            client=request.client.host if request.client else "unknown",
        )
        return response


def setup_exception_handlers(app: FastAPI) -> None:
    """Register domain and global exception handlers."""

    @app.exception_handler(MonitorError)
    async def monitor_error_handler(request: Request, exc: MonitorError) -> JSONResponse:
        status, code = error_status(exc)
        log = logger.error if status >= 500 else logger.info
        log("request_failed", path=request.url.path, error=code, detail=str(exc))
        return JSONResponse(
            status_code=status,
            content={
                "error": code,
                "message": str(exc),
                "request_id": getattr(request.state, "request_id", "unknown"),
            },
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        request_id = getattr(request.state, "request_id", "unknown")
        logger.error(
            "unhandled_exception",
            path=request.url.path,
            error=str(exc),
            request_id=request_id,
            exc_info=True,
        )
        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred",
                "request_id": request_id,
            },
        )


def setup_cors(app: FastAPI) -> None:
    """Configure CORS middleware for the review dashboard."""
    settings = get_settings()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )


def setup_middleware(app: FastAPI) -> None:
    """Apply all middleware to the FastAPI app in the correct order."""
    # 1. CORS (must be outermost for preflight)
    setup_cors(app)
    # 2. Request ID
    app.add_middleware(RequestIDMiddleware)
    # 3. Request logging
    app.add_middleware(RequestLoggingMiddleware)
    # 4. Exception handlers
    setup_exception_handlers(app)
