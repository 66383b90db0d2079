"""
Shared API Middleware
======================

Request context, access logging and the error envelope for the FastAPI app.

Every error leaves the service as:

    {"error": {"code": "...", "message": "...", "details": {...}}, "correlation_id": "..."}
"""

import time
import uuid
from datetime import datetime, timezone
from typing import Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from helpdesk.config import settings
from helpdesk.core.exceptions import ApplicationException
from helpdesk.shared.infrastructure.logging import bind_log_context, get_logger, reset_log_context

logger = get_logger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Binds the correlation id and the caller's tenant headers to the log
    context, so every line written while serving the request carries them.

    The correlation id is taken from the incoming header when present and
    echoed back on the response.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())
        request.state.correlation_id = correlation_id

        # Raw header values; they are validated later by the identity dependency
        token = bind_log_context(
            correlation_id=correlation_id,
            organization_id=request.headers.get("X-Organization-Id"),
            actor_id=request.headers.get("X-User-Id"),
        )
        try:
            response = await call_next(request)
        finally:
            reset_log_context(token)

        response.headers[CORRELATION_HEADER] = correlation_id
        return response


class AccessLogMiddleware(BaseHTTPMiddleware):
    """One log line per request with method, path, status and latency."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "Request failed",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "error": str(e),
                    "latency_ms": _elapsed_ms(start_time),
                }
            )
            raise

        log = logger.warning if response.status_code >= 500 else logger.info
        log(
            "Request completed",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "latency_ms": _elapsed_ms(start_time),
            }
        )
        return response


def _elapsed_ms(start_time: float) -> int:
    return int((time.perf_counter() - start_time) * 1000)


def error_body(code: str, message: str, details: dict, correlation_id: str) -> dict:
    return {
        "error": {"code": code, "message": message, "details": details},
        "correlation_id": correlation_id,
    }


async def application_exception_handler(request: Request, exc: ApplicationException) -> JSONResponse:
    """Renders domain errors with their stable code and HTTP status."""
    correlation_id = getattr(request.state, "correlation_id", "unknown")

    # Client errors are expected traffic; only server-side ones are errors
    log = logger.error if exc.status_code >= 500 else logger.info
    log(
        "Application error",
        extra={
            "path": request.url.path,
            "code": exc.code,
            "status_code": exc.status_code,
            "error_message": exc.message,
        }
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.code, exc.message, exc.details, correlation_id),
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Anything unexpected becomes a 500 without internals outside development."""
    correlation_id = getattr(request.state, "correlation_id", "unknown")

    logger.error(
        "Unhandled exception",
        extra={
            "path": request.url.path,
            "method": request.method,
            "error_type": type(exc).__name__,
        },
        exc_info=exc
    )

    details = {"timestamp": datetime.now(timezone.utc).isoformat()}
    if settings.environment == "development":
        details["debug_info"] = str(exc)

    return JSONResponse(
        status_code=500,
        content=error_body(ApplicationException.code, "Internal server error", details, correlation_id),
    )
