# cdadmin/transport/middleware.py
"""
Request tracing, access logging and the last-resort 500 envelope.

Order on the app (outermost first): RequestID -> ErrorHandling -> ...
-> RequestLogging, so every log line and error body carries the id.
"""
import time
import uuid
from typing import Callable
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp
from cdadmin.infra.logging_config import get_logger, LogContext

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

# probes hit these every few seconds
_QUIET_PATHS = ("/health", "/health/ready")


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "unknown")


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Reuse the caller's X-Request-ID or mint one; echo it on the response."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request.state.request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request.state.request_id
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: ASGIApp, enabled: bool = True):
        super().__init__(app)
        self.enabled = enabled

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if not self.enabled or request.url.path in _QUIET_PATHS:
            return await call_next(request)

        started = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - started) * 1000

        log = LogContext(logger, request_id=_request_id(request))
        log_fn = log.warning if response.status_code >= 500 else log.info
        log_fn(
            f"{request.method} {request.url.path} -> {response.status_code} ({duration_ms:.1f}ms)",
            extra={"status_code": response.status_code, "duration_ms": duration_ms},
        )
        return response


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Turn anything the exception handlers did not map into a 500 envelope."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except Exception:
            request_id = _request_id(request)
            LogContext(logger, request_id=request_id).error(
                f"Unhandled error on {request.method} {request.url.path}", exc_info=True,
            )
            return JSONResponse(
                status_code=500,
                content={
                    "success": False,
                    "code": 500,
                    "message": "Internal server error",
                    "request_id": request_id,
                },
            )
