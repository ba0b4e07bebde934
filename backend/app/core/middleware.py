"""
Request middleware — logging, timing, correlation IDs.

Provides:
    • X-Request-ID header injection (correlation ID)
    • Request/response timing (X-Process-Time header)
    • One structured log entry per request
    • Scoped log context, so every line logged while serving a request
      (including a location change that triggers catch-up notifications)
      carries its request ID
"""

from __future__ import annotations

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from backend.app.core.logging_config import set_log_context

logger = logging.getLogger(__name__)

# Probes and docs are not worth a log line each
_QUIET_PREFIXES = ("/docs", "/redoc", "/openapi", "/favicon", "/health")


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Log every request with timing, inject correlation ID.

    Request log entry includes:
        - method, path, status_code
        - duration_ms
        - client IP
        - request_id (also returned in X-Request-ID response header)
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:16]
        client_ip = request.client.host if request.client else "unknown"
        path = request.url.path

        set_log_context(
            request_id=request_id,
            client_ip=client_ip,
            endpoint=path,
            method=request.method,
        )
        start = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception:
            logger.error(
                "%s %s → 500 (%.1fms) [%s]",
                request.method, path, _elapsed_ms(start), client_ip,
                extra={"duration_ms": _elapsed_ms(start), "status_code": 500,
                       "endpoint": path},
            )
            set_log_context()
            raise

        duration_ms = _elapsed_ms(start)
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{duration_ms:.1f}ms"

        if not path.startswith(_QUIET_PREFIXES):
            level = logging.WARNING if response.status_code >= 400 else logging.INFO
            logger.log(
                level,
                "%s %s → %d (%.1fms) [%s]",
                request.method, path, response.status_code, duration_ms, client_ip,
                extra={
                    "duration_ms": duration_ms,
                    "status_code": response.status_code,
                    "endpoint": path,
                },
            )

        set_log_context()
        return response
