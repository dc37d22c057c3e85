"""
Request middleware — correlation IDs and timing.

Every request gets an X-Request-ID (taken from the client or generated),
which is also put into the logging context so pipeline log lines emitted
while serving the request carry it.
"""

from __future__ import annotations

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from crowdalert.core.logging_config import bind_request, clear_request

logger = logging.getLogger(__name__)

_QUIET_PREFIXES = ("/docs", "/redoc", "/openapi", "/favicon", "/health")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log each request with its duration and attach X-Request-ID."""

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:16]
        path = request.url.path
        bind_request(request_id, path, request.method)

        start = time.perf_counter()
        try:
            response = await call_next(request)
        finally:
            duration_ms = (time.perf_counter() - start) * 1000

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{duration_ms:.1f}ms"

        if not path.startswith(_QUIET_PREFIXES):
            level = logging.WARNING if response.status_code >= 400 else logging.INFO
            logger.log(
                level,
                "%s %s → %d (%.1fms)",
                request.method, path, response.status_code, duration_ms,
                extra={
                    "duration_ms": duration_ms,
                    "status_code": response.status_code,
                    "endpoint": path,
                },
            )

        clear_request()
        return response
