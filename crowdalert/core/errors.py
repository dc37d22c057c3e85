"""
Centralised error handling — exception hierarchy + FastAPI handlers.

Provides:
    • Domain-specific exception classes for the alert pipeline
    • Consistent JSON error response format
    • Automatic logging of unhandled errors

Taxonomy:
    InvalidInputError        — malformed URL / coordinates (caller error)
    NotFoundError            — geocoding returned nothing usable
    UpstreamUnavailableError — transport / service failure (transient)
    PayloadTooLargeError     — media exceeds the configured cap

Usage:
    from crowdalert.core.errors import NotFoundError

    raise NotFoundError("postal_code", latitude=19.07, longitude=72.87)
"""

from __future__ import annotations

import logging
import traceback
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from crowdalert.core.config import settings

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Exception Hierarchy
# ═══════════════════════════════════════════════════════════════════════════

class CrowdAlertError(Exception):
    """Base exception for all application errors."""

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        *,
        status_code: int = 500,
        error_code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}


class InvalidInputError(CrowdAlertError):
    """Input validation failed (422). Never retried."""

    def __init__(self, message: str, *, field: Optional[str] = None, **details: Any):
        d = {**details}
        if field:
            d["field"] = field
        super().__init__(
            message=message,
            status_code=422,
            error_code="INVALID_INPUT",
            details=d,
        )


class NotFoundError(CrowdAlertError):
    """Lookup produced no result (404). Terminal for that lookup."""

    def __init__(self, resource: str, **identifiers: Any):
        details = {"resource": resource, **identifiers}
        super().__init__(
            message=f"{resource} not found",
            status_code=404,
            error_code="NOT_FOUND",
            details=details,
        )


class UpstreamUnavailableError(CrowdAlertError):
    """External service call failed (502). Transient."""

    def __init__(self, service: str, message: str = "", **details: Any):
        super().__init__(
            message=f"External service '{service}' failed: {message}",
            status_code=502,
            error_code="UPSTREAM_UNAVAILABLE",
            details={"service": service, **details},
        )
        self.service = service


class PayloadTooLargeError(CrowdAlertError):
    """Media payload exceeds the configured maximum (413)."""

    def __init__(self, limit_bytes: int, *, received_bytes: Optional[int] = None):
        details: Dict[str, Any] = {"limit_bytes": limit_bytes}
        if received_bytes is not None:
            details["received_bytes"] = received_bytes
        super().__init__(
            message=f"Media payload exceeds {limit_bytes} bytes",
            status_code=413,
            error_code="PAYLOAD_TOO_LARGE",
            details=details,
        )


# ═══════════════════════════════════════════════════════════════════════════
# Error Response Builder
# ═══════════════════════════════════════════════════════════════════════════

def _build_error_response(
    status_code: int,
    error_code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    request: Optional[Request] = None,
) -> JSONResponse:
    """Build a consistent JSON error response."""
    body: Dict[str, Any] = {
        "error": {
            "code": error_code,
            "message": message,
            "status": status_code,
        }
    }

    if details:
        body["error"]["details"] = details

    # Include request path in non-production
    if request and not settings.is_production:
        body["error"]["path"] = str(request.url.path)
        body["error"]["method"] = request.method

    return JSONResponse(status_code=status_code, content=body)


# ═══════════════════════════════════════════════════════════════════════════
# FastAPI Exception Handlers
# ═══════════════════════════════════════════════════════════════════════════

def register_error_handlers(app: FastAPI) -> None:
    """Register all exception handlers on the FastAPI app."""

    @app.exception_handler(CrowdAlertError)
    async def handle_crowdalert_error(request: Request, exc: CrowdAlertError):
        logger.error(
            "API Error [%s]: %s | details=%s",
            exc.error_code, exc.message, exc.details,
        )
        return _build_error_response(
            exc.status_code, exc.error_code, exc.message,
            exc.details, request,
        )

    @app.exception_handler(Exception)
    async def handle_unhandled(request: Request, exc: Exception):
        logger.critical(
            "Unhandled exception: %s\n%s",
            exc, traceback.format_exc(),
        )
        message = str(exc) if settings.DEBUG else "Internal server error"
        return _build_error_response(
            500, "INTERNAL_ERROR", message, request=request,
        )
