"""
Centralised error handling: exception hierarchy + FastAPI handlers.

Propagation policy:
    • QuotaExceededError and FetchFailureError surface to the caller; they
      mean the data is genuinely unavailable right now.
    • Cache corruption never leaves the cache layer (entry is deleted).
    • Analytics input-shape problems degrade to "absent" results instead of
      raising.

Usage:
    from weather_compare.app.core.errors import (
        FetchFailureError,
        QuotaExceededError,
        register_error_handlers,
    )

    raise FetchFailureError("open-meteo-archive", "HTTP 503", latitude=51.5, longitude=-0.12)
"""

from __future__ import annotations

import logging
import traceback
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from weather_compare.app.core.config import settings

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Exception Hierarchy
# ═══════════════════════════════════════════════════════════════════════════

class WeatherCompareError(Exception):
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


class NotFoundError(WeatherCompareError):
    """Resource not found (404)."""

    def __init__(self, resource: str, **identifiers: Any):
        details = {"resource": resource, **identifiers}
        super().__init__(
            message=f"{resource} not found",
            status_code=404,
            error_code="NOT_FOUND",
            details=details,
        )


class InvalidInputError(WeatherCompareError):
    """Input validation failed (422)."""

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


class FetchFailureError(WeatherCompareError):
    """
    The fetch collaborator failed (502).

    Carries the request context (location, date range, data kind) so the
    caller can decide whether a narrower fallback fetch is worth trying.
    """

    def __init__(self, service: str, message: str = "", **details: Any):
        super().__init__(
            message=f"External service '{service}' failed: {message}",
            status_code=502,
            error_code="FETCH_FAILURE",
            details={"service": service, **details},
        )
        self.service = service


class QuotaExceededError(WeatherCompareError):
    """Hard per-feed call ceiling reached (429). Raised instead of waiting."""

    def __init__(self, feed: str, retry_after: float = 60.0):
        super().__init__(
            message=f"{feed} rate limit exceeded. Please try again in a minute.",
            status_code=429,
            error_code="QUOTA_EXCEEDED",
            details={"feed": feed, "retry_after_seconds": round(retry_after, 1)},
        )
        self.retry_after = retry_after


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

    if request and not settings.is_production:
        body["error"]["path"] = str(request.url.path)
        body["error"]["method"] = request.method

    headers = None
    if status_code == 429 and details and "retry_after_seconds" in details:
        headers = {"Retry-After": str(int(round(details["retry_after_seconds"])))}

    return JSONResponse(status_code=status_code, content=body, headers=headers)


# ═══════════════════════════════════════════════════════════════════════════
# FastAPI Exception Handlers
# ═══════════════════════════════════════════════════════════════════════════

def register_error_handlers(app: FastAPI) -> None:
    """Register all exception handlers on the FastAPI app."""

    @app.exception_handler(WeatherCompareError)
    async def handle_app_error(request: Request, exc: WeatherCompareError):
        logger.error(
            "API Error [%s]: %s | details=%s",
            exc.error_code, exc.message, exc.details,
        )
        return _build_error_response(
            exc.status_code, exc.error_code, exc.message,
            exc.details, request,
        )

    @app.exception_handler(ValueError)
    async def handle_value_error(request: Request, exc: ValueError):
        logger.warning("ValueError: %s", exc)
        return _build_error_response(
            422, "INVALID_INPUT", str(exc), request=request,
        )

    @app.exception_handler(Exception)
    async def handle_unhandled(request: Request, exc: Exception):
        logger.critical(
            "Unhandled exception: %s\n%s",
            exc, traceback.format_exc(),
        )
        message = str(exc) if settings.DEBUG else "Internal server error"
        details = (
            {"traceback": traceback.format_exc().split("\n")}
            if settings.DEBUG else None
        )
        return _build_error_response(
            500, "INTERNAL_ERROR", message, details, request,
        )
