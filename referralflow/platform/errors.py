"""
Consistent error handling for the referral platform.

Every expected failure is raised as an AppError subclass and rendered as:

    {"error": {"code": "...", "message": "...", "details": {...}}}

SECURITY:
- TenantIsolationError never echoes tenant ids or record ids. A denied
  cross-tenant request and a request for an unconfigured tenant produce the
  same ACCESS_DENIED body, so the response cannot be used to enumerate agencies.
- Unhandled exceptions become a generic 500 carrying only a correlation id.
  Stack traces are logged, never returned.
"""

import logging
import uuid
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"


def generate_correlation_id() -> str:
    """Generate a new correlation id (UUID4 string)."""
    return str(uuid.uuid4())


def get_correlation_id(request: Request) -> Optional[str]:
    """Get correlation id from the request header, then request state."""
    header_value = request.headers.get(CORRELATION_HEADER)
    if header_value:
        return header_value
    return getattr(request.state, "correlation_id", None)


class AppError(Exception):
    """Base class for errors rendered to API clients."""

    def __init__(
        self,
        code: str = "INTERNAL_ERROR",
        message: str = "An unexpected error occurred",
        status_code: int = 500,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
            }
        }


class ValidationError(AppError):
    def __init__(self, message: str = "Invalid request", details: Optional[dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, 400, details)


class AuthenticationError(AppError):
    def __init__(self, message: str = "Unauthorized"):
        super().__init__("AUTHENTICATION_ERROR", message, 401)


class PermissionDeniedError(AppError):
    def __init__(self, message: str = "Permission denied"):
        super().__init__("PERMISSION_DENIED", message, 403)


class TenantIsolationError(AppError):
    """
    Raised when a principal attempts to act on another tenant's data.

    The supplied message is kept for server-side logging only; the client
    always sees "Access denied" with empty details.
    """

    def __init__(self, internal_message: Optional[str] = None):
        super().__init__("ACCESS_DENIED", "Access denied", 403)
        self.internal_message = internal_message


class NotFoundError(AppError):
    def __init__(self, resource: str, identifier: Optional[str] = None):
        message = f"{resource} not found"
        if identifier:
            message = f"{resource} '{identifier}' not found"
        super().__init__("NOT_FOUND", message, 404)


class ConflictError(AppError):
    def __init__(self, message: str = "Conflict", details: Optional[dict[str, Any]] = None):
        super().__init__("CONFLICT", message, 409, details)


class ServiceUnavailableError(AppError):
    def __init__(self, message: str = "Service temporarily unavailable"):
        super().__init__("SERVICE_UNAVAILABLE", message, 503)


async def _app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    correlation_id = get_correlation_id(request) or generate_correlation_id()
    log_extra = {
        "code": exc.code,
        "status_code": exc.status_code,
        "path": request.url.path,
        "correlation_id": correlation_id,
    }
    if isinstance(exc, TenantIsolationError) and exc.internal_message:
        log_extra["reason"] = exc.internal_message
    logger.info("Request failed with application error", extra=log_extra)
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
        headers={CORRELATION_HEADER: correlation_id},
    )


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    correlation_id = get_correlation_id(request) or generate_correlation_id()
    logger.error(
        "Unhandled exception",
        extra={"path": request.url.path, "correlation_id": correlation_id},
        exc_info=exc,
    )
    body = AppError(details={"correlation_id": correlation_id}).to_dict()
    return JSONResponse(
        status_code=500,
        content=body,
        headers={CORRELATION_HEADER: correlation_id},
    )


def register_error_handlers(app: FastAPI) -> None:
    """Install AppError and catch-all handlers on the application."""
    app.add_exception_handler(AppError, _app_error_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)
