"""Global exception handlers for consistent error responses.

This module provides FastAPI exception handlers that intercept all errors
(domain and unexpected) and return consistent JSON responses with proper
HTTP status codes and traceability.

Design:
- AppError subclasses → their HTTP status (400, 401, 403, 404, 429)
- Unexpected Exception → generic 500 (safety net)
- All responses include request_id for distributed tracing
- Rate limit headers accumulated during the request are kept on errors
"""

import logging

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from marketplace.core.errors import (
    AppError,
    ForbiddenError,
    NotFoundError,
    RateLimitExceededError,
    UnauthenticatedError,
    ValidationAppError,
)
from marketplace.core.logging import get_request_id

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: tuple[tuple[type[AppError], int], ...] = (
    (RateLimitExceededError, 429),
    (UnauthenticatedError, 401),
    (ForbiddenError, 403),
    (NotFoundError, 404),
    (ValidationAppError, 400),
)


def http_status_for(exc: BaseException) -> int:
    """Return the HTTP status a raised exception will be rendered with.

    Shared by the handlers below and the request gates, so outcome-based
    bookkeeping sees the same status the client does.
    """
    if isinstance(exc, AppError):
        for error_type, status_code in _STATUS_BY_ERROR:
            if isinstance(exc, error_type):
                return status_code
        return 400
    if isinstance(exc, HTTPException):
        return exc.status_code
    if isinstance(exc, RequestValidationError):
        return 422
    return 500


def _response_headers(request: Request, exc: Exception) -> dict[str, str]:
    headers = dict(getattr(request.state, "rate_limit_headers", None) or {})
    if isinstance(exc, RateLimitExceededError):
        headers.update(exc.headers)
    return headers


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Handle domain application errors with consistent JSON format.

    Routes domain errors to appropriate HTTP status codes:
    - ValidationAppError → 400 Bad Request
    - UnauthenticatedError → 401 Unauthorized
    - ForbiddenError → 403 Forbidden
    - NotFoundError → 404 Not Found
    - RateLimitExceededError → 429 Too Many Requests (with Retry-After)

    All responses include:
    - code: Machine-readable error code
    - message: Human-readable message
    - request_id: For distributed tracing
    - details: Optional structured context

    Args:
        request: FastAPI request object.
        exc: AppError instance (or subclass).

    Returns:
        JSONResponse with appropriate status code and error details.
    """
    status_code = http_status_for(exc)

    logger.warning(
        "app_error_handled",
        extra={
            "error_code": exc.code,
            "error_message": exc.message,
            "status_code": status_code,
            "has_details": bool(exc.details),
            "request_id": get_request_id(),
        },
    )

    content = {
        "code": exc.code,
        "message": exc.message,
        "request_id": get_request_id(),
    }
    if exc.details:
        content["details"] = exc.details

    return JSONResponse(
        status_code=status_code,
        content=content,
        headers=_response_headers(request, exc) or None,
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback handler for unexpected errors (safety net).

    Logs detailed information for debugging while returning a generic
    message. No stack traces or exception text reach the client. Rate limit
    headers counted before the failure are kept on the response.
    """
    logger.error(
        "unhandled_exception",
        extra={
            "error_type": type(exc).__name__,
            "error_msg": str(exc),
            "request_path": request.url.path,
            "request_method": request.method,
            "request_id": get_request_id(),
        },
    )

    return JSONResponse(
        status_code=500,
        content={
            "code": "internal_server_error",
            "message": "An unexpected error occurred. Please try again later.",
            "request_id": get_request_id(),
        },
        headers=_response_headers(request, exc) or None,
    )


def setup_exception_handlers(app) -> None:
    """Register all exception handlers with FastAPI app.

    Must be called during app initialization, before route registration.

    Example:
        >>> from fastapi import FastAPI
        >>> from marketplace.core.exception_handlers import setup_exception_handlers
        >>> app = FastAPI()
        >>> setup_exception_handlers(app)
    """
    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(Exception)(general_exception_handler)
