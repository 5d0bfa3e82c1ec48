"""Application-level exception types.

This module defines domain errors raised by the admission-control gates,
the ownership guard and the route handlers. They are translated to JSON
responses in one place (see ``marketplace.core.exception_handlers``).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients."""

    code: str
    message: str
    hint: str
    policy: str
    limit: int
    retry_after: int
    resource: str
    resource_id: str
    request_id: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ValidationAppError(AppError):
    """Raised when input validation fails."""


class UnauthenticatedError(AppError):
    """Raised when a principal is required but none is attached."""


class ForbiddenError(AppError):
    """Raised when the principal is neither the owner nor unrestricted."""


class NotFoundError(AppError):
    """Raised when a referenced resource does not exist."""


@dataclass
class RateLimitExceededError(AppError):
    """Raised when a client exceeds a policy's ceiling.

    Attributes:
        retry_after: Whole seconds until the window resets.
        headers: Response headers to emit with the rejection.
    """

    retry_after: int = 0
    headers: dict[str, str] = field(default_factory=dict)
