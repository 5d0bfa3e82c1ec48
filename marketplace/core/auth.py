"""Principal model and API key authentication.

Token issuance and verification live outside this service. Requests are
associated with a principal by looking up the ``X-API-Key`` header in the
grants configured through ``APP_API_KEYS``:

    APP_API_KEYS="s3cret=user-1:developer,0ther=admin-1:admin"

A valid key attaches a ``Principal`` (and an API key id derived from the
secret) to ``request.state``. A missing or unknown key leaves the request
anonymous; routes that need a principal reject it with 401.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Annotated

from fastapi import Depends, Request

from marketplace.core.errors import ForbiddenError, UnauthenticatedError, ValidationAppError

logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-API-Key"


class Role(str, Enum):
    """Principal roles with their capability flags."""

    USER = "user"
    DEVELOPER = "developer"
    ADMIN = "admin"

    @property
    def unrestricted(self) -> bool:
        """Whether the role bypasses throttling and ownership checks."""
        return self is Role.ADMIN


@dataclass(frozen=True)
class Principal:
    """Authenticated identity attached to a request."""

    id: str
    role: Role = Role.USER

    @property
    def unrestricted(self) -> bool:
        return self.role.unrestricted


@dataclass(frozen=True)
class ApiKeyGrant:
    """A configured API key resolved to its principal.

    Attributes:
        key_id: Non-secret identifier of the key (hash prefix of the secret).
        principal: Identity the key authenticates as.
    """

    key_id: str
    principal: Principal


def hash_secret(secret: str) -> str:
    """Hash a secret for use as an identifier without exposing it."""
    return hashlib.sha256(secret.encode()).hexdigest()[:16]


def parse_api_keys(keys_string: str | None) -> dict[str, ApiKeyGrant]:
    """Parse comma-separated API key grants.

    Args:
        keys_string: Grants formatted as ``secret=principal_id:role``. The
            role is optional and defaults to ``user``.

    Returns:
        Mapping of secret to its grant.

    Raises:
        ValidationAppError: If a grant is malformed or names an unknown role.

    Examples:
        >>> grants = parse_api_keys("k1=alice:developer, k2=bob")
        >>> grants["k1"].principal
        Principal(id='alice', role=<Role.DEVELOPER: 'developer'>)
        >>> grants["k2"].principal.role
        <Role.USER: 'user'>
        >>> parse_api_keys(None)
        {}
    """
    if not keys_string:
        return {}

    grants: dict[str, ApiKeyGrant] = {}
    for raw in keys_string.split(","):
        raw = raw.strip()
        if not raw:
            continue

        secret, sep, identity = raw.partition("=")
        secret = secret.strip()
        principal_id, _, role_name = identity.strip().partition(":")
        principal_id = principal_id.strip()
        if not sep or not secret or not principal_id:
            raise ValidationAppError(
                code="invalid_api_key_grant",
                message="API key grants must look like secret=principal_id:role",
                details={"hint": "Check the APP_API_KEYS environment variable"},
            )

        try:
            role = Role(role_name.strip().lower() or Role.USER.value)
        except ValueError as exc:
            raise ValidationAppError(
                code="invalid_api_key_grant",
                message=f"Unknown role {role_name.strip()!r} in API key grant",
                details={"hint": "Roles are user, developer or admin"},
            ) from exc

        grants[secret] = ApiKeyGrant(
            key_id=hash_secret(secret),
            principal=Principal(id=principal_id, role=role),
        )
    return grants


class ApiKeyAuthenticator:
    """Resolves ``X-API-Key`` secrets to grants."""

    def __init__(self, grants: dict[str, ApiKeyGrant]) -> None:
        self._grants = grants

    def resolve(self, provided_key: str | None) -> ApiKeyGrant | None:
        """Return the grant for a key, or None when missing or unknown."""
        if not provided_key:
            return None

        grant = self._grants.get(provided_key)
        if grant is None:
            logger.warning(
                "auth.invalid_key",
                extra={"api_key_hash": hash_secret(provided_key)},
            )
        return grant


async def authentication_middleware(request: Request, call_next):
    """HTTP middleware attaching the current principal to the request.

    Sets ``request.state.principal`` and ``request.state.api_key_id`` (both
    None for anonymous requests) before any gate or route runs.
    """

    authenticator: ApiKeyAuthenticator = request.app.state.authenticator
    grant = authenticator.resolve(request.headers.get(API_KEY_HEADER))

    request.state.principal = grant.principal if grant else None
    request.state.api_key_id = grant.key_id if grant else None
    if grant is not None:
        logger.debug(
            "auth.success",
            extra={"principal_id": grant.principal.id, "role": grant.principal.role.value},
        )
    return await call_next(request)


def current_principal(request: Request) -> Principal | None:
    """Return the principal attached to the request, if any."""
    return getattr(request.state, "principal", None)


def current_api_key_id(request: Request) -> str | None:
    return getattr(request.state, "api_key_id", None)


async def require_principal(request: Request) -> Principal:
    """FastAPI dependency returning the principal or failing with 401.

    Usage:
        @router.post("/things")
        async def create(principal: Annotated[Principal, Depends(require_principal)]):
            ...

    Raises:
        UnauthenticatedError: If the request is anonymous.
    """
    principal = current_principal(request)
    if principal is None:
        raise UnauthenticatedError(
            code="unauthenticated",
            message="Authentication required. Provide a valid X-API-Key header.",
        )
    return principal


async def require_admin(
    principal: Annotated[Principal, Depends(require_principal)],
) -> Principal:
    """FastAPI dependency restricting a route to unrestricted principals."""
    if not principal.unrestricted:
        logger.warning(
            "auth.admin_required",
            extra={"principal_id": principal.id, "role": principal.role.value},
        )
        raise ForbiddenError(
            code="forbidden",
            message="Administrator role required.",
        )
    return principal
