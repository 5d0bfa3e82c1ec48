"""Ownership authorization for mutation routes.

An ``OwnershipGuard`` is bound to an async owner lookup for one kind of
resource and used as a FastAPI dependency:

    guard = OwnershipGuard(extension_owner, resource="extension")

    @router.patch("/extensions/{extension_id}")
    async def update(principal: Annotated[Principal, Depends(guard)]): ...

Decision order:
1. No principal attached → 401.
2. The lookup reports a missing resource → 404. Ownership is never judged
   against something that does not exist, whatever the caller's role.
3. Unrestricted role (admin) → allowed without comparing owners.
4. Principal id equals the owner id → allowed.
5. Otherwise → 403.
"""

import logging
from typing import Awaitable, Protocol

from fastapi import Request

from marketplace.core.auth import Principal, current_principal
from marketplace.core.errors import ForbiddenError, UnauthenticatedError

logger = logging.getLogger(__name__)


class ResourceOwnerLookup(Protocol):
    """Async capability resolving the owner id of the requested resource.

    Implementations raise ``NotFoundError`` when the resource does not exist.
    """

    def __call__(self, request: Request) -> Awaitable[str]: ...


class OwnershipGuard:
    """Authorizes a request against the recorded owner of a resource."""

    def __init__(self, lookup: ResourceOwnerLookup, *, resource: str = "resource") -> None:
        self.lookup = lookup
        self.resource = resource

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return f"OwnershipGuard(resource={self.resource!r})"

    async def authorize(self, principal: Principal | None, request: Request) -> Principal:
        """Return the principal when it may mutate the resource.

        Raises:
            UnauthenticatedError: If no principal is attached.
            NotFoundError: Propagated from the lookup for missing resources.
            ForbiddenError: If the principal is neither owner nor admin.
        """
        if principal is None:
            raise UnauthenticatedError(
                code="unauthenticated",
                message="Authentication required. Provide a valid X-API-Key header.",
            )

        owner_id = await self.lookup(request)

        if principal.unrestricted:
            logger.debug(
                "ownership.bypassed",
                extra={"resource": self.resource, "principal_id": principal.id},
            )
            return principal

        if principal.id == owner_id:
            return principal

        logger.warning(
            "ownership.denied",
            extra={
                "resource": self.resource,
                "principal_id": principal.id,
                "role": principal.role.value,
            },
        )
        raise ForbiddenError(
            code="forbidden",
            message=f"You do not have permission to modify this {self.resource}.",
            details={"resource": self.resource},
        )

    async def __call__(self, request: Request) -> Principal:
        return await self.authorize(current_principal(request), request)
