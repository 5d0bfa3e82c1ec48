"""Credential verification endpoint."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Request

from marketplace.api.routing import GatedRoute, rate_limited
from marketplace.core.auth import API_KEY_HEADER, current_principal, hash_secret
from marketplace.core.errors import UnauthenticatedError
from marketplace.schemas.admin import PrincipalResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Auth"], route_class=GatedRoute)


@router.post("/verify", response_model=PrincipalResponse)
@rate_limited("authentication")
async def verify_credentials(request: Request) -> PrincipalResponse:
    """Verify the X-API-Key header and return the principal it resolves to.

    Every attempt counts against the authentication policy, so repeated
    guessing from one address is throttled.

    Raises:
        UnauthenticatedError: 401 when the key is missing or unknown.
    """
    principal = current_principal(request)
    if principal is None:
        provided = request.headers.get(API_KEY_HEADER)
        logger.warning(
            "auth.verify_failed",
            extra={
                "api_key_present": bool(provided),
                "api_key_hash": hash_secret(provided) if provided else None,
            },
        )
        raise UnauthenticatedError(
            code="invalid_api_key",
            message="Invalid or missing API key",
        )

    return PrincipalResponse(id=principal.id, role=principal.role.value)
