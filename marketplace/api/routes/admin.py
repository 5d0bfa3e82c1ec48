"""Rate limit administration endpoints (admin only)."""

from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Annotated, Dict

from fastapi import APIRouter, Depends, Request, Response, status

from marketplace.core.auth import Principal, require_admin
from marketplace.core.errors import NotFoundError
from marketplace.core.rate_limit import LimiterRegistry, hash_key
from marketplace.schemas.admin import RateLimitStatusResponse, StoreStatsResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/rate-limits", tags=["Admin"])


def get_limiters(request: Request) -> LimiterRegistry:
    return request.app.state.limiters


def _known_policy(registry: LimiterRegistry, policy: str) -> None:
    if policy not in registry:
        raise NotFoundError(
            code="policy_not_found",
            message=f"Unknown rate limit policy {policy!r}.",
            details={"resource": "policy", "resource_id": policy},
        )


@router.get("", response_model=Dict[str, StoreStatsResponse])
async def rate_limit_stats(
    _: Annotated[Principal, Depends(require_admin)],
    registry: Annotated[LimiterRegistry, Depends(get_limiters)],
) -> Dict[str, StoreStatsResponse]:
    return {name: StoreStatsResponse(**stats) for name, stats in registry.stats().items()}


@router.get("/{policy}/keys/{key}", response_model=RateLimitStatusResponse)
async def rate_limit_status(
    policy: str,
    key: str,
    _: Annotated[Principal, Depends(require_admin)],
    registry: Annotated[LimiterRegistry, Depends(get_limiters)],
) -> RateLimitStatusResponse:
    _known_policy(registry, policy)
    result = registry.status(policy, key)
    return RateLimitStatusResponse(**asdict(result))


@router.delete("/{policy}/keys/{key}", status_code=status.HTTP_204_NO_CONTENT)
async def reset_rate_limit_key(
    policy: str,
    key: str,
    principal: Annotated[Principal, Depends(require_admin)],
    registry: Annotated[LimiterRegistry, Depends(get_limiters)],
) -> Response:
    _known_policy(registry, policy)
    registry.reset(policy, key)
    logger.info(
        "admin.rate_limit_reset",
        extra={"policy": policy, "key_hash": hash_key(key), "principal_id": principal.id},
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("", status_code=status.HTTP_204_NO_CONTENT)
async def reset_all_rate_limits(
    principal: Annotated[Principal, Depends(require_admin)],
    registry: Annotated[LimiterRegistry, Depends(get_limiters)],
) -> Response:
    registry.reset_all()
    logger.info("admin.rate_limit_reset_all", extra={"principal_id": principal.id})
    return Response(status_code=status.HTTP_204_NO_CONTENT)
