from __future__ import annotations

from fastapi import APIRouter

# Mounted at the configured health path (APP_HEALTH_PATH)
router = APIRouter(tags=["Health"])


@router.get("")
def health_check() -> dict:
    """Health check endpoint.

    Exempt from the general rate limit so load balancers and monitors can
    poll it freely.

    Returns:
        dict: A dictionary with a single "status" key set to "ok".
    """

    return {"status": "ok"}
