from __future__ import annotations

from marketplace.api.routes.admin import router as admin_router
from marketplace.api.routes.auth import router as auth_router
from marketplace.api.routes.extensions import router as extensions_router
from marketplace.api.routes.health import router as health_router
from marketplace.api.routes.installations import router as installations_router
from marketplace.api.routes.reviews import router as reviews_router

__all__ = [
    "admin_router",
    "auth_router",
    "extensions_router",
    "health_router",
    "installations_router",
    "reviews_router",
]
