"""Application factory for the marketplace API.

This is the composition root: it builds the counter stores, policies,
authenticator and repositories, and hands them to the HTTP layer through
``app.state``. Nothing in the request path reaches for module-level state.
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable

from fastapi import FastAPI

from marketplace.adapters.repository.in_memory import Repositories
from marketplace.api.routes import (
    admin_router,
    auth_router,
    extensions_router,
    health_router,
    installations_router,
    reviews_router,
)
from marketplace.core.auth import ApiKeyAuthenticator, authentication_middleware, parse_api_keys
from marketplace.core.config import AppSettings, settings
from marketplace.core.exception_handlers import setup_exception_handlers
from marketplace.core.logging import configure_logging
from marketplace.core.middleware import rate_limit_middleware, request_id_middleware
from marketplace.core.openapi import apply_openapi_customizations
from marketplace.core.rate_limit import LimiterRegistry, build_default_registry

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Run the counter sweeps for as long as the application serves."""
    registry: LimiterRegistry = app.state.limiters
    registry.start()
    logger.info("app.started", extra={"policies": registry.names()})
    try:
        yield
    finally:
        await registry.close()
        logger.info("app.stopped")


def create_app(
    app_settings: AppSettings | None = None,
    *,
    clock: Callable[[], float] = time.time,
    limiters: LimiterRegistry | None = None,
    repositories: Repositories | None = None,
    configure_logs: bool = True,
) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        app_settings: Application settings; defaults to the global settings.
        clock: Time source shared by every counter store and gate.
        limiters: Prebuilt policy registry (tests inject their own).
        repositories: Record storage; in-memory when omitted.
        configure_logs: Whether to (re)configure the root logger.

    Returns:
        Configured app with middleware, handlers and routers.
    """
    cfg = app_settings or settings.app
    if configure_logs:
        # Logging first so subsequent init logs are formatted as desired
        configure_logging(settings.log)

    app = FastAPI(
        title="Marketplace API",
        description=(
            "Marketplace of extensions, versions, reviews and installations. "
            "Requests are throttled per principal or client address and "
            "mutations are restricted to the owner of a resource or an admin."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    app.state.settings = cfg
    app.state.limiters = limiters or build_default_registry(cfg, clock=clock)
    app.state.authenticator = ApiKeyAuthenticator(parse_api_keys(cfg.api_keys))
    app.state.repositories = repositories or Repositories.in_memory()

    # Middleware (the last one added runs first)
    app.middleware("http")(rate_limit_middleware)
    app.middleware("http")(authentication_middleware)
    app.middleware("http")(request_id_middleware)

    setup_exception_handlers(app)

    app.include_router(health_router, prefix=cfg.health_path)
    for router in (auth_router, extensions_router, reviews_router, installations_router, admin_router):
        app.include_router(router, prefix=cfg.api_prefix)

    apply_openapi_customizations(app, health_path=cfg.health_path)

    return app
