"""HTTP middleware: request correlation and the global admission gate.

Usage (outermost last):
    app.middleware("http")(rate_limit_middleware)
    app.middleware("http")(authentication_middleware)
    app.middleware("http")(request_id_middleware)
"""

from __future__ import annotations

import time
import uuid

from fastapi import Request, Response

from marketplace.core.config import settings
from marketplace.core.errors import RateLimitExceededError
from marketplace.core.exception_handlers import app_error_handler
from marketplace.core.logging import clear_request_id, set_request_id
from marketplace.core.rate_limit import apply_pending_headers

GLOBAL_POLICY = "general"


async def request_id_middleware(request: Request, call_next) -> Response:
    """Propagate a correlation id and measure request duration.

    Uses the incoming ``X-Request-ID`` header (configurable via
    ``LOG_REQUEST_ID_HEADER``) or generates a UUID, stores it in contextvars
    for log correlation, and echoes it on the response together with
    ``X-Request-Duration-ms``.
    """

    header_name = settings.log.request_id_header
    request_id = request.headers.get(header_name) or str(uuid.uuid4())
    set_request_id(request_id)
    start = time.perf_counter()
    try:
        response: Response = await call_next(request)
    finally:
        clear_request_id()

    duration_ms = (time.perf_counter() - start) * 1000
    response.headers[header_name] = request_id
    response.headers.setdefault("X-Request-Duration-ms", f"{duration_ms:.2f}")
    return response


async def rate_limit_middleware(request: Request, call_next) -> Response:
    """Apply the global policy to every request.

    Runs after the principal is attached. Middleware sits outside FastAPI's
    exception handling, so a rejection is rendered here through the same
    handler that renders every other domain error.
    """

    registry = request.app.state.limiters
    if not registry.enabled or GLOBAL_POLICY not in registry:
        return await call_next(request)

    try:
        response = await registry.gate(GLOBAL_POLICY).call(request, call_next)
    except RateLimitExceededError as exc:
        return await app_error_handler(request, exc)

    apply_pending_headers(request, response)
    return response
