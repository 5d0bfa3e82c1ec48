"""Route class applying per-endpoint rate limit policies.

Endpoints declare the policies they are subject to with ``@rate_limited``;
routers built with ``route_class=GatedRoute`` run those gates, in declaration
order, before the endpoint (and its dependencies) execute:

    router = APIRouter(route_class=GatedRoute)

    @router.post("/auth/verify")
    @rate_limited("authentication")
    async def verify(...): ...

Policies are resolved by name from ``app.state.limiters`` at request time.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Sequence

from fastapi import Request, Response
from fastapi.routing import APIRoute

from marketplace.core.rate_limit import RequestGate, apply_pending_headers

RATE_LIMIT_ATTR = "__rate_limit_policies__"

Handler = Callable[[Request], Awaitable[Response]]


def rate_limited(*policy_names: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Mark an endpoint as subject to the named rate limit policies."""
    if not policy_names:
        raise ValueError("at least one policy name is required")

    def decorator(endpoint: Callable[..., Any]) -> Callable[..., Any]:
        setattr(endpoint, RATE_LIMIT_ATTR, tuple(policy_names))
        return endpoint

    return decorator


def policies_of(endpoint: Callable[..., Any]) -> tuple[str, ...]:
    return getattr(endpoint, RATE_LIMIT_ATTR, ())


async def _run_gated(request: Request, gates: Sequence[RequestGate], handler: Handler) -> Response:
    if not gates:
        return await handler(request)

    head, rest = gates[0], gates[1:]

    async def call_next(req: Request) -> Response:
        return await _run_gated(req, rest, handler)

    return await head.call(request, call_next)


class GatedRoute(APIRoute):
    """APIRoute that runs the endpoint's declared request gates first."""

    def __init__(self, path: str, endpoint: Callable[..., Any], **kwargs: Any) -> None:
        # get_route_handler() runs inside APIRoute.__init__
        self.rate_limit_policies = policies_of(endpoint)
        super().__init__(path, endpoint, **kwargs)

    def get_route_handler(self) -> Handler:
        handler = super().get_route_handler()
        policy_names = self.rate_limit_policies
        if not policy_names:
            return handler

        async def gated_handler(request: Request) -> Response:
            registry = request.app.state.limiters
            if not registry.enabled:
                return await handler(request)

            gates = [registry.gate(name) for name in policy_names]
            response = await _run_gated(request, gates, handler)
            apply_pending_headers(request, response)
            return response

        return gated_handler
