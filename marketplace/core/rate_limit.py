"""Request admission control: policies, registry and request gates.

This module wires the counter store adapters into the HTTP layer.

Design goals:
- Policies are plain data: window, ceiling, key strategy, skip rule and
  compensation flags. They can be inspected and tested without a request
  pipeline.
- One counter store per distinct window length; policies sharing a window
  share a store and stay apart through their key prefixes.
- Gates never swallow downstream errors: the compensating decrement runs on
  every exit path and the original outcome propagates unchanged.

Counting strategy:
- Fixed window per key, opened by the first request for that key.
- The request that brings the count to exactly ``max_requests`` is the last
  one admitted; the next one is rejected with 429 until the window resets.
"""

from __future__ import annotations

import hashlib
import logging
import math
import time
from dataclasses import dataclass, field
from typing import Callable

from fastapi import Request

from marketplace.adapters.rate_limit.base import AbstractCounterStore
from marketplace.adapters.rate_limit.in_memory import InMemoryCounterStore
from marketplace.core.auth import Role, current_api_key_id, current_principal
from marketplace.core.config import AppSettings
from marketplace.core.errors import RateLimitExceededError
from marketplace.core.exception_handlers import http_status_for

logger = logging.getLogger(__name__)

KeyFunc = Callable[[Request], str]
SkipFunc = Callable[[Request], bool]
ExceededHook = Callable[[Request, str], None]

HEADER_LIMIT = "X-RateLimit-Limit"
HEADER_REMAINING = "X-RateLimit-Remaining"
HEADER_RESET = "X-RateLimit-Reset"
HEADER_USED = "X-RateLimit-Used"
HEADER_RETRY_AFTER = "Retry-After"

# Outcome recorded for handlers that never produced a status (cancelled or
# disconnected); counted as a failure.
CLIENT_CLOSED_REQUEST = 499


def client_ip(request: Request) -> str:
    """Resolve the client address of a request.

    Uses the first hop of ``X-Forwarded-For``, then ``X-Real-IP``, then the
    socket peer.
    """
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()

    return request.client.host if request.client else "unknown"


def ip_key(request: Request) -> str:
    return f"ip:{client_ip(request)}"


def hash_key(key: str) -> str:
    """Hash a limiter key for logging without exposing identities."""
    return hashlib.sha256(key.encode()).hexdigest()[:16]


def never_skip(request: Request) -> bool:
    return False


@dataclass(frozen=True)
class Compensation:
    """Which request outcomes give their counted request back.

    Attributes:
        on_success: Decrement after responses with status < 400.
        on_failure: Decrement after responses with status >= 400.
    """

    on_success: bool = False
    on_failure: bool = False

    def applies_to(self, status_code: int) -> bool:
        if status_code < 400:
            return self.on_success
        return self.on_failure


@dataclass(frozen=True)
class LimiterPolicy:
    """Named throttling configuration.

    Attributes:
        name: Registry name of the policy.
        window_seconds: Length of a counting window.
        max_requests: Requests admitted per window and key.
        key_func: Derives the admission key from a request.
        skip: Requests matching this predicate are never counted.
        on_exceeded: Side-effect hook invoked on rejection.
        compensation: Outcome-based decrement rules.
    """

    name: str
    window_seconds: int
    max_requests: int
    key_func: KeyFunc = ip_key
    skip: SkipFunc = never_skip
    on_exceeded: ExceededHook | None = None
    compensation: Compensation = field(default_factory=Compensation)

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("name must be a non-empty string")
        if self.max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        if self.window_seconds < 1:
            raise ValueError("window_seconds must be >= 1")

    @property
    def description(self) -> str:
        minutes = math.ceil(self.window_seconds / 60)
        return f"{self.max_requests} requests per {minutes} minutes"

    def rejection_message(self, retry_after: int) -> str:
        return (
            f"Too many requests. Limit: {self.description}. "
            f"Try again in {retry_after} seconds."
        )


@dataclass(frozen=True)
class Admission:
    """A request counted against a policy.

    Attributes:
        policy: Policy the request was counted against.
        key: Admission key that was incremented.
        count: Count observed right after this request's increment.
        headers: Rate limit headers computed for this request.
    """

    policy: LimiterPolicy
    key: str
    count: int
    headers: dict[str, str]


@dataclass(frozen=True)
class RateLimitStatus:
    """Read-only view of one key's counter under a policy."""

    policy: str
    key: str
    count: int
    limit: int
    remaining: int
    reset_at: int
    limited: bool


def pending_headers(request: Request) -> dict[str, str]:
    """Rate limit headers accumulated on the request so far."""
    headers = getattr(request.state, "rate_limit_headers", None)
    if headers is None:
        headers = {}
        request.state.rate_limit_headers = headers
    return headers


def apply_pending_headers(request: Request, response) -> None:
    """Copy accumulated rate limit headers onto a response."""
    for name, value in getattr(request.state, "rate_limit_headers", {}).items():
        response.headers[name] = value


class RequestGate:
    """Applies one policy to requests.

    ``admit`` counts the request and decides, ``settle`` runs the
    compensating decrement, and ``call`` composes both around a downstream
    handler.
    """

    def __init__(
        self,
        policy: LimiterPolicy,
        store: AbstractCounterStore,
        *,
        clock: Callable[[], float] = time.time,
        include_headers: bool = True,
    ) -> None:
        self.policy = policy
        self.store = store
        self._clock = clock
        self._include_headers = include_headers

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return f"RequestGate(policy={self.policy.name!r})"

    def _build_headers(self, count: int, reset_at: float) -> dict[str, str]:
        return {
            HEADER_LIMIT: str(self.policy.max_requests),
            HEADER_REMAINING: str(max(0, self.policy.max_requests - count)),
            HEADER_RESET: str(math.ceil(reset_at)),
            HEADER_USED: str(count),
        }

    def _notify_exceeded(self, request: Request, key: str) -> None:
        if self.policy.on_exceeded is None:
            return
        try:
            self.policy.on_exceeded(request, key)
        except Exception:
            logger.exception(
                "rate_limit.hook_failed",
                extra={"policy": self.policy.name, "key_hash": hash_key(key)},
            )

    def admit(self, request: Request) -> Admission | None:
        """Count the request against the policy.

        Args:
            request: Incoming request.

        Returns:
            The admission, or None when the policy skips this request (in
            which case the store was not touched).

        Raises:
            RateLimitExceededError: When the count exceeds ``max_requests``.
        """
        policy = self.policy
        if policy.skip(request):
            return None

        key = policy.key_func(request)
        entry = self.store.increment(key, policy.window_seconds)
        count = entry.count
        headers = self._build_headers(count, entry.reset_at)
        if self._include_headers:
            pending_headers(request).update(headers)

        if count > policy.max_requests:
            retry_after = max(0, math.ceil(entry.reset_at - self._clock()))
            rejection_headers = dict(headers) if self._include_headers else {}
            rejection_headers[HEADER_RETRY_AFTER] = str(retry_after)

            logger.warning(
                "rate_limit.rejected",
                extra={
                    "policy": policy.name,
                    "key_hash": hash_key(key),
                    "limit": policy.max_requests,
                    "used": count,
                    "retry_after_s": retry_after,
                },
            )
            self._notify_exceeded(request, key)

            raise RateLimitExceededError(
                code="rate_limit_exceeded",
                message=policy.rejection_message(retry_after),
                details={
                    "policy": policy.name,
                    "limit": policy.max_requests,
                    "retry_after": retry_after,
                },
                retry_after=retry_after,
                headers=rejection_headers,
            )

        logger.debug(
            "rate_limit.allowed",
            extra={
                "policy": policy.name,
                "key_hash": hash_key(key),
                "limit": policy.max_requests,
                "remaining": max(0, policy.max_requests - count),
            },
        )
        return Admission(policy=policy, key=key, count=count, headers=headers)

    def settle(self, admission: Admission, status_code: int | None) -> None:
        """Apply the compensating decrement for a finished request.

        Args:
            admission: Admission returned by ``admit``.
            status_code: Final status of the request, or None when the
                handler never produced one (treated as a failure).
        """
        outcome = CLIENT_CLOSED_REQUEST if status_code is None else status_code
        if not self.policy.compensation.applies_to(outcome):
            return

        entry = self.store.decrement(admission.key)
        logger.debug(
            "rate_limit.compensated",
            extra={
                "policy": self.policy.name,
                "key_hash": hash_key(admission.key),
                "status_code": outcome,
                "applied": entry is not None,
            },
        )

    async def call(self, request: Request, call_next):
        """Run ``call_next`` behind this gate.

        Raises:
            RateLimitExceededError: When the request is rejected; call_next
                is never invoked in that case.
        """
        admission = self.admit(request)
        if admission is None:
            return await call_next(request)

        status_code: int | None = None
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        except Exception as exc:
            status_code = http_status_for(exc)
            raise
        finally:
            self.settle(admission, status_code)


class LimiterRegistry:
    """Fixed set of named policies and the counter stores backing them."""

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.time,
        sweep_interval_seconds: float = 60.0,
        enabled: bool = True,
        include_headers: bool = True,
    ) -> None:
        self.enabled = enabled
        self._clock = clock
        self._sweep_interval = sweep_interval_seconds
        self._include_headers = include_headers
        self._gates: dict[str, RequestGate] = {}
        self._stores: dict[int, InMemoryCounterStore] = {}

    def _store_for_window(self, window_seconds: int) -> InMemoryCounterStore:
        store = self._stores.get(window_seconds)
        if store is None:
            store = InMemoryCounterStore(
                name=f"window:{window_seconds}s",
                sweep_interval_seconds=self._sweep_interval,
                clock=self._clock,
            )
            self._stores[window_seconds] = store
        return store

    def register(self, policy: LimiterPolicy) -> RequestGate:
        """Register a policy and return its gate.

        Raises:
            ValueError: If a policy with the same name already exists.
        """
        if policy.name in self._gates:
            raise ValueError(f"policy {policy.name!r} is already registered")

        gate = RequestGate(
            policy,
            self._store_for_window(policy.window_seconds),
            clock=self._clock,
            include_headers=self._include_headers,
        )
        self._gates[policy.name] = gate
        return gate

    def gate(self, name: str) -> RequestGate:
        try:
            return self._gates[name]
        except KeyError:
            raise KeyError(f"unknown rate limit policy {name!r}") from None

    def get(self, name: str) -> LimiterPolicy:
        return self.gate(name).policy

    def names(self) -> list[str]:
        return list(self._gates)

    def __contains__(self, name: object) -> bool:
        return name in self._gates

    def store_for(self, name: str) -> AbstractCounterStore:
        return self.gate(name).store

    def stores(self) -> list[InMemoryCounterStore]:
        return list(self._stores.values())

    def status(self, name: str, key: str) -> RateLimitStatus:
        """Report the counter of ``key`` under policy ``name`` without counting."""
        gate = self.gate(name)
        policy = gate.policy
        entry = gate.store.get(key)
        if entry is None:
            count = 0
            reset_at = self._clock() + policy.window_seconds
        else:
            count = entry.count
            reset_at = entry.reset_at

        return RateLimitStatus(
            policy=policy.name,
            key=key,
            count=count,
            limit=policy.max_requests,
            remaining=max(0, policy.max_requests - count),
            reset_at=math.ceil(reset_at),
            limited=count >= policy.max_requests,
        )

    def reset(self, name: str, key: str) -> None:
        self.store_for(name).reset(key)
        logger.info(
            "rate_limit.reset",
            extra={"policy": name, "key_hash": hash_key(key)},
        )

    def reset_all(self) -> None:
        for store in self._stores.values():
            store.reset_all()
        logger.info("rate_limit.reset_all", extra={"stores": len(self._stores)})

    def stats(self) -> dict[str, dict[str, object]]:
        """Per-store key counts along with the policies each store backs."""
        result: dict[str, dict[str, object]] = {}
        for window_seconds, store in self._stores.items():
            snapshot = store.stats()
            result[store.name] = {
                "window_seconds": window_seconds,
                "policies": [
                    name for name, gate in self._gates.items() if gate.store is store
                ],
                "total_keys": snapshot.total_keys,
                "active_keys": snapshot.active_keys,
            }
        return result

    def start(self) -> None:
        """Start the background sweep of every store."""
        for store in self._stores.values():
            store.start()

    async def close(self) -> None:
        for store in self._stores.values():
            await store.close()


def _principal_role(request: Request) -> Role | None:
    principal = current_principal(request)
    return principal.role if principal else None


def _general_key(request: Request) -> str:
    principal = current_principal(request)
    if principal is not None:
        return f"user:{principal.id}"
    return ip_key(request)


def _strict_key(request: Request) -> str:
    principal = current_principal(request)
    if principal is not None:
        return f"strict:{principal.id}:{ip_key(request)}"
    return f"strict:{ip_key(request)}"


def _authentication_key(request: Request) -> str:
    return f"auth:{ip_key(request)}"


def _upload_key(request: Request) -> str:
    principal = current_principal(request)
    if principal is not None:
        return f"upload:{principal.id}"
    return f"upload:{ip_key(request)}"


def _api_key_key(request: Request) -> str:
    api_key_id = current_api_key_id(request)
    if api_key_id:
        return f"apikey:{api_key_id}"
    return f"apikey:{_general_key(request)}"


def _skip_unrestricted(request: Request) -> bool:
    role = _principal_role(request)
    return role is not None and role.unrestricted


def _skip_publishers(request: Request) -> bool:
    return _principal_role(request) in (Role.ADMIN, Role.DEVELOPER)


def _log_general_exceeded(request: Request, key: str) -> None:
    principal = current_principal(request)
    logger.warning(
        "rate_limit.exceeded",
        extra={
            "policy": "general",
            "principal_id": principal.id if principal else "anonymous",
            "key_hash": hash_key(key),
        },
    )


def _log_authentication_exceeded(request: Request, key: str) -> None:
    logger.warning(
        "rate_limit.exceeded",
        extra={
            "policy": "authentication",
            "key_hash": hash_key(key),
            "path": request.url.path,
        },
    )


def build_default_registry(
    app_settings: AppSettings,
    *,
    clock: Callable[[], float] = time.time,
) -> LimiterRegistry:
    """Create the registry holding the built-in policies.

    Policies:
        general: every request; per principal, else per client address.
        strict: sensitive mutations; per principal and address.
        authentication: credential checks; per client address.
        upload: version publishing; per principal, else per address.
        api_key: API listing traffic; per key, else principal, else address.
    """

    registry = LimiterRegistry(
        clock=clock,
        sweep_interval_seconds=app_settings.rate_limit_sweep_interval_seconds,
        enabled=app_settings.rate_limit_enabled,
        include_headers=app_settings.rate_limit_include_headers,
    )
    health_path = app_settings.health_path

    def _skip_general(request: Request) -> bool:
        return _skip_unrestricted(request) or request.url.path == health_path

    registry.register(
        LimiterPolicy(
            name="general",
            window_seconds=app_settings.rate_limit_window_seconds,
            max_requests=app_settings.rate_limit_max_requests,
            key_func=_general_key,
            skip=_skip_general,
            on_exceeded=_log_general_exceeded,
        )
    )
    registry.register(
        LimiterPolicy(
            name="strict",
            window_seconds=5 * 60,
            max_requests=10,
            key_func=_strict_key,
            skip=_skip_unrestricted,
        )
    )
    registry.register(
        LimiterPolicy(
            name="authentication",
            window_seconds=15 * 60,
            max_requests=5,
            key_func=_authentication_key,
            on_exceeded=_log_authentication_exceeded,
        )
    )
    registry.register(
        LimiterPolicy(
            name="upload",
            window_seconds=60 * 60,
            max_requests=50,
            key_func=_upload_key,
            skip=_skip_publishers,
        )
    )
    registry.register(
        LimiterPolicy(
            name="api_key",
            window_seconds=60 * 60,
            max_requests=1000,
            key_func=_api_key_key,
        )
    )
    return registry
