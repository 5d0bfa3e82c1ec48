"""HTTP-level tests for the global and per-endpoint rate limits."""

from unittest.mock import Mock

import pytest
from fastapi import APIRouter, FastAPI, HTTPException
from fastapi.testclient import TestClient

from marketplace.api.routes import auth_router, extensions_router, installations_router, reviews_router
from marketplace.api.routing import GatedRoute, policies_of, rate_limited
from marketplace.core.app_factory import create_app
from marketplace.core.config import AppSettings
from marketplace.core.errors import ForbiddenError
from marketplace.core.exception_handlers import setup_exception_handlers
from marketplace.core.rate_limit import Compensation, LimiterPolicy, LimiterRegistry, ip_key
from tests.helpers import ALICE, BOB, ROOT

RATE_LIMIT_HEADERS = ("X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset", "X-RateLimit-Used")


class TestAuthenticationScenario:
    def test_sixth_login_attempt_is_throttled_until_window_elapses(self, client: TestClient, clock: Mock) -> None:
        for attempt in range(1, 6):
            resp = client.post("/api/v1/auth/verify", headers=ALICE)
            assert resp.status_code == 200
            assert resp.headers["X-RateLimit-Limit"] == "5"
            assert resp.headers["X-RateLimit-Used"] == str(attempt)
            assert resp.headers["X-RateLimit-Remaining"] == str(5 - attempt)

        assert resp.json() == {"id": "alice", "role": "developer"}

        clock.return_value = 1300.0
        resp = client.post("/api/v1/auth/verify", headers=ALICE)

        assert resp.status_code == 429
        # first attempt opened the window at 1000, so it resets at 1900
        assert resp.headers["Retry-After"] == "600"
        assert resp.headers["X-RateLimit-Reset"] == "1900"
        assert resp.headers["X-RateLimit-Remaining"] == "0"
        body = resp.json()
        assert body["code"] == "rate_limit_exceeded"
        assert body["message"] == (
            "Too many requests. Limit: 5 requests per 15 minutes. Try again in 600 seconds."
        )

        clock.return_value = 1900.0
        resp = client.post("/api/v1/auth/verify", headers=ALICE)

        assert resp.status_code == 200
        assert resp.headers["X-RateLimit-Used"] == "1"

    def test_failed_attempts_count_too(self, client: TestClient) -> None:
        for _ in range(5):
            assert client.post("/api/v1/auth/verify", headers={"X-API-Key": "guess"}).status_code == 401

        assert client.post("/api/v1/auth/verify", headers=ALICE).status_code == 429

    def test_addresses_are_throttled_independently(self, client: TestClient) -> None:
        first = {"X-Forwarded-For": "203.0.113.1"}
        second = {"X-Forwarded-For": "203.0.113.2"}
        for _ in range(5):
            client.post("/api/v1/auth/verify", headers=first)

        assert client.post("/api/v1/auth/verify", headers=first).status_code == 429
        assert client.post("/api/v1/auth/verify", headers=second).status_code == 401

    def test_admins_are_not_exempt(self, client: TestClient) -> None:
        for _ in range(5):
            assert client.post("/api/v1/auth/verify", headers=ROOT).status_code == 200

        assert client.post("/api/v1/auth/verify", headers=ROOT).status_code == 429


class TestGeneralPolicy:
    @pytest.fixture
    def app_settings(self) -> AppSettings:
        return AppSettings(rate_limit_max_requests=3)  # type: ignore[call-arg]

    def test_headers_on_every_gated_response(self, client: TestClient) -> None:
        resp = client.get("/api/v1/extensions/missing", headers=BOB)

        assert resp.status_code == 404
        assert resp.headers["X-RateLimit-Limit"] == "3"
        assert resp.headers["X-RateLimit-Used"] == "1"

    def test_fourth_request_rejected_by_middleware(self, client: TestClient) -> None:
        for _ in range(3):
            assert client.get("/api/v1/extensions/missing", headers=BOB).status_code == 404

        resp = client.get("/api/v1/extensions/missing", headers=BOB)

        assert resp.status_code == 429
        assert resp.headers["Retry-After"] == "900"
        assert resp.headers["X-RateLimit-Used"] == "4"
        assert resp.headers.get("X-Request-ID")
        assert "3 requests per 15 minutes" in resp.json()["message"]

    def test_principals_keyed_separately_from_anonymous_address(self, client: TestClient) -> None:
        for _ in range(3):
            client.get("/api/v1/extensions/missing", headers=BOB)

        assert client.get("/api/v1/extensions/missing", headers=BOB).status_code == 429
        assert client.get("/api/v1/extensions/missing").status_code == 404
        assert client.get("/api/v1/extensions/missing", headers=ALICE).status_code == 404

    def test_health_is_skipped(self, client: TestClient, app: FastAPI) -> None:
        for _ in range(5):
            resp = client.get("/health")
            assert resp.status_code == 200
            assert not any(name in resp.headers for name in RATE_LIMIT_HEADERS)

        assert app.state.limiters.store_for("general").stats().total_keys == 0

    def test_admin_is_skipped(self, client: TestClient) -> None:
        for _ in range(5):
            resp = client.get("/api/v1/extensions/missing", headers=ROOT)
            assert resp.status_code == 404
            assert "X-RateLimit-Limit" not in resp.headers


class TestHealthPath:
    @pytest.fixture
    def app_settings(self) -> AppSettings:
        return AppSettings(health_path="/healthz")  # type: ignore[call-arg]

    def test_health_route_follows_setting(self, client: TestClient) -> None:
        resp = client.get("/healthz")

        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}
        assert not any(name in resp.headers for name in RATE_LIMIT_HEADERS)
        assert client.get("/health").status_code == 404

    def test_openapi_exempts_configured_path(self, app: FastAPI) -> None:
        paths = app.openapi()["paths"]

        assert paths["/healthz"]["get"]["security"] == []
        assert "429" not in paths["/healthz"]["get"]["responses"]
        assert "429" in paths["/api/v1/extensions"]["get"]["responses"]


class TestEndpointPolicies:
    def test_endpoint_headers_override_general(self, client: TestClient) -> None:
        resp = client.get("/api/v1/extensions", headers=BOB)

        assert resp.status_code == 200
        assert resp.headers["X-RateLimit-Limit"] == "1000"

    def test_declared_policies(self) -> None:
        routers = (auth_router, extensions_router, reviews_router, installations_router)
        declared = {
            (route.path, method): route.rate_limit_policies
            for router in routers
            for route in router.routes
            if isinstance(route, GatedRoute)
            for method in route.methods
            if route.rate_limit_policies
        }
        assert declared == {
            ("/auth/verify", "POST"): ("authentication",),
            ("/extensions", "GET"): ("api_key",),
            ("/extensions/{extension_id}", "DELETE"): ("strict",),
            ("/extensions/{extension_id}/versions", "POST"): ("upload",),
        }

    def test_headers_kept_on_unexpected_errors(self, app: FastAPI) -> None:
        router = APIRouter(route_class=GatedRoute)

        @router.post("/explode")
        @rate_limited("strict")
        async def explode() -> dict:
            raise RuntimeError("storage unavailable")

        app.include_router(router)
        client = TestClient(app, raise_server_exceptions=False)

        resp = client.post("/explode", headers=BOB)

        assert resp.status_code == 500
        assert resp.json()["code"] == "internal_server_error"
        assert resp.headers["X-RateLimit-Limit"] == "10"
        assert resp.headers["X-RateLimit-Used"] == "1"

    def test_policies_sharing_a_window_count_separately(self, clock: Mock) -> None:
        cfg = AppSettings(rate_limit_window_seconds=3600)  # type: ignore[call-arg]
        app = create_app(cfg, clock=clock, configure_logs=False)
        client = TestClient(app)

        resp = client.get("/api/v1/extensions")

        assert resp.status_code == 200
        assert resp.headers["X-RateLimit-Limit"] == "1000"
        assert resp.headers["X-RateLimit-Used"] == "1"
        store = app.state.limiters.store_for("general")
        assert store is app.state.limiters.store_for("api_key")
        assert store.get("ip:testclient").count == 1
        assert store.get("apikey:ip:testclient").count == 1

    def test_rate_limiting_can_be_disabled(self, clock: Mock) -> None:
        cfg = AppSettings(rate_limit_enabled=False)  # type: ignore[call-arg]
        client = TestClient(create_app(cfg, clock=clock, configure_logs=False))

        for _ in range(10):
            resp = client.post("/api/v1/auth/verify", headers=ALICE)
            assert resp.status_code == 200
            assert "X-RateLimit-Limit" not in resp.headers

    def test_headers_can_be_suppressed(self, clock: Mock) -> None:
        cfg = AppSettings(rate_limit_include_headers=False)  # type: ignore[call-arg]
        client = TestClient(create_app(cfg, clock=clock, configure_logs=False))

        for _ in range(5):
            resp = client.post("/api/v1/auth/verify", headers=ALICE)
            assert "X-RateLimit-Limit" not in resp.headers

        resp = client.post("/api/v1/auth/verify", headers=ALICE)
        assert resp.status_code == 429
        assert resp.headers["Retry-After"] == "900"
        assert "X-RateLimit-Limit" not in resp.headers


def _compensating_app(clock: Mock, compensation: Compensation) -> tuple[FastAPI, LimiterRegistry]:
    registry = LimiterRegistry(clock=clock)
    registry.register(
        LimiterPolicy(
            name="login",
            window_seconds=60,
            max_requests=2,
            key_func=ip_key,
            compensation=compensation,
        )
    )

    router = APIRouter(route_class=GatedRoute)

    @router.post("/ok")
    @rate_limited("login")
    async def ok() -> dict:
        return {"status": "ok"}

    @router.post("/denied")
    @rate_limited("login")
    async def denied() -> dict:
        raise ForbiddenError(code="forbidden", message="Wrong credentials.")

    @router.post("/broken")
    @rate_limited("login")
    async def broken() -> dict:
        raise HTTPException(status_code=400, detail="bad input")

    app = FastAPI()
    app.state.limiters = registry
    setup_exception_handlers(app)
    app.include_router(router)
    return app, registry


class TestCompensation:
    def test_successful_requests_are_given_back(self, clock: Mock) -> None:
        app, registry = _compensating_app(clock, Compensation(on_success=True))
        client = TestClient(app)

        for _ in range(5):
            assert client.post("/ok").status_code == 200

        assert registry.store_for("login").get("ip:testclient").count == 0

        assert client.post("/denied").status_code == 403
        assert client.post("/denied").status_code == 403
        resp = client.post("/denied")
        assert resp.status_code == 429
        assert resp.headers["X-RateLimit-Used"] == "3"

    def test_failed_requests_are_given_back(self, clock: Mock) -> None:
        app, registry = _compensating_app(clock, Compensation(on_failure=True))
        client = TestClient(app)

        for _ in range(5):
            resp = client.post("/denied")
            assert resp.status_code == 403
            assert resp.headers["X-RateLimit-Used"] == "1"
        assert client.post("/broken").status_code == 400

        assert registry.store_for("login").get("ip:testclient").count == 0
        assert client.post("/ok").status_code == 200
        assert client.post("/ok").status_code == 200
        assert client.post("/ok").status_code == 429

    def test_rate_limited_requires_policy_names(self) -> None:
        with pytest.raises(ValueError):
            rate_limited()

    def test_policies_of_undecorated_endpoint(self) -> None:
        async def endpoint() -> None:
            return None

        assert policies_of(endpoint) == ()
