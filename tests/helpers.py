"""Request and principal builders shared by the test modules."""

from typing import Any

from starlette.requests import Request

from marketplace.core.auth import Principal, Role

ALICE = {"X-API-Key": "alice-key"}
BOB = {"X-API-Key": "bob-key"}
ROOT = {"X-API-Key": "root-key"}


def make_request(
    path: str = "/api/v1/things",
    *,
    method: str = "GET",
    headers: dict[str, str] | None = None,
    client: tuple[str, int] | None = ("10.0.0.1", 50000),
    principal: Principal | None = None,
    api_key_id: str | None = None,
    path_params: dict[str, Any] | None = None,
) -> Request:
    """Build a Starlette request with an attached (or absent) principal."""
    scope = {
        "type": "http",
        "method": method,
        "path": path,
        "raw_path": path.encode(),
        "query_string": b"",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": client,
        "server": ("testserver", 80),
        "scheme": "http",
        "path_params": path_params or {},
        "state": {"principal": principal, "api_key_id": api_key_id},
    }
    return Request(scope)


def principal(pid: str = "alice", role: Role = Role.USER) -> Principal:
    return Principal(id=pid, role=role)
