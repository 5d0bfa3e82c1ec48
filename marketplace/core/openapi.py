"""OpenAPI customization utilities.

Enriches the generated schema with:
- API Key security scheme (``X-API-Key``), exempting the health endpoint
- Tags metadata
- A shared 429 response on every operation, since every route sits behind
  the general rate limit
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import FastAPI

_TAGS = [
    {"name": "Auth", "description": "Credential verification."},
    {"name": "Extensions", "description": "Extensions and their published versions."},
    {"name": "Reviews", "description": "Extension reviews."},
    {"name": "Installations", "description": "Extension installations."},
    {"name": "Admin", "description": "Rate limit counters inspection and reset."},
    {"name": "Health", "description": "Liveness checks."},
]

_RATE_LIMITED_RESPONSE = {
    "description": "Too many requests; see the Retry-After header.",
    "headers": {
        "Retry-After": {"schema": {"type": "integer"}},
        "X-RateLimit-Limit": {"schema": {"type": "integer"}},
        "X-RateLimit-Remaining": {"schema": {"type": "integer"}},
        "X-RateLimit-Reset": {"schema": {"type": "integer"}},
        "X-RateLimit-Used": {"schema": {"type": "integer"}},
    },
}


def apply_openapi_customizations(app: FastAPI, *, health_path: str = "/health") -> None:
    """Patch FastAPI's OpenAPI generation to add metadata and security.

    Args:
        app: Application whose schema is patched.
        health_path: Path left unauthenticated and without the 429 response.
    """

    original_openapi = app.openapi

    def custom_openapi() -> Dict[str, Any]:
        schema = original_openapi()

        components = schema.setdefault("components", {})
        components.setdefault("securitySchemes", {}).setdefault(
            "ApiKeyAuth",
            {
                "type": "apiKey",
                "in": "header",
                "name": "X-API-Key",
                "description": "Provide your API key via the X-API-Key header.",
            },
        )
        schema.setdefault("security", [{"ApiKeyAuth": []}])

        tags = schema.setdefault("tags", [])
        existing_tag_names = {t.get("name") for t in tags}
        tags.extend(tag for tag in _TAGS if tag["name"] not in existing_tag_names)

        for path, methods in schema.get("paths", {}).items():
            for method_obj in methods.values():
                if not isinstance(method_obj, dict):
                    continue
                if path == health_path:
                    method_obj["security"] = []
                else:
                    method_obj.setdefault("responses", {}).setdefault("429", _RATE_LIMITED_RESPONSE)

        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]
