"""OpenAPI customization: API key security scheme and tag metadata.

Every operation requires ``X-API-Key`` except ``/health``, which is marked
with an empty security requirement.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import FastAPI

API_KEY_SCHEME = {
    "type": "apiKey",
    "in": "header",
    "name": "X-API-Key",
    "description": "Provide your API key via the X-API-Key header.",
}

TAGS_METADATA = [
    {
        "name": "Tasks",
        "description": (
            "Submit image and speech generation tasks, poll their status, "
            "wait on the barrier and read rate limiter metrics."
        ),
    },
    {
        "name": "Health",
        "description": "Liveness check.",
    },
]

UNAUTHENTICATED_PATHS = {"/health"}


def apply_openapi_customizations(app: FastAPI) -> None:
    """Wrap ``app.openapi`` so the generated schema carries auth and tags."""

    original_openapi = app.openapi

    def custom_openapi() -> Dict[str, Any]:
        schema = original_openapi()

        components = schema.setdefault("components", {})
        components.setdefault("securitySchemes", {}).setdefault("ApiKeyAuth", API_KEY_SCHEME)
        schema.setdefault("security", [{"ApiKeyAuth": []}])

        tags = schema.setdefault("tags", [])
        known = {tag.get("name") for tag in tags}
        tags.extend(tag for tag in TAGS_METADATA if tag["name"] not in known)

        for path in UNAUTHENTICATED_PATHS & set(schema.get("paths", {})):
            for operation in schema["paths"][path].values():
                if isinstance(operation, dict):
                    operation["security"] = []

        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]
