"""Pytest configuration and fixtures shared across all test modules.

Environment defaults are set before any settings are built so that tests
never depend on a developer's local .env file.
"""

from __future__ import annotations

import os
from typing import Any

import pytest

os.environ.setdefault("APP_ENV", "testing")
os.environ.setdefault("PROVIDER_API_KEY", "test-provider-key")
os.environ.setdefault("APP_API_KEY_REQUIRED", "true")
os.environ.setdefault("APP_API_KEYS", "test-api-key-123,test-api-key-456")

from genbatch.adapters.generation.base import AbstractGenerationClient  # noqa: E402
from genbatch.core.config import Settings, load_settings  # noqa: E402

API_KEY = "test-api-key-123"


class FakeGenerationClient(AbstractGenerationClient):
    """Scripted stand-in for the remote provider.

    ``responses`` maps an endpoint to either a dict (returned), an exception
    (raised) or a list of those consumed one per call.
    """

    def __init__(
        self,
        responses: dict[str, Any] | None = None,
        downloads: dict[str, bytes | Exception] | None = None,
    ) -> None:
        self.responses = responses or {}
        self.downloads = downloads or {}
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.closed = False

    async def post_json(self, endpoint: str, payload: dict[str, Any]) -> dict[str, Any]:
        self.calls.append((endpoint, payload))
        scripted = self.responses[endpoint]
        if isinstance(scripted, list):
            scripted = scripted.pop(0)
        if isinstance(scripted, Exception):
            raise scripted
        return scripted

    async def download(self, url: str) -> bytes:
        content = self.downloads[url]
        if isinstance(content, Exception):
            raise content
        return content

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings with a temporary output dir and a fast limiter window."""
    loaded = load_settings("testing")
    loaded.app.output_dir = str(tmp_path)
    return loaded


@pytest.fixture
def fake_client() -> FakeGenerationClient:
    return FakeGenerationClient()


@pytest.fixture
def make_fake_client() -> type[FakeGenerationClient]:
    """The fake client class, for tests that script their own responses."""
    return FakeGenerationClient
