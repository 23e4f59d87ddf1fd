from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class AbstractGenerationClient(ABC):
    """Interface for remote generation providers that speak JSON over HTTP."""

    @abstractmethod
    async def post_json(self, endpoint: str, payload: dict[str, Any]) -> dict[str, Any]:
        """Send one generation request and return the decoded response body.

        Args:
            endpoint: Path relative to the provider base URL, e.g. ``/t2a_v2``.
            payload: JSON request body.

        Returns:
            dict[str, Any]: Decoded provider response whose envelope reported success.

        Raises:
            AppError: Classified failure (rate limit, timeout, network, provider).
        """
        ...

    @abstractmethod
    async def download(self, url: str) -> bytes:
        """Fetch a generated asset from an absolute URL."""
        ...

    async def aclose(self) -> None:
        """Release network resources. No-op by default."""
        return None
