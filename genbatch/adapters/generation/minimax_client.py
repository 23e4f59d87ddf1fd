"""MiniMax HTTP client adapter.

Requests are retried with a linearly growing delay for transient failures
(network errors, timeouts, 5xx responses). Rate-limit rejections are never
retried here: they are reported to the caller so the adaptive limiter can
slow the whole category down.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, TypeVar

import httpx

from genbatch.adapters.generation.base import AbstractGenerationClient
from genbatch.core.errors import (
    AppError,
    ErrorKind,
    NetworkAppError,
    ProviderAppError,
    TimeoutAppError,
    error_from_envelope,
    error_from_status,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

IMAGE_GENERATION_ENDPOINT = "/image_generation"
TEXT_TO_SPEECH_ENDPOINT = "/t2a_v2"

API_SOURCE_HEADER = "MM-API-Source"
API_SOURCE = "genbatch"


def _retry_after(response: httpx.Response) -> float | None:
    raw = response.headers.get("retry-after")
    if raw is None:
        return None
    try:
        return max(0.0, float(raw))
    except ValueError:
        return None


class MinimaxHTTPClient(AbstractGenerationClient):
    """Client for the MiniMax REST API built on ``httpx.AsyncClient``."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.minimaxi.com/v1",
        timeout_seconds: float = 30.0,
        retry_attempts: int = 3,
        retry_delay_seconds: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the async HTTP clients.

        Args:
            api_key: Provider API key sent as a bearer token.
            base_url: Provider API base URL.
            timeout_seconds: Per-request timeout.
            retry_attempts: Total attempts for retryable failures.
            retry_delay_seconds: Base delay, multiplied by the attempt number.
            transport: Optional transport override (used by tests).
        """
        self.timeout_seconds = timeout_seconds
        self.retry_attempts = max(1, retry_attempts)
        self.retry_delay_seconds = retry_delay_seconds
        self.client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout_seconds,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
                API_SOURCE_HEADER: API_SOURCE,
            },
            transport=transport,
        )
        # Asset URLs point at a CDN; the API key must not travel there.
        self.download_client = httpx.AsyncClient(
            timeout=timeout_seconds,
            follow_redirects=True,
            transport=transport,
        )

    async def post_json(self, endpoint: str, payload: dict[str, Any]) -> dict[str, Any]:
        return await self._with_retry(lambda: self._post_once(endpoint, payload), endpoint)

    async def download(self, url: str) -> bytes:
        return await self._with_retry(lambda: self._download_once(url), "download")

    async def aclose(self) -> None:
        await self.client.aclose()
        await self.download_client.aclose()

    async def _post_once(self, endpoint: str, payload: dict[str, Any]) -> dict[str, Any]:
        start = time.perf_counter()
        response = await self._send(self.client.post(endpoint, json=payload))
        logger.debug(
            "provider.request",
            extra={
                "endpoint": endpoint,
                "status_code": response.status_code,
                "duration_ms": round((time.perf_counter() - start) * 1000, 2),
            },
        )

        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderAppError(
                code="provider_invalid_json",
                message="Provider returned a response that is not valid JSON",
                details={"status_code": response.status_code},
            ) from exc
        if not isinstance(data, dict):
            raise ProviderAppError(
                code="provider_invalid_json",
                message="Provider returned an unexpected response shape",
            )

        envelope_error = error_from_envelope(data)
        if envelope_error is not None:
            raise envelope_error
        return data

    async def _download_once(self, url: str) -> bytes:
        response = await self._send(self.download_client.get(url))
        return response.content

    async def _send(self, request: Awaitable[httpx.Response]) -> httpx.Response:
        try:
            response = await request
        except httpx.TimeoutException as exc:
            raise TimeoutAppError(
                code="request_timeout",
                message="Request timeout",
                details={"timeout_seconds": self.timeout_seconds},
            ) from exc
        except httpx.TransportError as exc:
            raise NetworkAppError(
                code="network_error",
                message="Network connection failed",
                details={"error_type": type(exc).__name__},
            ) from exc

        if response.is_error:
            raise error_from_status(
                response.status_code,
                response.text,
                retry_after=_retry_after(response),
            )
        return response

    async def _with_retry(self, send: Callable[[], Awaitable[T]], operation: str) -> T:
        attempt = 1
        while True:
            try:
                return await send()
            except AppError as exc:
                if not self._should_retry(exc, attempt):
                    raise
                delay = self.retry_delay_seconds * attempt
                logger.warning(
                    "provider.retry",
                    extra={
                        "operation": operation,
                        "attempt": attempt,
                        "max_attempts": self.retry_attempts,
                        "error_code": exc.code,
                        "delay_seconds": delay,
                    },
                )
                await asyncio.sleep(delay)
                attempt += 1

    def _should_retry(self, exc: AppError, attempt: int) -> bool:
        if attempt >= self.retry_attempts:
            return False
        if exc.kind in (ErrorKind.NETWORK, ErrorKind.TIMEOUT):
            return True
        status_code = (exc.details or {}).get("status_code")
        return (
            exc.kind is ErrorKind.PROVIDER
            and isinstance(status_code, int)
            and 500 <= status_code < 600
        )
