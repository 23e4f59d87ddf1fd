"""Application-level exception types and error classification.

This module defines the error taxonomy shared by the limiter, the task
registry, the remote generation adapters and the HTTP layer. Every failure
that reaches a task's terminal outcome is normalized to an ``AppError`` so
callers can tell *what kind* of failure happened and decide whether to
resubmit.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar, NotRequired, TypedDict

import httpx


class ErrorKind(str, Enum):
    """Coarse failure category. Only RATE_LIMIT feeds adaptive backoff."""

    CONFIGURATION = "configuration"
    VALIDATION = "validation"
    NETWORK = "network"
    TIMEOUT = "timeout"
    RATE_LIMIT = "rate_limit"
    PROVIDER = "provider"
    GENERIC = "generic"


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients.

    Fields are optional to keep shapes consistent without forcing every
    error to fill every field.
    """

    hint: str
    field: str
    status_code: int
    provider_status: int
    retry_after: float
    timeout_seconds: float
    category: str
    task_id: str
    error_type: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    kind: ClassVar[ErrorKind] = ErrorKind.GENERIC

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the structure stored as a failed task outcome."""

        payload: dict[str, Any] = {
            "kind": self.kind.value,
            "code": self.code,
            "message": self.message,
        }
        if self.details:
            payload["details"] = dict(self.details)
        return payload


class ConfigurationAppError(AppError):
    """Raised when required setup is missing or invalid."""

    kind = ErrorKind.CONFIGURATION


class ValidationAppError(AppError):
    """Raised when input validation fails."""

    kind = ErrorKind.VALIDATION


class NetworkAppError(AppError):
    """Raised on transient connectivity failures."""

    kind = ErrorKind.NETWORK


class TimeoutAppError(AppError):
    """Raised when a remote call exceeds its deadline."""

    kind = ErrorKind.TIMEOUT


class RateLimitAppError(AppError):
    """Raised when the remote service explicitly signals throttling."""

    kind = ErrorKind.RATE_LIMIT


class ProviderAppError(AppError):
    """Raised when the remote provider rejects or fails a call."""

    kind = ErrorKind.PROVIDER


class AuthenticationAppError(AppError):
    """Raised when authentication/authorization fails on the HTTP surface."""

    kind = ErrorKind.VALIDATION


class DuplicateTaskError(ValidationAppError):
    """Raised when a caller-supplied task id is already being tracked."""


class LimiterResetError(AppError):
    """Raised into waiters that were still queued when a limiter was reset."""


# Provider envelope codes (``base_resp.status_code``).
PROVIDER_AUTH_FAILED = 1004
PROVIDER_RATE_LIMITED = {1002, 1013}


def _parse_retry_after(raw: str | None) -> float | None:
    if raw is None:
        return None
    try:
        return max(0.0, float(raw))
    except ValueError:
        return None


def error_from_status(
    status_code: int,
    body: str = "",
    *,
    retry_after: float | None = None,
) -> AppError:
    """Map an HTTP status from the provider to an ``AppError``."""

    if status_code == 429:
        details: ErrorDetails = {"status_code": status_code}
        if retry_after is not None:
            details["retry_after"] = retry_after
        return RateLimitAppError(
            code="provider_rate_limited",
            message="Rate limit exceeded",
            details=details,
        )
    if status_code in (401, 403):
        return ProviderAppError(
            code="provider_unauthorized",
            message="Unauthorized: invalid API key or access denied",
            details={"status_code": status_code},
        )
    if status_code == 404:
        return ProviderAppError(
            code="provider_not_found",
            message="Not found: invalid endpoint",
            details={"status_code": status_code},
        )
    message = f"Provider responded with HTTP {status_code}"
    if body:
        message = f"{message}: {body[:200]}"
    return ProviderAppError(
        code="provider_http_error",
        message=message,
        details={"status_code": status_code},
    )


def error_from_envelope(response: dict[str, Any]) -> AppError | None:
    """Inspect a provider ``base_resp`` envelope and return an error if set."""

    base_resp = response.get("base_resp") or {}
    status = base_resp.get("status_code", 0)
    if not status:
        return None

    message = base_resp.get("status_msg") or "API request failed"
    if status == PROVIDER_AUTH_FAILED:
        return ProviderAppError(
            code="provider_auth_failed",
            message=f"Authentication failed: {message}",
            details={"provider_status": status},
        )
    if status in PROVIDER_RATE_LIMITED:
        details: ErrorDetails = {"provider_status": status}
        retry_after = base_resp.get("retry_after")
        if retry_after is not None:
            details["retry_after"] = float(retry_after)
        return RateLimitAppError(
            code="provider_rate_limited",
            message=f"Rate limit exceeded: {message}",
            details=details,
        )
    return ProviderAppError(
        code="provider_api_error",
        message=message,
        details={"provider_status": status},
    )


def classify_error(exc: BaseException) -> AppError:
    """Normalize any exception to an ``AppError``.

    Already-classified errors are returned unchanged. The original exception
    is chained via ``__cause__`` for tracebacks.

    Args:
        exc: Exception raised by a work function or adapter.

    Returns:
        AppError carrying the failure kind, code and message.
    """

    if isinstance(exc, AppError):
        return exc

    error: AppError
    if isinstance(exc, httpx.TimeoutException) or isinstance(exc, asyncio.TimeoutError):
        error = TimeoutAppError(code="request_timeout", message="Request timeout")
    elif isinstance(exc, httpx.HTTPStatusError):
        response = exc.response
        error = error_from_status(
            response.status_code,
            retry_after=_parse_retry_after(response.headers.get("retry-after")),
        )
    elif isinstance(exc, (httpx.NetworkError, ConnectionError)):
        error = NetworkAppError(
            code="network_error",
            message="Network connection failed",
            details={"error_type": type(exc).__name__},
        )
    elif isinstance(exc, ValueError):
        error = ValidationAppError(code="invalid_input", message=str(exc) or "Invalid input")
    else:
        error = AppError(
            code="unexpected_error",
            message=str(exc) or "Unknown error occurred",
            details={"error_type": type(exc).__name__},
        )

    error.__cause__ = exc
    return error


def format_error_for_user(error: BaseException) -> str:
    """Render a one-line, human-readable description of an error."""

    labels = {
        ErrorKind.CONFIGURATION: "Configuration Error",
        ErrorKind.VALIDATION: "Validation Error",
        ErrorKind.NETWORK: "Network Error",
        ErrorKind.TIMEOUT: "Timeout Error",
        ErrorKind.RATE_LIMIT: "Rate Limit Error",
        ErrorKind.PROVIDER: "API Error",
        ErrorKind.GENERIC: "Error",
    }
    classified = classify_error(error)
    return f"{labels[classified.kind]}: {classified.message}"
