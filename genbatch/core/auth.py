"""``X-API-Key`` protection for the ``/v1`` task endpoints.

Accepted keys come from ``APP_API_KEYS`` (comma separated) on the settings
attached to the running app, so two apps built with different settings in
one process do not share a key set. Keys are never logged; a short SHA-256
prefix identifies them in log lines instead.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from typing import Annotated, Iterable

from fastapi import Header, HTTPException, Request, status

from genbatch.core.config import AppSettings
from genbatch.core.errors import AuthenticationAppError

logger = logging.getLogger(__name__)


def _fingerprint(key: str) -> str:
    return hashlib.sha256(key.encode()).hexdigest()[:16]


def parse_api_keys(keys_string: str | None) -> set[str]:
    """Split a comma-separated key list, dropping blanks and duplicates.

    >>> sorted(parse_api_keys(" a, b ,,a"))
    ['a', 'b']
    """
    return {part.strip() for part in (keys_string or "").split(",") if part.strip()}


def _matches_any(candidate: str, accepted: Iterable[str]) -> bool:
    # Compare against every key so timing does not reveal which one matched.
    found = False
    for key in accepted:
        found |= hmac.compare_digest(candidate.encode(), key.encode())
    return found


def validate_api_key(provided_key: str, app_settings: AppSettings) -> None:
    """Accept ``provided_key`` or raise.

    Args:
        provided_key: Key sent by the caller.
        app_settings: The ``APP_`` settings group.

    Raises:
        AuthenticationAppError: ``api_keys_not_configured`` when auth is on
            but the key list is empty, ``invalid_api_key`` on mismatch.
    """
    if not app_settings.api_key_required:
        return

    accepted = parse_api_keys(app_settings.api_keys)
    if not accepted:
        logger.error("auth.misconfigured", extra={"reason": "api_keys_not_configured"})
        raise AuthenticationAppError(
            code="api_keys_not_configured",
            message="API key authentication is enabled but no valid keys are configured",
            details={"hint": "Set APP_API_KEYS or disable auth with APP_API_KEY_REQUIRED=false"},
        )

    if not _matches_any(provided_key, accepted):
        logger.warning("auth.rejected", extra={"api_key_hash": _fingerprint(provided_key)})
        raise AuthenticationAppError(code="invalid_api_key", message="Invalid or missing API key")


def _forbidden(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


async def verify_api_key(
    request: Request,
    x_api_key: Annotated[str | None, Header(alias="X-API-Key")] = None,
) -> None:
    """Router dependency: 403 unless the request carries an accepted key."""
    app_settings: AppSettings = request.app.state.settings.app
    if not app_settings.api_key_required:
        return

    if not x_api_key:
        logger.warning("auth.rejected", extra={"reason": "missing_header"})
        raise _forbidden("Missing API key. Provide X-API-Key header.")

    try:
        validate_api_key(x_api_key, app_settings)
    except AuthenticationAppError as exc:
        raise _forbidden(exc.message) from exc
