"""Map errors raised by routes onto the JSON error envelope.

Every ``AppError`` becomes ``{"error": {kind, code, message, request_id,
details?}}`` with the HTTP status picked from its kind. Anything else is a
500 whose body says nothing about the underlying exception.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from genbatch.core.errors import AppError, AuthenticationAppError, ErrorKind
from genbatch.core.logging import get_request_id

logger = logging.getLogger(__name__)

STATUS_BY_KIND = {
    ErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.RATE_LIMIT: status.HTTP_429_TOO_MANY_REQUESTS,
    ErrorKind.NETWORK: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.PROVIDER: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.TIMEOUT: status.HTTP_504_GATEWAY_TIMEOUT,
    ErrorKind.CONFIGURATION: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorKind.GENERIC: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def status_for_error(exc: AppError) -> int:
    # Authentication errors carry the validation kind but answer 403.
    if isinstance(exc, AuthenticationAppError):
        return status.HTTP_403_FORBIDDEN
    return STATUS_BY_KIND.get(exc.kind, status.HTTP_500_INTERNAL_SERVER_ERROR)


def _envelope(status_code: int, error: dict[str, Any]) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": {**error, "request_id": get_request_id()}},
    )


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    status_code = status_for_error(exc)
    logger.warning(
        "http.app_error",
        extra={
            "error_kind": exc.kind.value,
            "error_code": exc.code,
            "status_code": status_code,
            "path": request.url.path,
        },
    )
    return _envelope(status_code, exc.to_dict())


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last-resort handler.

    The exception is logged with its traceback; the response carries only a
    fixed message and the request id for correlation.
    """
    logger.error(
        "http.unhandled_error",
        exc_info=exc,
        extra={"error_type": type(exc).__name__, "path": request.url.path, "method": request.method},
    )
    return _envelope(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        {
            "kind": ErrorKind.GENERIC.value,
            "code": "internal_server_error",
            "message": "An unexpected error occurred. Please try again later.",
        },
    )


def setup_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(Exception, general_exception_handler)
