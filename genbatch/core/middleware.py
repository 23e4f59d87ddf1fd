"""Per-request correlation id.

The id is taken from the incoming header named by ``LOG_REQUEST_ID_HEADER``
(``X-Request-ID`` by default) or generated, bound for logging while the
request is handled, and echoed on the response together with the handling
time. Tasks submitted during the request inherit it through their context
copy, so their log lines stay tied to the submitting request.
"""

from __future__ import annotations

import time
from typing import Awaitable, Callable
from uuid import uuid4

from fastapi import Request, Response

from genbatch.core.logging import clear_request_id, set_request_id

DURATION_HEADER = "X-Request-Duration-ms"


async def request_id_middleware(
    request: Request,
    call_next: Callable[[Request], Awaitable[Response]],
) -> Response:
    header = request.app.state.settings.log.request_id_header
    request_id = request.headers.get(header) or uuid4().hex

    set_request_id(request_id)
    started = time.perf_counter()
    try:
        response = await call_next(request)
    finally:
        clear_request_id()

    response.headers[header] = request_id
    response.headers.setdefault(DURATION_HEADER, f"{(time.perf_counter() - started) * 1000:.2f}")
    return response
