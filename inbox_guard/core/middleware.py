"""HTTP middleware for request ID propagation and correlation.

Every request/response pair carries a correlation id so limiter decisions
(``rate_limit.*`` log events) can be tied back to the request that caused
them.

Usage:
    app.middleware("http")(request_id_middleware)
"""

from __future__ import annotations

import time
import uuid

from fastapi import Request, Response

from inbox_guard.core.config import settings
from inbox_guard.core.logging import clear_request_id, set_request_id

# Client supplied ids longer than this are replaced to keep log lines bounded
MAX_REQUEST_ID_LENGTH = 128


def _incoming_request_id(request: Request, header_name: str) -> str:
    candidate = request.headers.get(header_name)
    if candidate and len(candidate) <= MAX_REQUEST_ID_LENGTH and candidate.isprintable():
        return candidate
    return str(uuid.uuid4())


async def request_id_middleware(request: Request, call_next) -> Response:
    """HTTP middleware for request ID generation and propagation.

    Uses the incoming ``X-Request-ID`` header (configurable via
    LOG_REQUEST_ID_HEADER) when present and sane, otherwise a new UUID. The
    id is stored in contextvars for the lifetime of the request and echoed
    on the response together with the request duration.

    Args:
        request: The incoming HTTP request object.
        call_next: The next middleware/route handler in the stack.

    Returns:
        Response: The response with X-Request-ID and X-Request-Duration-ms headers.
    """

    header_name = settings.log.request_id_header
    request_id = _incoming_request_id(request, header_name)
    set_request_id(request_id)
    start = time.perf_counter()
    try:
        response: Response = await call_next(request)
    finally:
        clear_request_id()

    duration_ms = (time.perf_counter() - start) * 1000
    response.headers[header_name] = request_id
    response.headers.setdefault("X-Request-Duration-ms", f"{duration_ms:.2f}")
    return response
