# backend/tradeclarity/middleware/correlation.py
"""
Correlation ID middleware.

Takes the request's X-Correlation-ID (or X-Request-ID) header, or generates a
UUID, stores it in context for the logging filter, and echoes it back on the
response. The user ID context is cleared at the end of every request.

Usage:
    app.add_middleware(CorrelationIdMiddleware)
"""

import uuid
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from tradeclarity.utils.context import (
    set_correlation_id,
    clear_correlation_id,
    clear_user_id,
)

CORRELATION_ID_HEADER = "X-Correlation-ID"
REQUEST_ID_HEADER = "X-Request-ID"


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Attach a correlation ID to every request and its response."""

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Response],
    ) -> Response:
        correlation_id = (
            request.headers.get(CORRELATION_ID_HEADER)
            or request.headers.get(REQUEST_ID_HEADER)
            or str(uuid.uuid4())
        )
        set_correlation_id(correlation_id)

        try:
            response = await call_next(request)
            response.headers[CORRELATION_ID_HEADER] = correlation_id
            return response
        finally:
            clear_correlation_id()
            clear_user_id()
