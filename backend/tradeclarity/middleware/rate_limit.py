# backend/tradeclarity/middleware/rate_limit.py
"""
Rate limiting with slowapi.

Clients are keyed by IP address. X-Forwarded-For / X-Real-IP are honored
only when the immediate peer is a trusted proxy, so clients cannot spoof
their own key. Limits per endpoint family live in services/constants.py.

Usage:
    from tradeclarity.middleware.rate_limit import limiter, RATE_LIMIT_UPLOAD

    @router.post("/parse")
    @limiter.limit(RATE_LIMIT_UPLOAD)
    def parse_csv(request: Request, ...):
        ...
"""

import logging

from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from tradeclarity.config import settings
from tradeclarity.services.constants import (
    RATE_LIMIT_DEFAULT,
    RATE_LIMIT_WRITE,
    RATE_LIMIT_UPLOAD,
    RATE_LIMIT_HEALTH,
    RATE_LIMIT_ANALYTICS,
    RATE_LIMIT_AI,
)

logger = logging.getLogger(__name__)

# Seconds a throttled client is told to wait
RETRY_AFTER_SECONDS = 60


def _get_client_ip(request: Request) -> str:
    """Client address, taken from forwarded headers only behind a trusted proxy."""
    peer_ip = get_remote_address(request)

    if settings.trust_proxy_headers or peer_ip in settings.trusted_proxy_ips:
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()

        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            return real_ip

    return peer_ip


# In-memory storage; a shared store (storage_uri="redis://...") is needed
# once more than one API instance runs.
limiter = Limiter(
    key_func=_get_client_ip,
    default_limits=[RATE_LIMIT_DEFAULT],
)


async def rate_limit_exceeded_handler(
    request: Request, exc: RateLimitExceeded
) -> JSONResponse:
    """429 in the common error body shape, with a Retry-After header."""
    limit_info = str(exc.detail) if exc.detail else "Rate limit exceeded"

    logger.warning(f"Rate limit exceeded for {_get_client_ip(request)}: {limit_info}")

    return JSONResponse(
        status_code=429,
        content={
            "success": False,
            "error": "RATE_LIMITED",
            "message": f"Too many requests. {limit_info}",
            "details": {"retry_after": RETRY_AFTER_SECONDS},
        },
        headers={"Retry-After": str(RETRY_AFTER_SECONDS)},
    )


__all__ = [
    "limiter",
    "rate_limit_exceeded_handler",
    "SlowAPIMiddleware",
    "RATE_LIMIT_DEFAULT",
    "RATE_LIMIT_WRITE",
    "RATE_LIMIT_UPLOAD",
    "RATE_LIMIT_HEALTH",
    "RATE_LIMIT_ANALYTICS",
    "RATE_LIMIT_AI",
]
