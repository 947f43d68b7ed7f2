# backend/tradeclarity/middleware/__init__.py
"""
ASGI middleware: correlation IDs and rate limiting.

Usage:
    from tradeclarity.middleware import CorrelationIdMiddleware, limiter

    app.add_middleware(CorrelationIdMiddleware)
    app.state.limiter = limiter
"""

from tradeclarity.middleware.correlation import CorrelationIdMiddleware
from tradeclarity.middleware.rate_limit import (
    limiter,
    rate_limit_exceeded_handler,
    SlowAPIMiddleware,
)

__all__ = [
    "CorrelationIdMiddleware",
    "limiter",
    "rate_limit_exceeded_handler",
    "SlowAPIMiddleware",
]
