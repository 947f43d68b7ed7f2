# backend/tradeclarity/utils/context.py
"""
Request-scoped context for TradeClarity.

Holds the correlation ID (set by CorrelationIdMiddleware) and the
authenticated user ID (set by the auth dependency) in contextvars, so log
records emitted anywhere during a request can be tied back to it.

Usage:
    from tradeclarity.utils.context import get_correlation_id, set_user_id

    set_user_id("5f0c...")
    get_correlation_id()
"""

from contextvars import ContextVar

# =============================================================================
# CONTEXT VARIABLES
# =============================================================================

_correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)
_user_id_var: ContextVar[str | None] = ContextVar("user_id", default=None)


# =============================================================================
# CORRELATION ID
# =============================================================================

def get_correlation_id() -> str | None:
    """Return the current request's correlation ID, if any."""
    return _correlation_id_var.get()


def set_correlation_id(correlation_id: str) -> None:
    _correlation_id_var.set(correlation_id)


def clear_correlation_id() -> None:
    _correlation_id_var.set(None)


# =============================================================================
# AUTHENTICATED USER
# =============================================================================

def get_user_id() -> str | None:
    """
    Return the user the current request acts for.

    Set once the bearer token (or the internal service key plus body
    userId) has been verified.
    """
    return _user_id_var.get()


def set_user_id(user_id: str) -> None:
    _user_id_var.set(user_id)


def clear_user_id() -> None:
    _user_id_var.set(None)
