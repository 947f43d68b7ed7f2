# backend/tradeclarity/utils/__init__.py
"""
Cross-cutting utilities for TradeClarity.

- logging: setup_logging() with correlation/user ID stamping
- context: request-scoped correlation ID and user ID
- date_utils: timestamp parsing and epoch-ms conversions

Usage:
    from tradeclarity.utils import setup_logging, get_correlation_id
    from tradeclarity.utils.date_utils import parse_trade_timestamp
"""

from tradeclarity.utils.context import (
    get_correlation_id,
    set_correlation_id,
    clear_correlation_id,
    get_user_id,
    set_user_id,
    clear_user_id,
)
from tradeclarity.utils.logging import setup_logging

__all__ = [
    "setup_logging",
    "get_correlation_id",
    "set_correlation_id",
    "clear_correlation_id",
    "get_user_id",
    "set_user_id",
    "clear_user_id",
]
