# backend/tradeclarity/services/trades/__init__.py
"""
Canonical trades: source transformers and the trade store.

Usage:
    from tradeclarity.services.trades import TradeStore

    result = TradeStore().store(db, user_id, "binance", spot_trades=records)
"""

from tradeclarity.services.trades.snaptrade import (
    group_by_account,
    holdings_to_snapshot,
    transform_activities,
    transform_activity,
)
from tradeclarity.services.trades.store import StoreResult, TradeStore
from tradeclarity.services.trades.transformers import (
    build_analysis_input,
    compute_trade_stats,
    split_wire_records,
)

__all__ = [
    "StoreResult",
    "TradeStore",
    "build_analysis_input",
    "compute_trade_stats",
    "group_by_account",
    "holdings_to_snapshot",
    "split_wire_records",
    "transform_activities",
    "transform_activity",
]
