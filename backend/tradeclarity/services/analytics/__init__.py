# backend/tradeclarity/services/analytics/__init__.py
"""
Analytics Service Package.

This package turns a user's trades into a cached analytics document:
- Trade analysis (P&L, win rate, time patterns, psychology)
- Structured AI context (compact digest for the chat assistant)
- Cache maintenance keyed on a trade-set fingerprint

Architecture:
    analytics/
    ├── __init__.py              # This file - package exports
    ├── hashing.py               # Trade-set fingerprint (cache validity)
    ├── analyzer.py              # TradeAnalyzer (analytics document)
    ├── ai_context.py            # format_structured_context()
    └── service.py               # AnalyticsCacheService (orchestrator)

Usage:
    from tradeclarity.services.analytics import AnalyticsCacheService, TradeAnalyzer

    service = AnalyticsCacheService(analyzer=TradeAnalyzer(), portfolio=PortfolioAggregator())
    result = service.compute(db, user_id, trigger="csv_upload")
    cached = service.get_cache(db, user_id)

Data Flow:
    Trade rows
        ↓
    compute_trades_hash() ──(matches cache)──► extend expiry
        ↓
    build_analysis_input() → TradeAnalyzer.analyze()
        ↓
    format_structured_context() (+ PortfolioAggregator)
        ↓
    user_analytics_cache row
"""

from tradeclarity.services.analytics.ai_context import format_structured_context
from tradeclarity.services.analytics.analyzer import TradeAnalyzer
from tradeclarity.services.analytics.hashing import compute_trades_hash, trade_fingerprint
from tradeclarity.services.analytics.service import NO_TRADES, AnalyticsCacheService

__all__ = [
    # Main service
    "AnalyticsCacheService",
    "NO_TRADES",

    # Building blocks
    "TradeAnalyzer",
    "format_structured_context",
    "compute_trades_hash",
    "trade_fingerprint",
]
