# backend/tradeclarity/routers/__init__.py
"""
API routers for TradeClarity.

Each router handles a specific domain:
- csv_import: CSV parsing, AI column detection and upload records
- trades: Canonical trade storage and reads
- analytics: Per-user analytics cache
- currency: USD exchange rates
- connections: Exchange connections and their cascade delete
- snaptrade: Brokerage aggregator registration and imports
"""

from tradeclarity.routers.analytics import router as analytics_router
from tradeclarity.routers.connections import router as connections_router
from tradeclarity.routers.csv_import import router as csv_import_router
from tradeclarity.routers.currency import router as currency_router
from tradeclarity.routers.snaptrade import router as snaptrade_router
from tradeclarity.routers.trades import router as trades_router

__all__ = [
    "analytics_router",
    "connections_router",
    "csv_import_router",
    "currency_router",
    "snaptrade_router",
    "trades_router",
]
