# backend/tradeclarity/services/__init__.py
"""
Service layer for business logic.

This package contains the service layer which encapsulates business logic
separate from the API (router) layer. Services:
- Have NO knowledge of HTTP (no HTTPException, no status codes)
- Raise domain-specific exceptions
- Receive database sessions as parameters (not via Depends)
- Are easily testable via dependency injection

Usage:
    from tradeclarity.services import TradeStore, AnalyticsCacheService
    from tradeclarity.services import (
        CsvParseError,
        TradePersistenceError,
        CacheSaveError,
    )

Architecture:
    services/
    ├── __init__.py                  # This file - main exports
    ├── exceptions.py                # Domain exceptions
    ├── constants.py                 # Business constants and limits
    ├── protocols.py                 # Service interfaces (Protocol classes)
    ├── connections.py               # Exchange connections, cascade delete
    ├── analytics/                   # Analytics cache
    │   ├── service.py               # Cache orchestrator (hash, TTL, upsert)
    │   ├── hashing.py               # Trade set content hash
    │   ├── analyzer.py              # Default trade analyzer
    │   └── ai_context.py            # Structured context for the AI chat
    ├── auth/
    │   └── jwt_handler.py           # Bearer token verification
    ├── csv_import/                  # CSV parsing and upload records
    │   ├── service.py               # Mapping first, exchange layout fallback
    │   ├── column_detection.py      # AI column detection
    │   ├── uploads.py               # CSV upload records
    │   └── parsers/                 # Mapped and per-exchange parsers
    ├── currency/                    # USD rates provider chain + TTL cache
    ├── portfolio/
    │   └── aggregator.py            # Multi-connection holdings aggregation
    ├── snaptrade/                   # Aggregator client, secrets, service
    └── trades/                      # Transformers and the trade store
"""

# Analytics
from tradeclarity.services.analytics import AnalyticsCacheService, TradeAnalyzer
# Connections
from tradeclarity.services.connections import ConnectionService, DeletionResult, SyncResult
# CSV import
from tradeclarity.services.csv_import import (
    ColumnDetectionService,
    CsvImportService,
    CsvUploadService,
)
# Currency
from tradeclarity.services.currency import CurrencyRateService, RatesCache
# Exceptions
from tradeclarity.services.exceptions import (
    # Base exceptions
    ServiceError,
    # Validation
    ValidationError,
    CsvParseError,
    # Not found
    NotFoundError,
    ConnectionNotFoundError,
    CsvUploadNotFoundError,
    # Persistence
    PersistenceError,
    TradeFetchError,
    TradePersistenceError,
    CacheSaveError,
    # External services
    ExternalServiceError,
    RateProviderError,
    SnaptradeError,
)
# Portfolio
from tradeclarity.services.portfolio import PortfolioAggregator
# Trades
from tradeclarity.services.trades import StoreResult, TradeStore

__all__ = [
    # ==========================================================================
    # Services
    # ==========================================================================
    "AnalyticsCacheService",
    "TradeAnalyzer",
    "ConnectionService",
    "DeletionResult",
    "SyncResult",
    "ColumnDetectionService",
    "CsvImportService",
    "CsvUploadService",
    "CurrencyRateService",
    "RatesCache",
    "PortfolioAggregator",
    "StoreResult",
    "TradeStore",

    # ==========================================================================
    # Exceptions
    # ==========================================================================
    "ServiceError",
    "ValidationError",
    "CsvParseError",
    "NotFoundError",
    "ConnectionNotFoundError",
    "CsvUploadNotFoundError",
    "PersistenceError",
    "TradeFetchError",
    "TradePersistenceError",
    "CacheSaveError",
    "ExternalServiceError",
    "RateProviderError",
    "SnaptradeError",
]
