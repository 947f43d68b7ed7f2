# backend/tradeclarity/services/constants.py
"""
Centralized constants for the TradeClarity services.

Single source of truth for business constants shared across services,
routers and tests.

Usage:
    from tradeclarity.services.constants import (
        ANALYTICS_CACHE_TTL_SECONDS,
        REQUIRED_CURRENCIES,
        STATIC_FALLBACK_RATES,
    )
"""

from decimal import Decimal


# =============================================================================
# ANALYTICS CACHE SETTINGS
# =============================================================================

# Sliding expiry window of a user's analytics cache row
# A fresh cache (hash match) only has its expiry pushed forward by this amount
ANALYTICS_CACHE_TTL_SECONDS: int = 3600

# HTTP caching hint returned with a cached analytics payload
ANALYTICS_CACHE_CONTROL_HEADER: str = "private, s-maxage=60, stale-while-revalidate=120"


# =============================================================================
# TRADE STORE SETTINGS
# =============================================================================

# Maximum rows per INSERT when storing trades
TRADE_INSERT_BATCH_SIZE: int = 1000

# order_id assigned to futures income rows (they have no order)
FUTURES_INCOME_ORDER_ID: str = "FUTURES_INCOME"

# Default commission assets when the source does not provide one
DEFAULT_CRYPTO_COMMISSION_ASSET: str = "USDT"
DEFAULT_BROKERAGE_COMMISSION_ASSET: str = "USD"

# Exchanges whose trades are quoted in INR
INR_EXCHANGES: frozenset[str] = frozenset({"coindcx"})

# Exchanges that connect with an API key and secret
API_KEY_EXCHANGES: tuple[str, ...] = ("binance", "coindcx")


# =============================================================================
# CURRENCY RATES
# =============================================================================

# Currencies the rate endpoint always returns (units per 1 USD)
REQUIRED_CURRENCIES: tuple[str, ...] = (
    "USD", "INR", "EUR", "GBP", "JPY", "AUD", "CAD", "CNY", "SGD", "CHF",
)

# Last-resort rates when neither the live API nor the database can answer
STATIC_FALLBACK_RATES: dict[str, float] = {
    "USD": 1.0,
    "INR": 87.0,
    "EUR": 0.92,
    "GBP": 0.79,
    "JPY": 149.5,
    "AUD": 1.52,
    "CAD": 1.36,
    "CNY": 7.24,
    "SGD": 1.34,
    "CHF": 0.88,
}

# In-process rates cache lifetime (15 minutes)
RATES_CACHE_TTL_SECONDS: int = 900

# Timeout for the free live-rates API
FX_API_TIMEOUT_SECONDS: float = 5.0


# =============================================================================
# PORTFOLIO AGGREGATION
# =============================================================================

# Fixed conversion used when aggregating non-USD snapshots (approximation)
# USD value = native value * rate
SNAPSHOT_USD_CONVERSION_RATES: dict[str, Decimal] = {
    code: Decimal("1") / Decimal(str(rate))
    for code, rate in STATIC_FALLBACK_RATES.items()
}


# =============================================================================
# EXTERNAL API SETTINGS
# =============================================================================

# Completion API (column detection) and aggregator calls
EXTERNAL_API_TIMEOUT_SECONDS: float = 30.0

# Retry policy for the completion API
AI_MAX_RETRY_ATTEMPTS: int = 3
AI_RETRY_MULTIPLIER: float = 1.0
AI_RETRY_MAX_WAIT_SECONDS: float = 8.0

# Minimum confidence for an AI mapping to be offered to the client
AI_MAPPING_MIN_CONFIDENCE: float = 0.7

# Detection cache: maximum header fingerprints kept, and their lifetime
COLUMN_DETECTION_CACHE_MAX_SIZE: int = 256
COLUMN_DETECTION_CACHE_TTL_SECONDS: int = 3600

# Completion request shape for column detection
AI_DETECTION_MAX_TOKENS: int = 1000
AI_DETECTION_TEMPERATURE: float = 0.3
AI_DETECTION_SAMPLE_ROWS: int = 3


# =============================================================================
# FILE UPLOAD SETTINGS
# =============================================================================

MAX_UPLOAD_FILE_SIZE_MB: int = 10
MAX_UPLOAD_FILE_SIZE_BYTES: int = MAX_UPLOAD_FILE_SIZE_MB * 1024 * 1024


# =============================================================================
# RATE LIMITING
# =============================================================================

RATE_LIMIT_DEFAULT: str = "100/minute"
RATE_LIMIT_WRITE: str = "30/minute"
RATE_LIMIT_UPLOAD: str = "10/minute"
RATE_LIMIT_ANALYTICS: str = "20/minute"
RATE_LIMIT_AI: str = "10/minute"
RATE_LIMIT_HEALTH: str = "1000/minute"


# =============================================================================
# UTILITY CONSTANTS
# =============================================================================

ZERO: Decimal = Decimal("0")
