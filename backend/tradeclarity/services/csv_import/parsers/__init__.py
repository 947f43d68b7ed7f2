# backend/tradeclarity/services/csv_import/parsers/__init__.py
"""
Trade CSV parsers.

- MappedCsvParser: any layout, driven by a logical-field -> header mapping
- Fixed exchange layouts, selected with `get_exchange_parsers()`:
  binance (SPOT, FUTURES) and coindcx (SPOT, FUTURES)

Usage:
    from tradeclarity.services.csv_import.parsers import CsvTable, get_exchange_parsers

    table = CsvTable.from_text(text)
    for parser in get_exchange_parsers("binance", AccountType.BOTH):
        result = parser.parse(table)
"""

import logging

from tradeclarity.models import AccountType
from tradeclarity.services.csv_import.parsers.base import (
    LOGICAL_FIELDS,
    CsvTable,
    ParseResult,
    SkippedRow,
    TradeCsvParser,
    split_csv_line,
)
from tradeclarity.services.csv_import.parsers.exchange_parsers import (
    BinanceFuturesParser,
    BinanceSpotParser,
    CoinDcxSpotParser,
)
from tradeclarity.services.csv_import.parsers.mapped_parser import (
    MappedCsvParser,
    resolves_to_futures,
)
from tradeclarity.services.exceptions import CsvParseError

logger = logging.getLogger(__name__)

# =============================================================================
# PARSER REGISTRY
# =============================================================================

# (exchange, account type) -> layout parser; add new exchanges here
_PARSERS: dict[tuple[str, AccountType], TradeCsvParser] = {
    ("binance", AccountType.SPOT): BinanceSpotParser(),
    ("binance", AccountType.FUTURES): BinanceFuturesParser(),
    ("coindcx", AccountType.SPOT): CoinDcxSpotParser(),
    ("coindcx", AccountType.FUTURES): CoinDcxSpotParser(label="coindcx-futures"),
}


def get_supported_exchanges() -> list[str]:
    return sorted({exchange for exchange, _ in _PARSERS})


def get_exchange_parsers(exchange: str, account_type: AccountType) -> list[TradeCsvParser]:
    """
    Layout parsers to run for an exchange and account type hint.

    BOTH yields the spot parser followed by the futures parser.

    Raises:
        CsvParseError: UNSUPPORTED_EXCHANGE when the exchange has no layout
    """
    exchange = (exchange or "").strip().lower()
    if exchange not in get_supported_exchanges():
        raise CsvParseError("UNSUPPORTED_EXCHANGE", f"Unsupported exchange: {exchange or '(none)'}")

    if account_type == AccountType.BOTH:
        kinds = [AccountType.SPOT, AccountType.FUTURES]
    else:
        kinds = [account_type]

    parsers = [_PARSERS[(exchange, kind)] for kind in kinds]
    logger.debug(f"Selected parsers for {exchange}/{account_type.value}: {[p.name for p in parsers]}")
    return parsers


__all__ = [
    "LOGICAL_FIELDS",
    "CsvTable",
    "ParseResult",
    "SkippedRow",
    "TradeCsvParser",
    "split_csv_line",
    "MappedCsvParser",
    "resolves_to_futures",
    "BinanceSpotParser",
    "BinanceFuturesParser",
    "CoinDcxSpotParser",
    "get_exchange_parsers",
    "get_supported_exchanges",
]
