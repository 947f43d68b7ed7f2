# backend/tradeclarity/services/csv_import/parsers/exchange_parsers.py
"""
Fixed per-exchange CSV layouts.

Used when no column mapping is supplied or the supplied one cannot be
applied. Header names are matched exactly.

Binance SPOT:
    Symbol|Pair, Date(UTC), Side, Price, Executed|Amount, Fee
    Recognized when ANY of those headers is present.

Binance FUTURES (income history):
    Symbol, Income, Time, [Income Type], [Asset]
    Recognized when ANY of Symbol/Income/Time is present.

CoinDCX SPOT and FUTURES:
    Market, Type, Price, Quantity, Timestamp, [Fee]
    Recognized only when ALL required headers are present. The futures
    export shares the spot layout and is read as spot trades.
"""

from tradeclarity.services.csv_import.parsers.base import (
    CsvTable,
    ParseResult,
    TradeCsvParser,
    build_futures_record,
    build_spot_record,
    normalize_side,
)
from tradeclarity.services.exceptions import CsvParseError
from tradeclarity.utils.date_utils import parse_trade_timestamp
from tradeclarity.utils.numbers import leading_decimal


class BinanceSpotParser(TradeCsvParser):
    """Binance spot trade history export."""

    HEADER_MARKERS = ("Symbol", "Date(UTC)", "Pair", "Side", "Price", "Executed", "Amount", "Fee")

    @property
    def name(self) -> str:
        return "binance-spot"

    def parse(self, table: CsvTable) -> ParseResult:
        if not any(column in table.header for column in self.HEADER_MARKERS):
            raise CsvParseError(
                "INVALID_FORMAT",
                "Invalid Binance SPOT CSV format. Missing required columns.",
            )

        symbol_idx = table.index_of("Symbol", "Pair")
        date_idx = table.index_of("Date(UTC)")
        side_idx = table.index_of("Side")
        price_idx = table.index_of("Price")
        qty_idx = table.index_of("Executed", "Amount")
        fee_idx = table.index_of("Fee")

        result = ParseResult(total_rows=table.total_rows)

        for row_number, values in table.rows:
            symbol = self.cell(values, symbol_idx)
            date_str = self.cell(values, date_idx)
            side = normalize_side(self.cell(values, side_idx))

            if not symbol or not date_str:
                result.skip(row_number, "missing symbol or timestamp")
                continue
            if side is None:
                result.skip(row_number, "unrecognized side")
                continue

            when = parse_trade_timestamp(date_str)
            if when is None:
                result.skip(row_number, f"unparseable timestamp '{date_str}'")
                continue

            result.add_spot(
                row_number,
                build_spot_record(
                    symbol=symbol,
                    side=side,
                    price=leading_decimal(self.cell(values, price_idx)),
                    quantity=leading_decimal(self.cell(values, qty_idx)),
                    commission=leading_decimal(self.cell(values, fee_idx)),
                    when=when,
                    row_number=row_number,
                )
            )

        return result


class BinanceFuturesParser(TradeCsvParser):
    """Binance futures income history export."""

    HEADER_MARKERS = ("Symbol", "Income", "Time")

    @property
    def name(self) -> str:
        return "binance-futures"

    def parse(self, table: CsvTable) -> ParseResult:
        if not any(column in table.header for column in self.HEADER_MARKERS):
            raise CsvParseError(
                "INVALID_FORMAT",
                "Invalid Binance FUTURES CSV format. Missing required columns.",
            )

        symbol_idx = table.index_of("Symbol")
        income_idx = table.index_of("Income")
        time_idx = table.index_of("Time")
        income_type_idx = table.index_of("Income Type")
        asset_idx = table.index_of("Asset")

        result = ParseResult(total_rows=table.total_rows)

        for row_number, values in table.rows:
            symbol = self.cell(values, symbol_idx)
            time_str = self.cell(values, time_idx)

            if not symbol or not time_str or income_idx is None:
                result.skip(row_number, "missing symbol, income or time")
                continue

            when = parse_trade_timestamp(time_str)
            if when is None:
                result.skip(row_number, f"unparseable timestamp '{time_str}'")
                continue

            result.add_futures(
                row_number,
                build_futures_record(
                    symbol=symbol,
                    income=leading_decimal(self.cell(values, income_idx)),
                    when=when,
                    row_number=row_number,
                    asset=self.cell(values, asset_idx) or "USDT",
                    income_type=self.cell(values, income_type_idx) or "REALIZED_PNL",
                )
            )

        return result


class CoinDcxSpotParser(TradeCsvParser):
    """CoinDCX trade history export (spot and futures share this layout)."""

    REQUIRED_COLUMNS = ("Market", "Type", "Price", "Quantity", "Timestamp")

    def __init__(self, label: str = "coindcx-spot") -> None:
        self._label = label

    @property
    def name(self) -> str:
        return self._label

    def parse(self, table: CsvTable) -> ParseResult:
        missing = [column for column in self.REQUIRED_COLUMNS if column not in table.header]
        if missing:
            raise CsvParseError(
                "INVALID_FORMAT",
                f"Invalid CoinDCX CSV format. Missing required columns: {', '.join(missing)}",
            )

        market_idx = table.index_of("Market")
        type_idx = table.index_of("Type")
        price_idx = table.index_of("Price")
        qty_idx = table.index_of("Quantity")
        timestamp_idx = table.index_of("Timestamp")
        fee_idx = table.index_of("Fee")

        result = ParseResult(total_rows=table.total_rows)

        for row_number, values in table.rows:
            market = self.cell(values, market_idx)
            timestamp_str = self.cell(values, timestamp_idx)
            side = normalize_side(self.cell(values, type_idx))

            if not market or not timestamp_str:
                result.skip(row_number, "missing market or timestamp")
                continue
            if side is None:
                result.skip(row_number, "unrecognized side")
                continue

            when = parse_trade_timestamp(timestamp_str)
            if when is None:
                result.skip(row_number, f"unparseable timestamp '{timestamp_str}'")
                continue

            result.add_spot(
                row_number,
                build_spot_record(
                    symbol=market,
                    side=side,
                    price=leading_decimal(self.cell(values, price_idx)),
                    quantity=leading_decimal(self.cell(values, qty_idx)),
                    commission=leading_decimal(self.cell(values, fee_idx)),
                    when=when,
                    row_number=row_number,
                )
            )

        return result
