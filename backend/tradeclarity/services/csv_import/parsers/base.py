# backend/tradeclarity/services/csv_import/parsers/base.py
"""
Shared building blocks for trade CSV parsers.

Every parser receives a `CsvTable` (header plus numbered data rows) and
returns a `ParseResult` holding analyzer wire records:

    spot:    {symbol, qty, price, quoteQty, commission, commissionAsset,
              isBuyer, isMaker, time, orderId, id, accountType}
    futures: {symbol, income, asset, incomeType, time, tranId, id}

Parsers never raise for a bad row. A row that cannot produce a record is
recorded as a `SkippedRow`, so that

    len(spot_trades) + len(futures_income) + skipped_count == total_rows

holds for every result. Only file-level problems (blank file, header-only
file, a layout the parser does not recognize) raise `CsvParseError`.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any

from tradeclarity.models import AccountType
from tradeclarity.services.exceptions import CsvParseError
from tradeclarity.utils.date_utils import to_epoch_ms
from tradeclarity.utils.numbers import format_decimal


# Logical fields a column mapping may name
LOGICAL_FIELDS: tuple[str, ...] = (
    "symbol",
    "side",
    "timestamp",
    "price",
    "quantity",
    "fee",
    "total",
    "positionSide",
    "realizedPnl",
)

BUY_VALUES = frozenset({"BUY", "B", "LONG"})
SELL_VALUES = frozenset({"SELL", "S", "SHORT"})


# =============================================================================
# LINE SPLITTING
# =============================================================================

def split_csv_line(line: str, delimiter: str = ",") -> list[str]:
    """
    Split one CSV line, honoring double-quoted fields.

    A quote character toggles the in-quotes state and is itself dropped; the
    delimiter only separates fields outside quotes. So
    'BTC,"1,234.56",x' -> ['BTC', '1,234.56', 'x'].
    """
    fields: list[str] = []
    current: list[str] = []
    in_quotes = False

    for char in line:
        if char == '"':
            in_quotes = not in_quotes
        elif char == delimiter and not in_quotes:
            fields.append("".join(current))
            current = []
        else:
            current.append(char)

    fields.append("".join(current))
    return fields


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass
class CsvTable:
    """
    A CSV file split into header and data rows.

    Attributes:
        header: Trimmed header names, quotes removed
        rows: (row_number, values) pairs; row_number is 1-based over data rows
    """
    header: list[str]
    rows: list[tuple[int, list[str]]] = field(default_factory=list)

    @classmethod
    def from_text(cls, text: str) -> "CsvTable":
        """
        Build a table from raw file text.

        Blank lines are ignored and do not count as rows.

        Raises:
            CsvParseError: EMPTY_FILE for blank input,
                           MALFORMED_CSV when there is no data row
        """
        if not text or not text.strip():
            raise CsvParseError("EMPTY_FILE", "File is empty")

        lines = [line.strip() for line in text.strip().splitlines()]
        lines = [line for line in lines if line]

        if len(lines) < 2:
            raise CsvParseError(
                "MALFORMED_CSV",
                "CSV must have at least a header row and one data row",
            )

        header = [name.strip() for name in split_csv_line(lines[0])]
        rows = [
            (row_number, [value.strip() for value in split_csv_line(line)])
            for row_number, line in enumerate(lines[1:], start=1)
        ]
        return cls(header=header, rows=rows)

    @property
    def total_rows(self) -> int:
        return len(self.rows)

    def index_of(self, *names: str) -> int | None:
        """Index of the first of `names` present in the header, else None."""
        for name in names:
            if name in self.header:
                return self.header.index(name)
        return None


@dataclass
class SkippedRow:
    """A data row that produced no record, and why."""
    row_number: int
    reason: str


@dataclass
class ParseResult:
    """
    Outcome of parsing one CSV table.

    Attributes:
        spot_trades: Spot wire records
        futures_income: Futures income wire records
        skipped: Rows that produced no record
        total_rows: Data rows processed
        spot_rows: Row number of each spot record, in order
        futures_rows: Row number of each futures record, in order
    """
    spot_trades: list[dict[str, Any]] = field(default_factory=list)
    futures_income: list[dict[str, Any]] = field(default_factory=list)
    skipped: list[SkippedRow] = field(default_factory=list)
    total_rows: int = 0
    spot_rows: list[int] = field(default_factory=list)
    futures_rows: list[int] = field(default_factory=list)

    @property
    def emitted_count(self) -> int:
        return len(self.spot_trades) + len(self.futures_income)

    @property
    def skipped_count(self) -> int:
        return len(self.skipped)

    def add_spot(self, row_number: int, record: dict[str, Any]) -> None:
        self.spot_trades.append(record)
        self.spot_rows.append(row_number)

    def add_futures(self, row_number: int, record: dict[str, Any]) -> None:
        self.futures_income.append(record)
        self.futures_rows.append(row_number)

    def skip(self, row_number: int, reason: str) -> None:
        self.skipped.append(SkippedRow(row_number=row_number, reason=reason))

    @classmethod
    def combine(
            cls,
            total_rows: int,
            spot: "ParseResult | None",
            futures: "ParseResult | None",
    ) -> "ParseResult":
        """
        Join the spot and futures layout results of one table (accountType BOTH).

        Spot records come only from the spot result and futures records only
        from the futures result, so a row is emitted at most once. A row read
        by both layouts stays a spot trade. A row is skipped only when neither
        layout emitted it.
        """
        combined = cls(total_rows=total_rows)

        if spot is not None:
            for row_number, record in zip(spot.spot_rows, spot.spot_trades):
                combined.add_spot(row_number, record)

        if futures is not None:
            spot_rows = set(combined.spot_rows)
            for row_number, record in zip(futures.futures_rows, futures.futures_income):
                if row_number not in spot_rows:
                    combined.add_futures(row_number, record)

        emitted = set(combined.spot_rows) | set(combined.futures_rows)
        reasons: dict[int, str] = {}
        for partial in (spot, futures):
            if partial is None:
                continue
            for skipped in partial.skipped:
                reasons.setdefault(skipped.row_number, skipped.reason)

        for row_number in sorted(reasons):
            if row_number not in emitted:
                combined.skip(row_number, reasons[row_number])

        return combined


# =============================================================================
# WIRE RECORD BUILDERS
# =============================================================================

def csv_record_id(when: datetime, row_number: int) -> str:
    """Deterministic id of a CSV-sourced record: csv_<epoch ms>_<row number>."""
    return f"csv_{to_epoch_ms(when)}_{row_number}"


def normalize_side(raw: str | None) -> str | None:
    """Map buy/sell spellings (BUY, b, Long, ...) to BUY / SELL."""
    if not raw:
        return None
    value = raw.strip().upper()
    if value in BUY_VALUES:
        return "BUY"
    if value in SELL_VALUES:
        return "SELL"
    return None


def build_spot_record(
        *,
        symbol: str,
        side: str,
        price: Decimal,
        quantity: Decimal,
        commission: Decimal,
        when: datetime,
        row_number: int,
        commission_asset: str = "USDT",
        quote_quantity: Decimal | None = None,
        is_maker: bool = False,
) -> dict[str, Any]:
    record_id = csv_record_id(when, row_number)
    quantity = abs(quantity)
    if quote_quantity is None:
        quote_quantity = price * quantity

    return {
        "symbol": symbol,
        "qty": format_decimal(quantity),
        "price": format_decimal(price),
        "quoteQty": format_decimal(abs(quote_quantity)),
        "commission": format_decimal(abs(commission)),
        "commissionAsset": commission_asset,
        "isBuyer": side == "BUY",
        "isMaker": is_maker,
        "time": to_epoch_ms(when),
        "orderId": record_id,
        "id": record_id,
        "accountType": AccountType.SPOT.value,
    }


def build_futures_record(
        *,
        symbol: str,
        income: Decimal,
        when: datetime,
        row_number: int,
        asset: str = "USDT",
        income_type: str = "REALIZED_PNL",
) -> dict[str, Any]:
    record_id = csv_record_id(when, row_number)
    return {
        "symbol": symbol,
        "income": format_decimal(income),
        "asset": asset,
        "incomeType": income_type,
        "time": to_epoch_ms(when),
        "tranId": record_id,
        "id": record_id,
    }


# =============================================================================
# ABSTRACT BASE CLASS
# =============================================================================

class TradeCsvParser(ABC):
    """
    Base class of every CSV layout parser.

    Subclasses implement `parse()`; the base provides cell access helpers.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable parser name, used in logs and error messages."""

    @abstractmethod
    def parse(self, table: CsvTable) -> ParseResult:
        """
        Turn a table into wire records.

        Raises:
            CsvParseError: When the table's layout is not one this parser reads
        """

    @staticmethod
    def cell(values: list[str], index: int | None) -> str:
        """Value at `index`, quotes and whitespace removed; '' when absent."""
        if index is None or index >= len(values):
            return ""
        return values[index].replace('"', "").strip()
