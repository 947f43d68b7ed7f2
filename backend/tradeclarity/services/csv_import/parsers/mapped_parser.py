# backend/tradeclarity/services/csv_import/parsers/mapped_parser.py
"""
Mapping-driven CSV parser.

Reads any layout given a column mapping (user confirmed or AI suggested)
from logical field to literal header name, e.g.

    {"symbol": "Pair", "side": "Side", "timestamp": "Date(UTC)",
     "price": "Price", "quantity": "Executed", "fee": "Fee"}

Routing:
    FUTURES when the account type hint is FUTURES, or when the mapping names
    `positionSide` or `realizedPnl`; each row then becomes one futures income
    record whose income is the realized PnL (or total). Otherwise rows become
    spot trades.

An unusable mapping (required field unmapped, header missing from the file)
raises CsvParseError(INVALID_MAPPING) so the caller can fall back to the
per-exchange layouts.
"""

import logging
from typing import Any

from tradeclarity.models import AccountType
from tradeclarity.services.csv_import.parsers.base import (
    LOGICAL_FIELDS,
    CsvTable,
    ParseResult,
    TradeCsvParser,
    build_futures_record,
    build_spot_record,
    normalize_side,
)
from tradeclarity.services.exceptions import CsvParseError
from tradeclarity.utils.date_utils import parse_trade_timestamp
from tradeclarity.utils.numbers import to_decimal

logger = logging.getLogger(__name__)

SPOT_REQUIRED_FIELDS: tuple[str, ...] = ("symbol", "side", "timestamp", "price", "quantity")
FUTURES_REQUIRED_FIELDS: tuple[str, ...] = ("symbol", "timestamp")
FUTURES_MARKER_FIELDS: tuple[str, ...] = ("positionSide", "realizedPnl")


def resolves_to_futures(mapping: dict[str, str | None], account_type: AccountType) -> bool:
    """True when rows under this mapping are futures income records."""
    if account_type == AccountType.FUTURES:
        return True
    return any(mapping.get(name) for name in FUTURES_MARKER_FIELDS)


class MappedCsvParser(TradeCsvParser):
    """
    Parser driven by an explicit logical-field -> header mapping.

    Example:
        parser = MappedCsvParser(mapping, AccountType.SPOT)
        result = parser.parse(CsvTable.from_text(text))
    """

    def __init__(
            self,
            mapping: dict[str, Any],
            account_type: AccountType,
            commission_asset: str = "USDT",
    ) -> None:
        # Keep only known logical fields with a non-empty header name
        self.mapping: dict[str, str] = {
            name: str(column).strip()
            for name, column in (mapping or {}).items()
            if name in LOGICAL_FIELDS and isinstance(column, str) and column.strip()
        }
        self.account_type = account_type
        self.commission_asset = commission_asset
        self.is_futures = resolves_to_futures(self.mapping, account_type)

    @property
    def name(self) -> str:
        return "mapped-futures" if self.is_futures else "mapped-spot"

    def parse(self, table: CsvTable) -> ParseResult:
        indexes = self._resolve_indexes(table)
        result = ParseResult(total_rows=table.total_rows)

        for row_number, values in table.rows:
            symbol = self.cell(values, indexes.get("symbol"))
            raw_time = self.cell(values, indexes.get("timestamp"))

            if not symbol or not raw_time:
                result.skip(row_number, "missing symbol or timestamp")
                continue

            when = parse_trade_timestamp(raw_time)
            if when is None:
                result.skip(row_number, f"unparseable timestamp '{raw_time}'")
                continue

            if self.is_futures:
                income_raw = self.cell(values, indexes.get("realizedPnl")) or self.cell(
                    values, indexes.get("total")
                )
                result.add_futures(
                    row_number,
                    build_futures_record(
                        symbol=symbol,
                        income=to_decimal(income_raw),
                        when=when,
                        row_number=row_number,
                        asset=self.commission_asset,
                    )
                )
                continue

            side = normalize_side(self.cell(values, indexes.get("side")))
            if side is None:
                result.skip(row_number, "unrecognized side")
                continue

            total_raw = self.cell(values, indexes.get("total"))
            result.add_spot(
                row_number,
                build_spot_record(
                    symbol=symbol,
                    side=side,
                    price=to_decimal(self.cell(values, indexes.get("price"))),
                    quantity=to_decimal(self.cell(values, indexes.get("quantity"))),
                    commission=to_decimal(self.cell(values, indexes.get("fee"))),
                    when=when,
                    row_number=row_number,
                    commission_asset=self.commission_asset,
                    quote_quantity=to_decimal(total_raw) if total_raw else None,
                )
            )

        logger.debug(
            f"{self.name} parsed {result.emitted_count}/{result.total_rows} rows, "
            f"skipped {result.skipped_count}"
        )
        return result

    def _resolve_indexes(self, table: CsvTable) -> dict[str, int]:
        """
        Map each logical field to its header index.

        Raises:
            CsvParseError: INVALID_MAPPING when a required field is unmapped or
                           a mapped header is not in the file
        """
        required = FUTURES_REQUIRED_FIELDS if self.is_futures else SPOT_REQUIRED_FIELDS
        unmapped = [name for name in required if name not in self.mapping]
        if unmapped:
            raise CsvParseError(
                "INVALID_MAPPING",
                f"Column mapping is missing required fields: {', '.join(unmapped)}",
            )

        if self.is_futures and not (self.mapping.get("realizedPnl") or self.mapping.get("total")):
            raise CsvParseError(
                "INVALID_MAPPING",
                "Futures column mapping needs a realizedPnl or total column",
            )

        indexes: dict[str, int] = {}
        missing_headers: list[str] = []
        for name, column in self.mapping.items():
            index = table.index_of(column)
            if index is None:
                missing_headers.append(column)
            else:
                indexes[name] = index

        if missing_headers:
            raise CsvParseError(
                "INVALID_MAPPING",
                f"Mapped columns not found in CSV header: {', '.join(missing_headers)}",
            )

        return indexes
