# backend/tradeclarity/services/csv_import/service.py
"""
CSV import orchestration.

Parsing flow for one uploaded file:

    CsvTable.from_text()            EMPTY_FILE / MALFORMED_CSV
        │
        ├── mapping supplied? ──► MappedCsvParser
        │                            │ CsvParseError
        │                            ▼ (logged, fall through)
        └────────────────────────► exchange layout parser(s)
                                     BOTH runs spot + futures; spot records
                                     come from the spot layout, futures
                                     records from the futures layout;
                                     fails only when every parser fails

Every returned outcome satisfies
    len(spot_trades) + len(futures_income) + skipped_rows == total_rows
"""

import logging
from dataclasses import dataclass
from typing import Any

from tradeclarity.models import AccountType
from tradeclarity.services.csv_import.parsers import (
    CsvTable,
    MappedCsvParser,
    ParseResult,
    get_exchange_parsers,
)
from tradeclarity.services.exceptions import CsvParseError

logger = logging.getLogger(__name__)

MAPPING_SOURCE_MAPPING = "mapping"
MAPPING_SOURCE_EXCHANGE = "exchange"


@dataclass
class CsvParseOutcome:
    """Parse result plus how it was obtained."""
    result: ParseResult
    account_type: AccountType
    mapping_source: str

    def to_response(self) -> dict[str, Any]:
        return {
            "success": True,
            "spotTrades": self.result.spot_trades,
            "futuresIncome": self.result.futures_income,
            "totalRows": self.result.total_rows,
            "skippedRows": self.result.skipped_count,
            "accountType": self.account_type.value,
            "mappingSource": self.mapping_source,
        }


class CsvImportService:
    """
    Turns uploaded CSV text into analyzer wire records.

    Stateless; a single instance is shared across requests.
    """

    def parse(
            self,
            text: str,
            exchange: str,
            account_type: AccountType,
            mapping: dict[str, Any] | None = None,
    ) -> CsvParseOutcome:
        """
        Parse a CSV file with the mapping, falling back to exchange layouts.

        Raises:
            CsvParseError: File-level failure, or when no strategy can read it
        """
        table = CsvTable.from_text(text)

        if mapping:
            try:
                result = MappedCsvParser(mapping, account_type).parse(table)
                logger.info(
                    f"Parsed CSV with column mapping: exchange={exchange}, "
                    f"rows={result.total_rows}, emitted={result.emitted_count}, "
                    f"skipped={result.skipped_count}"
                )
                return CsvParseOutcome(result, account_type, MAPPING_SOURCE_MAPPING)
            except CsvParseError as e:
                logger.warning(
                    f"Column mapping unusable ({e.code}: {e.message}), "
                    f"falling back to {exchange} layout detection"
                )

        result = self._parse_with_exchange_layout(table, exchange, account_type)
        logger.info(
            f"Parsed CSV with {exchange} layout: account_type={account_type.value}, "
            f"rows={result.total_rows}, emitted={result.emitted_count}, "
            f"skipped={result.skipped_count}"
        )
        return CsvParseOutcome(result, account_type, MAPPING_SOURCE_EXCHANGE)

    @staticmethod
    def _parse_with_exchange_layout(
            table: CsvTable,
            exchange: str,
            account_type: AccountType,
    ) -> ParseResult:
        if account_type != AccountType.BOTH:
            (parser,) = get_exchange_parsers(exchange, account_type)
            return parser.parse(table)

        spot_parser, futures_parser = get_exchange_parsers(exchange, account_type)
        partials: dict[str, ParseResult | None] = {}
        first_error: CsvParseError | None = None

        for kind, parser in (("spot", spot_parser), ("futures", futures_parser)):
            try:
                partials[kind] = parser.parse(table)
            except CsvParseError as e:
                logger.debug(f"{parser.name} rejected the file: {e.message}")
                first_error = first_error or e
                partials[kind] = None

        if partials["spot"] is None and partials["futures"] is None:
            raise first_error or CsvParseError("INVALID_FORMAT", "Failed to parse CSV")

        return ParseResult.combine(table.total_rows, partials["spot"], partials["futures"])
