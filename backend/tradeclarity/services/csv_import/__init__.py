# backend/tradeclarity/services/csv_import/__init__.py
"""
CSV trade import: parsing, AI column detection and upload records.

Usage:
    from tradeclarity.services.csv_import import CsvImportService

    outcome = CsvImportService().parse(text, "binance", AccountType.SPOT)
"""

from tradeclarity.services.csv_import.column_detection import (
    ColumnDetectionCache,
    ColumnDetectionService,
)
from tradeclarity.services.csv_import.service import CsvImportService, CsvParseOutcome
from tradeclarity.services.csv_import.uploads import CsvUploadService, upload_to_response

__all__ = [
    "ColumnDetectionCache",
    "ColumnDetectionService",
    "CsvImportService",
    "CsvParseOutcome",
    "CsvUploadService",
    "upload_to_response",
]
