# backend/tradeclarity/schemas/__init__.py
"""
Pydantic schemas for API request validation.

This package contains all Pydantic schemas organized by domain:
- analytics: Analytics cache compute requests
- connections: Exchange connection deletion and SnapTrade imports
- csv_import: CSV column detection and upload records
- errors: Error response formats
- trades: Trade storage requests

Responses are plain dicts built by the services' to_response() helpers,
so only request bodies and error bodies are modelled here.

Usage:
    from tradeclarity.schemas import StoreTradesRequest, ErrorDetail
"""

from tradeclarity.schemas.analytics import ComputeAnalyticsRequest
from tradeclarity.schemas.connections import (
    ConnectionRef,
    DeleteConnectionRequest,
    SnaptradeFetchRequest,
)
from tradeclarity.schemas.csv_import import (
    CsvUploadCreate,
    CsvUploadLink,
    DetectColumnsRequest,
)
from tradeclarity.schemas.errors import ErrorDetail, ValidationErrorDetail
from tradeclarity.schemas.trades import StoreTradesRequest

__all__ = [
    # Analytics
    "ComputeAnalyticsRequest",
    # Connections
    "ConnectionRef",
    "DeleteConnectionRequest",
    "SnaptradeFetchRequest",
    # CSV import
    "CsvUploadCreate",
    "CsvUploadLink",
    "DetectColumnsRequest",
    # Errors
    "ErrorDetail",
    "ValidationErrorDetail",
    # Trades
    "StoreTradesRequest",
]
