# backend/tradeclarity/schemas/csv_import.py
"""
Pydantic schemas for CSV import requests.

The wire format is camelCase; fields accept both the alias and the Python
name.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator

from tradeclarity.models import AccountType


class DetectColumnsRequest(BaseModel):
    """Header and sample rows sent for AI column detection."""

    model_config = ConfigDict(populate_by_name=True)

    headers: list[str] = Field(
        ...,
        min_length=1,
        description="CSV header names, in file order",
        examples=[["Date(UTC)", "Pair", "Side", "Price", "Executed", "Fee"]],
    )
    sample_data: list[list[str] | dict] | None = Field(
        default=None,
        alias="sampleData",
        description="A few data rows to help the detector",
    )

    @field_validator("headers")
    @classmethod
    def strip_headers(cls, value: list[str]) -> list[str]:
        stripped = [header.strip() for header in value]
        if not any(stripped):
            raise ValueError("At least one non-empty header is required")
        return stripped


class CsvUploadCreate(BaseModel):
    """Metadata saved for a parsed file before its trades are stored."""

    model_config = ConfigDict(populate_by_name=True)

    filename: str = Field(..., min_length=1, max_length=255)
    label: str | None = Field(default=None, max_length=255)
    account_type: AccountType = Field(default=AccountType.SPOT, alias="accountType")
    exchange_connection_id: str | None = Field(default=None, alias="exchangeConnectionId")
    exchange: str | None = Field(default=None, max_length=64)
    size: int = Field(default=0, ge=0)
    trades_count: int = Field(default=0, ge=0, alias="tradesCount")


class CsvUploadLink(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    exchange_connection_id: str | None = Field(
        default=None,
        alias="exchangeConnectionId",
        description="Connection to link to; null detaches the file",
    )
