# backend/tradeclarity/schemas/trades.py
"""Pydantic schemas for trade storage requests."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class StoreTradesRequest(BaseModel):
    """
    One batch of trades for a user.

    Records stay loosely typed: exchange wire records and aggregator-format
    records are told apart per record by the trade store.
    """

    model_config = ConfigDict(populate_by_name=True)

    exchange: str = Field(..., min_length=1, max_length=64, examples=["binance"])
    spot_trades: list[dict[str, Any]] = Field(default_factory=list, alias="spotTrades")
    futures_income: list[dict[str, Any]] = Field(default_factory=list, alias="futuresIncome")
    connection_id: str | None = Field(default=None, alias="connectionId")
    csv_upload_id: str | None = Field(default=None, alias="csvUploadId")
    metadata: dict[str, Any] | None = Field(
        default=None,
        description="Optional portfolio snapshot (spotHoldings, totalPortfolioValue, ...)",
    )
    user_id: str | None = Field(
        default=None,
        alias="userId",
        description="Target user; honored only with the internal service key",
    )

    @field_validator("exchange")
    @classmethod
    def normalize_exchange(cls, value: str) -> str:
        normalized = value.strip().lower()
        if not normalized:
            raise ValueError("Exchange must not be blank")
        return normalized
