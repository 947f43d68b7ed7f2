# backend/tradeclarity/schemas/connections.py
"""Pydantic schemas for exchange connection and SnapTrade requests."""

from datetime import date

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ConnectionRef(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    connection_id: str = Field(..., min_length=1, alias="connectionId")


class DeleteConnectionRequest(ConnectionRef):
    delete_linked_csvs: bool = Field(
        default=False,
        alias="deleteLinkedCSVs",
        description="Delete linked CSV files and their trades instead of unlinking them",
    )


class SnaptradeFetchRequest(BaseModel):
    """Optional date window and account filter for an activities import."""

    model_config = ConfigDict(populate_by_name=True)

    start_date: date | None = Field(default=None, alias="startDate")
    end_date: date | None = Field(default=None, alias="endDate")
    account_id: str | None = Field(default=None, alias="accountId")

    @model_validator(mode="after")
    def check_date_range(self) -> "SnaptradeFetchRequest":
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("startDate must not be after endDate")
        return self


class ExchangeCredentials(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    api_key: str = Field(..., min_length=1, alias="apiKey")
    api_secret: str = Field(..., min_length=1, alias="apiSecret")


class ConnectExchangeRequest(ExchangeCredentials):
    exchange: str = Field(..., min_length=1, description="binance or coindcx")


class UpdateKeysRequest(ExchangeCredentials):
    connection_id: str = Field(..., min_length=1, alias="connectionId")
