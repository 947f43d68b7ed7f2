# backend/tradeclarity/schemas/analytics.py
"""Pydantic schemas for analytics cache requests."""

from pydantic import BaseModel, ConfigDict, Field


class ComputeAnalyticsRequest(BaseModel):
    """
    Body of POST /api/analytics/compute.

    All fields are optional; an empty body recomputes for the caller.
    """

    model_config = ConfigDict(populate_by_name=True)

    trigger: str | None = Field(
        default=None,
        max_length=64,
        description="What caused the recompute (logged only)",
        examples=["csv_upload", "snaptrade_sync"],
    )
    trade_count: int | None = Field(default=None, ge=0, alias="tradeCount")
    user_id: str | None = Field(
        default=None,
        alias="userId",
        description="Target user; honored only with the internal service key",
    )
