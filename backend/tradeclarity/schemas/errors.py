# backend/tradeclarity/schemas/errors.py
"""
Pydantic schemas for error responses.

These schemas provide a consistent error format across all API endpoints.
Used by global exception handlers in main.py.
"""

from pydantic import BaseModel, Field


class ErrorDetail(BaseModel):
    """
    Standard error response format.

    Every error body carries `success: false` so clients can branch on one
    field for both success and failure payloads.
    """

    success: bool = Field(default=False)
    error: str = Field(
        ...,
        description="Machine-stable error code (e.g., 'FAILED_TO_SAVE_CACHE')"
    )
    message: str = Field(
        ...,
        description="Human-readable error message"
    )
    details: dict | None = Field(
        default=None,
        description="Additional error context (optional)"
    )


class ValidationErrorDetail(BaseModel):
    """
    Validation error response format.

    Used for Pydantic validation errors (422 responses).
    """

    success: bool = Field(default=False)
    error: str = Field(default="VALIDATION_ERROR")
    message: str = Field(default="Request validation failed")
    details: list[dict] = Field(
        ...,
        description="List of validation errors"
    )
