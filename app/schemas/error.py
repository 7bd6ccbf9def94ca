"""
Pydantic schemas for error responses.
"""

from typing import Any

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """
    Standard error response format.

    Examples:
        404: {"error": "backend_not_found", "message": "Storage source 3 not found or inactive"}
        501: {"error": "operation_not_supported", "message": "Telegram does not support delete"}
        507: {"error": "capacity_exhausted", "message": "No storage source has enough free space ..."}
    """

    error: str = Field(
        ...,
        description="Error code string",
        examples=["validation_failed", "not_found", "capacity_exhausted"],
    )
    message: str = Field(
        ...,
        description="Human-readable error message",
    )
    details: dict[str, Any] | None = Field(
        default=None,
        description="Optional additional error details",
    )
