"""
Common / shared Pydantic schemas used across multiple endpoints.

Standardised error response models, so the OpenAPI document describes the
error payloads as well as the happy path.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """
    Standard error envelope returned by all non-validation error handlers.

    ``details`` is present only on reconciliation failures, where it names the
    investment and the step that failed.
    """

    error: bool = Field(default=True, description="Always ``true`` for errors")
    message: str = Field(
        ...,
        description="Human-readable error description",
        examples=["Investment is not in pending status"],
    )
    details: Optional[Dict[str, Any]] = Field(
        default=None,
        description="Extra context for operators",
        examples=[{"investment_id": "…", "step": "funding", "reconciliation_required": True}],
    )


class ValidationErrorDetail(BaseModel):
    """Single field-level validation failure."""

    field: str = Field(
        ...,
        description="Arrow-separated path to the invalid field",
        examples=["query -> timeout"],
    )
    message: str = Field(
        ...,
        description="Explanation of the validation failure",
        examples=["Input should be greater than 0"],
    )


class ValidationErrorResponse(BaseModel):
    """Response body for 422 Unprocessable Entity (validation failure)."""

    error: bool = Field(default=True, description="Always ``true`` for errors")
    message: str = Field(
        default="Validation failed",
        description="Summary message",
    )
    details: List[ValidationErrorDetail] = Field(..., description="Per-field validation failures")
