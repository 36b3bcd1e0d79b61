"""
Pydantic schemas for the opportunity funding view.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, field_serializer

from investment_platform.models.opportunity import OpportunityStatus


class OpportunityResponse(BaseModel):
    """Funding state of an opportunity as the confirmation workflow sees it."""

    id: UUID
    title: str
    company: str
    total_funding_target: Decimal
    current_funding: Decimal
    investors_count: int
    status: OpportunityStatus
    contract_address: Optional[str] = None
    updated_at: datetime

    @field_serializer("total_funding_target", "current_funding")
    @classmethod
    def serialize_decimal_as_number(cls, v: Decimal) -> float:
        return float(v)

    model_config = ConfigDict(from_attributes=True)
