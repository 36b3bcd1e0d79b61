"""
Pydantic schemas for Investment API responses.

Investments are created by the investor-facing flow, so the admin API only
ever returns them; there is no request body schema here.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_serializer

from investment_platform.models.investment import InvestmentStatus, PaymentMethod


class InvestmentResponse(BaseModel):
    """Schema returned by the admin investment endpoints."""

    id: UUID
    investor_id: UUID
    opportunity_id: UUID
    amount: Decimal = Field(..., description="Committed amount in USD", examples=[600.00])
    bonds: Optional[int] = Field(
        default=None, description="Bonds bought; null on legacy records"
    )
    payment_method: Optional[PaymentMethod] = None
    status: InvestmentStatus
    wallet_address: Optional[str] = Field(
        default=None, description="Wallet the bonds were (or will be) minted to"
    )
    mint_tx_hash: Optional[str] = Field(
        default=None, description="Mint transaction hash; null if minting was skipped or failed"
    )
    investment_date: date
    created_at: datetime
    updated_at: datetime

    @field_serializer("amount")
    @classmethod
    def serialize_decimal_as_number(cls, v: Decimal) -> float:
        """Serialize Decimal as a JSON number rather than pydantic's default string."""
        return float(v)

    model_config = ConfigDict(from_attributes=True)
