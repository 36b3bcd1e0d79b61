"""
Asset domain model.

A record of bond ownership, written once per confirmed investment and never
updated afterwards.  The unique ``investment_id`` makes a second asset for the
same investment a constraint violation rather than a silent duplicate.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime
from sqlmodel import Field, SQLModel


class AssetType(str, Enum):
    ENERGY_TOKEN = "Energy Token"
    BOND = "Bond"
    CERTIFICATE = "Certificate"


class Asset(SQLModel, table=True):
    """SQLModel / SQLAlchemy table definition for assets."""

    __tablename__ = "assets"  # type: ignore[assignment]

    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_assets_quantity_non_negative"),
        CheckConstraint("value > 0", name="ck_assets_value_positive"),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    owner_id: uuid.UUID = Field(foreign_key="users.id", index=True, ondelete="RESTRICT")
    opportunity_id: Optional[uuid.UUID] = Field(
        default=None,
        foreign_key="investment_opportunities.id",
        index=True,
    )
    investment_id: Optional[uuid.UUID] = Field(
        default=None,
        foreign_key="investments.id",
        unique=True,
    )
    name: str = Field(max_length=255)
    type: AssetType = Field(default=AssetType.BOND)
    quantity: int
    value: Decimal = Field(max_digits=20, decimal_places=2)
    date_acquired: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_type=DateTime(timezone=True),  # type: ignore[arg-type]
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        nullable=False,
        sa_type=DateTime(timezone=True),  # type: ignore[arg-type]
    )

    def __repr__(self) -> str:
        return f"<Asset id={self.id} owner={self.owner_id} quantity={self.quantity} value={self.value}>"
