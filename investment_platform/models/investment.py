"""
Investment domain model.

Represents one funding commitment by one investor into one opportunity.
Created PENDING by the user-facing flow; moved to CONFIRMED or CANCELLED
exactly once by the confirmation workflow, never deleted.
"""

import uuid
from datetime import date, datetime, timezone
from decimal import ROUND_DOWN, Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime
from sqlmodel import Field, SQLModel

# Price of one bond unit, used when a legacy record carries no bond count.
DEFAULT_BOND_PRICE = Decimal("100")


class InvestmentStatus(str, Enum):
    """Allowed states.  PENDING → CONFIRMED and PENDING → CANCELLED only."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class PaymentMethod(str, Enum):
    BANK_TRANSFER = "bank_transfer"
    CREDIT_CARD = "credit_card"
    SEPA = "sepa"


class Investment(SQLModel, table=True):
    """
    SQLModel / SQLAlchemy table definition for investments.

    Design notes:
    - ``status`` is indexed; the confirm/cancel transitions are issued as
      ``UPDATE ... WHERE status = 'PENDING'`` so two racing admin calls
      cannot both win.
    - ``wallet_address`` is captured at creation time when the investor
      supplies one, and overwritten with the actual mint destination once
      bonds are minted.
    - ``mint_tx_hash`` stays NULL when minting was skipped or failed; such
      rows are the backlog for a manual re-mint.
    """

    __tablename__ = "investments"  # type: ignore[assignment]

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_investments_amount_positive"),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    investor_id: uuid.UUID = Field(
        foreign_key="users.id",
        index=True,
        ondelete="RESTRICT",
    )
    opportunity_id: uuid.UUID = Field(
        foreign_key="investment_opportunities.id",
        index=True,
        ondelete="RESTRICT",
    )
    amount: Decimal = Field(max_digits=20, decimal_places=2)
    bonds: Optional[int] = Field(default=None)
    payment_method: Optional[PaymentMethod] = Field(default=None)
    status: InvestmentStatus = Field(default=InvestmentStatus.PENDING, index=True)

    # ── Blockchain ──
    wallet_address: Optional[str] = Field(default=None, max_length=64)
    mint_tx_hash: Optional[str] = Field(default=None, max_length=80)

    investment_date: date = Field(default_factory=date.today)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        nullable=False,
        sa_type=DateTime(timezone=True),  # type: ignore[arg-type]
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        nullable=False,
        sa_type=DateTime(timezone=True),  # type: ignore[arg-type]
    )

    @property
    def bond_count(self) -> int:
        """Bonds bought; falls back to ``amount / DEFAULT_BOND_PRICE`` for legacy rows."""
        if self.bonds:
            return self.bonds
        return int((Decimal(self.amount) / DEFAULT_BOND_PRICE).to_integral_value(ROUND_DOWN))

    def __repr__(self) -> str:
        return (
            f"<Investment id={self.id} opportunity={self.opportunity_id} "
            f"investor={self.investor_id} amount={self.amount} status={self.status.value}>"
        )
