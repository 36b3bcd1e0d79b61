"""
Transaction domain model.

The ledger entry for the money movement behind an investment.  An investment
outflow is stored with a negative ``amount``.  Older rows were written without
``investment_id``; the workflow finds those by investor + negated amount.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, Index
from sqlmodel import Field, SQLModel

from investment_platform.models.investment import PaymentMethod


class TransactionType(str, Enum):
    DEPOSIT = "Deposit"
    INVESTMENT = "Investment"
    WITHDRAWAL = "Withdrawal"


class TransactionStatus(str, Enum):
    """Mirrors the investment outcome: CONFIRMED → COMPLETED, CANCELLED → FAILED."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class Transaction(SQLModel, table=True):
    """
    SQLModel / SQLAlchemy table definition for transactions.

    The composite index ``ix_transactions_investor_type_amount`` covers the
    legacy companion lookup (investor, type, amount ORDER BY created_at DESC).
    """

    __tablename__ = "transactions"  # type: ignore[assignment]

    __table_args__ = (
        Index(
            "ix_transactions_investor_type_amount",
            "investor_id",
            "type",
            "amount",
            "created_at",
        ),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    investor_id: uuid.UUID = Field(foreign_key="users.id", index=True, ondelete="RESTRICT")
    type: TransactionType
    amount: Decimal = Field(max_digits=20, decimal_places=2)
    currency: str = Field(default="USD", max_length=3)
    status: TransactionStatus = Field(default=TransactionStatus.PENDING)
    reference: str = Field(default="", max_length=64)
    investment_id: Optional[uuid.UUID] = Field(
        default=None,
        foreign_key="investments.id",
        index=True,
        ondelete="SET NULL",
    )
    payment_method: Optional[PaymentMethod] = Field(default=None)
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

    def __repr__(self) -> str:
        return (
            f"<Transaction id={self.id} type={self.type.value} amount={self.amount} "
            f"status={self.status.value} investment={self.investment_id}>"
        )
