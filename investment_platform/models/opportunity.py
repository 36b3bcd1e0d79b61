"""
InvestmentOpportunity domain model (a bond funding round).

Persisted in the ``investment_opportunities`` table.  Descriptive fields
(marketing copy, media, FAQ, ...) are managed by admin CRUD outside this
service and are not modelled here; only what the confirmation workflow reads
or writes is.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime
from sqlmodel import Field, SQLModel


class OpportunityStatus(str, Enum):
    """Lifecycle states of an opportunity.  Only ACTIVE accepts confirmations."""

    ACTIVE = "active"
    UPCOMING = "upcoming"
    CLOSED = "closed"
    PAUSED = "paused"


class InvestmentOpportunity(SQLModel, table=True):
    """
    SQLModel / SQLAlchemy table definition for investment opportunities.

    ``current_funding``, ``investors_count`` and the ACTIVE → CLOSED flip are
    written only by the funding ledger, in one atomic UPDATE.

    Business rules enforced at the DB level:
    - ``total_funding_target`` is strictly positive.
    - ``current_funding`` and ``investors_count`` never go negative.
    """

    __tablename__ = "investment_opportunities"  # type: ignore[assignment]

    __table_args__ = (
        CheckConstraint(
            "total_funding_target > 0", name="ck_opportunities_target_positive"
        ),
        CheckConstraint(
            "current_funding >= 0", name="ck_opportunities_funding_non_negative"
        ),
        CheckConstraint(
            "investors_count >= 0", name="ck_opportunities_investors_non_negative"
        ),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    title: str = Field(max_length=255)
    company: str = Field(default="", max_length=255)
    total_funding_target: Decimal = Field(max_digits=20, decimal_places=2)
    current_funding: Decimal = Field(
        default=Decimal("0.00"), max_digits=20, decimal_places=2
    )
    investors_count: int = Field(default=0)
    status: OpportunityStatus = Field(default=OpportunityStatus.UPCOMING, index=True)

    # ── Blockchain ──
    contract_address: Optional[str] = Field(default=None, max_length=64)
    contract_deployment_tx: Optional[str] = Field(default=None, max_length=80)

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
    def target_reached(self) -> bool:
        return self.current_funding >= self.total_funding_target

    def __repr__(self) -> str:
        return (
            f"<InvestmentOpportunity id={self.id} title='{self.title}' "
            f"funding={self.current_funding}/{self.total_funding_target} "
            f"status={self.status.value}>"
        )
