"""
Investment opportunity repository — data-access layer for the
``investment_opportunities`` table.

``apply_funding`` is the only writer of the funding fields.  It is a single
``UPDATE`` whose new values are computed from the row's own columns, so
concurrent confirmations against the same opportunity serialise on the row
lock and never overwrite each other's increments.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import case, literal, update

from investment_platform.models.opportunity import InvestmentOpportunity, OpportunityStatus
from investment_platform.repositories.base import BaseRepository


class OpportunityRepository(BaseRepository[InvestmentOpportunity]):
    """Concrete repository for :class:`InvestmentOpportunity` entities."""

    async def apply_funding(
        self, opportunity_id: UUID, amount: Decimal
    ) -> Optional[InvestmentOpportunity]:
        """
        Atomically add ``amount`` to the funding total and count one investor.

        Equivalent SQL::

            UPDATE investment_opportunities
               SET current_funding = current_funding + :amount,
                   investors_count = investors_count + 1,
                   status = CASE WHEN current_funding + :amount >= total_funding_target
                                 THEN 'CLOSED' ELSE status END,
                   updated_at = :now
             WHERE id = :id

        Returns the refreshed row, or ``None`` if the opportunity no longer
        exists.
        """
        opp = InvestmentOpportunity
        new_funding = opp.current_funding + amount
        closed = literal(OpportunityStatus.CLOSED, type_=opp.__table__.c.status.type)

        async def _apply() -> int:
            stmt = (
                update(opp)
                .where(opp.id == opportunity_id)
                .values(
                    current_funding=new_funding,
                    investors_count=opp.investors_count + 1,
                    status=case(
                        (new_funding >= opp.total_funding_target, closed),
                        else_=opp.status,
                    ),
                    updated_at=datetime.now(timezone.utc),
                )
                .execution_options(synchronize_session=False)
            )
            result = await self.db.execute(stmt)
            await self._commit("apply_funding")
            return result.rowcount

        matched = await self._execute_with_circuit_breaker(_apply)
        if not matched:
            return None
        return await self.get_fresh(opportunity_id)
