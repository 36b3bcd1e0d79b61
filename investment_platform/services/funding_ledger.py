"""
Funding ledger — owns the arithmetic of an opportunity's funding totals.

Every confirmed investment adds its amount to ``current_funding``, counts one
more investor, and closes the opportunity once the target is reached.  The
three changes happen in one conditional UPDATE (see
:meth:`OpportunityRepository.apply_funding`), so concurrent confirmations on
the same opportunity cannot lose increments.  Nothing here ever subtracts.
"""

import logging
from decimal import Decimal
from uuid import UUID

from investment_platform.core.exceptions import InvalidStateException, NotFoundException
from investment_platform.models.opportunity import InvestmentOpportunity, OpportunityStatus
from investment_platform.repositories.opportunity_repo import OpportunityRepository

logger = logging.getLogger(__name__)


class FundingLedger:
    def __init__(self, opportunity_repo: OpportunityRepository):
        self._opportunity_repo = opportunity_repo

    async def get_funding(self, opportunity_id: UUID) -> InvestmentOpportunity:
        """Current funding state of an opportunity → 404 if it does not exist."""
        opportunity = await self._opportunity_repo.get(opportunity_id)
        if opportunity is None:
            raise NotFoundException("InvestmentOpportunity", opportunity_id)
        return opportunity

    async def apply_confirmed_investment(
        self, opportunity_id: UUID, amount: Decimal
    ) -> InvestmentOpportunity:
        """
        Credit ``amount`` to the opportunity and return its updated state.

        Raises:
            InvalidStateException: ``amount`` is not positive (no write made).
            NotFoundException: the opportunity does not exist.
        """
        if amount <= 0:
            raise InvalidStateException(
                f"Funding amount must be positive, got {amount}"
            )

        opportunity = await self._opportunity_repo.apply_funding(opportunity_id, amount)
        if opportunity is None:
            raise NotFoundException("InvestmentOpportunity", opportunity_id)

        if opportunity.status == OpportunityStatus.CLOSED and opportunity.target_reached:
            logger.info(
                "Opportunity %s reached its funding target (%s/%s) and is now closed",
                opportunity.id,
                opportunity.current_funding,
                opportunity.total_funding_target,
                extra={"opportunity_id": str(opportunity.id), "step": "funding"},
            )
        return opportunity
