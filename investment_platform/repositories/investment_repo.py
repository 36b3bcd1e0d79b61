"""
Investment repository — data-access layer for the ``investments`` table.

Status changes are compare-and-swap UPDATEs: the row only moves if it is
still in the expected state, which is what makes confirm/cancel safe to
retry and safe under concurrent admin calls.
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy import update

from investment_platform.models.investment import Investment, InvestmentStatus
from investment_platform.repositories.base import BaseRepository


class InvestmentRepository(BaseRepository[Investment]):
    """Concrete repository for :class:`Investment` entities."""

    async def transition_status(
        self,
        investment_id: UUID,
        expected: InvestmentStatus,
        new_status: InvestmentStatus,
    ) -> Optional[Investment]:
        """
        Move the investment from ``expected`` to ``new_status`` atomically.

        Returns the refreshed investment, or ``None`` when no row matched
        (the investment vanished or is no longer in ``expected``).
        """

        async def _transition() -> int:
            stmt = (
                update(Investment)
                .where(Investment.id == investment_id, Investment.status == expected)
                .values(status=new_status, updated_at=datetime.now(timezone.utc))
                .execution_options(synchronize_session=False)
            )
            result = await self.db.execute(stmt)
            await self._commit("transition_status")
            return result.rowcount

        matched = await self._execute_with_circuit_breaker(_transition)
        if not matched:
            return None
        return await self.get_fresh(investment_id)

    async def set_mint_reference(
        self, investment_id: UUID, tx_hash: str, wallet_address: str
    ) -> Optional[Investment]:
        """Record where and in which transaction the bonds were minted."""

        async def _set() -> int:
            stmt = (
                update(Investment)
                .where(Investment.id == investment_id)
                .values(
                    mint_tx_hash=tx_hash,
                    wallet_address=wallet_address,
                    updated_at=datetime.now(timezone.utc),
                )
                .execution_options(synchronize_session=False)
            )
            result = await self.db.execute(stmt)
            await self._commit("set_mint_reference")
            return result.rowcount

        matched = await self._execute_with_circuit_breaker(_set)
        if not matched:
            return None
        return await self.get_fresh(investment_id)
