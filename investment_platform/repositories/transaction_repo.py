"""
Transaction repository — data-access layer for the ``transactions`` table.

Extends generic CRUD with the two companion-transaction lookups used by the
confirmation workflow and a status update.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.future import select

from investment_platform.models.transaction import (
    Transaction,
    TransactionStatus,
    TransactionType,
)
from investment_platform.repositories.base import BaseRepository


class TransactionRepository(BaseRepository[Transaction]):
    """Concrete repository for :class:`Transaction` entities."""

    async def find_by_investment_id(self, investment_id: UUID) -> Optional[Transaction]:
        """Return the transaction that references ``investment_id`` directly."""

        async def _find() -> Optional[Transaction]:
            stmt = (
                select(self.model)
                .where(self.model.investment_id == investment_id)
                .order_by(self.model.created_at.desc())
            )
            result = await self.db.execute(stmt)
            return result.scalars().first()

        return await self._execute_with_circuit_breaker(_find)

    async def find_latest_by_investor_and_negated_amount(
        self, investor_id: UUID, amount: Decimal
    ) -> Optional[Transaction]:
        """
        Legacy lookup for rows written without ``investment_id``.

        Matches the investor's most recent INVESTMENT transaction whose amount
        is ``-amount`` (investment outflows are stored negative).
        """

        async def _find() -> Optional[Transaction]:
            stmt = (
                select(self.model)
                .where(
                    self.model.investor_id == investor_id,
                    self.model.type == TransactionType.INVESTMENT,
                    self.model.amount == -amount,
                )
                .order_by(self.model.created_at.desc())
                .limit(1)
            )
            result = await self.db.execute(stmt)
            return result.scalars().first()

        return await self._execute_with_circuit_breaker(_find)

    async def update_status(self, transaction_id: UUID, status: TransactionStatus) -> bool:
        """Set the transaction status.  Returns ``False`` if the row is gone."""

        async def _update() -> int:
            stmt = (
                update(Transaction)
                .where(Transaction.id == transaction_id)
                .values(status=status, updated_at=datetime.now(timezone.utc))
                .execution_options(synchronize_session=False)
            )
            result = await self.db.execute(stmt)
            await self._commit("update_status")
            return result.rowcount

        return bool(await self._execute_with_circuit_breaker(_update))
