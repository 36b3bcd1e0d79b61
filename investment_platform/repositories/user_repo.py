"""
User and profile repositories — read-only access for the workflow.

The confirmation workflow never writes users; it only needs the recipient
of the notification e-mail and the investor's profile wallet.
"""

from typing import Optional
from uuid import UUID

from sqlalchemy.future import select

from investment_platform.models.user import User, UserProfile
from investment_platform.repositories.base import BaseRepository


class UserRepository(BaseRepository[User]):
    """Concrete repository for :class:`User` entities."""

    pass


class ProfileRepository(BaseRepository[UserProfile]):
    """Concrete repository for :class:`UserProfile` entities."""

    async def get_wallet_address(self, investor_id: UUID) -> Optional[str]:
        """
        Return the wallet on the investor's profile.

        ``None`` when the investor has no profile or the profile has no
        wallet; blank strings are treated the same way.
        """

        async def _get() -> Optional[str]:
            stmt = select(self.model.wallet_address).where(self.model.user_id == investor_id)
            result = await self.db.execute(stmt)
            return result.scalars().first()

        wallet = await self._execute_with_circuit_breaker(_get)
        return wallet or None
