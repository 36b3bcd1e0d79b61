"""
Generic async repository (Data Access Layer).

Implements the Repository pattern on top of SQLAlchemy's ``AsyncSession``.
Concrete repositories inherit from ``BaseRepository[T]`` and add the
entity-specific queries and conditional updates the confirmation workflow
needs.

Design rationale:
- Every call goes through the global ``db_circuit_breaker`` so a database
  outage fails fast with ``CircuitBreakerError`` instead of hanging.
- Each write commits on its own.  The store is not assumed to support
  multi-record transactions; concurrency safety comes from single-statement
  conditional UPDATEs in the concrete repositories.
- **OperationalError** (connection loss, deadlock) rolls the session back
  before re-raising, so a failed step does not leave a dirty session.
- **IntegrityError** is NOT caught here; callers decide what it means.
"""

import logging
from typing import Any, Awaitable, Callable, Generic, Optional, Type, TypeVar

from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import SQLModel

from investment_platform.core.resilience import db_circuit_breaker

logger = logging.getLogger(__name__)

ModelType = TypeVar("ModelType", bound=SQLModel)
T = TypeVar("T")


class BaseRepository(Generic[ModelType]):
    """
    Generic repository for SQLModel entities.

    Parameters
    ----------
    model : Type[ModelType]
        The SQLModel class this repository manages.
    db : AsyncSession
        An active async database session (injected per request).
    """

    def __init__(self, model: Type[ModelType], db: AsyncSession):
        self.model = model
        self.db = db

    # ── Internal helpers ──

    async def _execute_with_circuit_breaker(
        self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any
    ) -> T:
        return await db_circuit_breaker.call(func, *args, **kwargs)

    async def _commit(self, action: str) -> None:
        """Commit, rolling back on ``OperationalError`` before re-raising."""
        try:
            await self.db.commit()
        except OperationalError:
            await self.db.rollback()
            logger.error("OperationalError during %s for %s", action, self.model.__name__)
            raise

    # ── Queries ──

    async def get(self, id: Any) -> Optional[ModelType]:
        """Fetch a single entity by primary key.  Returns ``None`` if not found."""

        async def _get() -> Optional[ModelType]:
            return await self.db.get(self.model, id)

        return await self._execute_with_circuit_breaker(_get)

    async def get_fresh(self, id: Any) -> Optional[ModelType]:
        """
        Fetch by primary key, overwriting any copy already in the session.

        Needed after a Core-level ``UPDATE``: the identity map still holds the
        pre-update attribute values otherwise.
        """

        async def _get_fresh() -> Optional[ModelType]:
            return await self.db.get(self.model, id, populate_existing=True)

        return await self._execute_with_circuit_breaker(_get_fresh)

    # ── Commands ──

    async def create(self, obj_in: ModelType) -> ModelType:
        """Insert a new entity and return the refreshed instance."""

        async def _create() -> ModelType:
            self.db.add(obj_in)
            await self._commit("create")
            await self.db.refresh(obj_in)
            return obj_in

        return await self._execute_with_circuit_breaker(_create)
