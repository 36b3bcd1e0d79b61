"""
Seed script — populates the database with sample data for development / demo.

Usage:
    USE_SQLITE=false python -m investment_platform.seed

The script is idempotent: it checks for existing data before inserting.

The dataset reproduces the canonical funding walk-through: an ACTIVE
opportunity with a 1,000 target and two pending investments of 600 and 500.
Confirming both credits 1,100 and closes the opportunity.  The second
investment's transaction predates the ``investment_id`` column, so it is
only found through the investor + negated-amount lookup.
"""

import asyncio
import logging
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlmodel import SQLModel

import investment_platform.db.base  # noqa: F401  (registers every table, assets included)
from investment_platform.db.session import AsyncSessionLocal, engine
from investment_platform.models.investment import Investment, PaymentMethod
from investment_platform.models.opportunity import InvestmentOpportunity, OpportunityStatus
from investment_platform.models.transaction import Transaction, TransactionType
from investment_platform.models.user import User, UserProfile

logging.basicConfig(
    level=logging.INFO, format="%(asctime)s | %(levelname)s | %(message)s"
)
logger = logging.getLogger(__name__)

OPPORTUNITY_ID = uuid.UUID("550e8400-e29b-41d4-a716-446655440000")
ALICE_ID = uuid.UUID("770e8400-e29b-41d4-a716-446655440002")
BOB_ID = uuid.UUID("880e8400-e29b-41d4-a716-446655440003")
ALICE_INVESTMENT_ID = uuid.UUID("990e8400-e29b-41d4-a716-446655440004")
BOB_INVESTMENT_ID = uuid.UUID("aa0e8400-e29b-41d4-a716-446655440005")


def build_sample_data() -> List[List[SQLModel]]:
    """
    Fresh model instances, grouped in insert order (parents first).

    Built per call: an instance can only belong to one session.
    """
    created = datetime(2025, 6, 1, 9, 0, 0, tzinfo=timezone.utc)
    opportunities = [
        InvestmentOpportunity(
            id=OPPORTUNITY_ID,
            title="Solar Farm Bond",
            company="Helios Energy",
            total_funding_target=Decimal("1000.00"),
            status=OpportunityStatus.ACTIVE,
            contract_address="0x5FbDB2315678afecb367f032d93F642f64180aa3",
            created_at=created,
        ),
    ]
    users = [
        User(id=ALICE_ID, name="Alice Martin", email="alice@example.com", created_at=created),
        User(id=BOB_ID, name="Bob Chen", email="bob@example.com", created_at=created),
    ]
    profiles = [
        UserProfile(
            user_id=ALICE_ID,
            wallet_address="0x70997970C51812dc3A010C7d01b50e0d17dc79C8",
        ),
        UserProfile(user_id=BOB_ID),
    ]
    investments = [
        Investment(
            id=ALICE_INVESTMENT_ID,
            investor_id=ALICE_ID,
            opportunity_id=OPPORTUNITY_ID,
            amount=Decimal("600.00"),
            bonds=6,
            payment_method=PaymentMethod.BANK_TRANSFER,
            investment_date=date(2025, 6, 2),
        ),
        Investment(
            id=BOB_INVESTMENT_ID,
            investor_id=BOB_ID,
            opportunity_id=OPPORTUNITY_ID,
            amount=Decimal("500.00"),
            payment_method=PaymentMethod.SEPA,
            wallet_address="0x3C44CdDdB6a900fa2b585dd299e03d12FA4293BC",
            investment_date=date(2025, 6, 3),
        ),
    ]
    transactions = [
        Transaction(
            investor_id=ALICE_ID,
            type=TransactionType.INVESTMENT,
            amount=Decimal("-600.00"),
            reference="INV-0001",
            investment_id=ALICE_INVESTMENT_ID,
            payment_method=PaymentMethod.BANK_TRANSFER,
        ),
        # Legacy row: no investment_id.
        Transaction(
            investor_id=BOB_ID,
            type=TransactionType.INVESTMENT,
            amount=Decimal("-500.00"),
            reference="INV-0002",
            payment_method=PaymentMethod.SEPA,
        ),
    ]
    return [opportunities + users, profiles + investments, transactions]


async def seed(
    session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal,
    bind: AsyncEngine = engine,
) -> bool:
    """Create tables and insert sample data if the database is empty.  Returns ``True`` if it inserted."""
    async with bind.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    async with session_factory() as session:
        result = await session.execute(select(InvestmentOpportunity).limit(1))
        if result.scalars().first() is not None:
            logger.info("Database already contains data — skipping seed.")
            return False

        batches = build_sample_data()
        for batch in batches:
            session.add_all(batch)
            await session.commit()

        logger.info("Seeded %d records", sum(len(batch) for batch in batches))
        return True


if __name__ == "__main__":
    asyncio.run(seed())
