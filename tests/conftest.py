"""
Shared pytest fixtures.

Tests run with ``USE_SQLITE=true`` and with minting and e-mail disabled, so no
PostgreSQL, chain node or SMTP relay is needed.  Unit tests use mocked
repositories; integration tests get a fresh in-memory SQLite database per test.
"""

import os

os.environ["USE_SQLITE"] = "true"
os.environ["BLOCKCHAIN_ENABLED"] = "false"
os.environ["EMAIL_ENABLED"] = "false"

import uuid  # noqa: E402
from datetime import date, datetime, timezone  # noqa: E402
from decimal import Decimal  # noqa: E402
from typing import Optional  # noqa: E402
from unittest.mock import AsyncMock, MagicMock  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlmodel import SQLModel  # noqa: E402

import investment_platform.db.base  # noqa: E402,F401
from investment_platform.core.resilience import CircuitState, db_circuit_breaker  # noqa: E402
from investment_platform.db.session import build_engine, build_sessionmaker  # noqa: E402
from investment_platform.models.asset import Asset  # noqa: E402
from investment_platform.models.investment import (  # noqa: E402
    Investment,
    InvestmentStatus,
    PaymentMethod,
)
from investment_platform.models.opportunity import (  # noqa: E402
    InvestmentOpportunity,
    OpportunityStatus,
)
from investment_platform.models.transaction import (  # noqa: E402
    Transaction,
    TransactionStatus,
    TransactionType,
)
from investment_platform.models.user import User, UserProfile  # noqa: E402
from investment_platform.repositories.asset_repo import AssetRepository  # noqa: E402
from investment_platform.repositories.investment_repo import InvestmentRepository  # noqa: E402
from investment_platform.repositories.opportunity_repo import OpportunityRepository  # noqa: E402
from investment_platform.repositories.transaction_repo import TransactionRepository  # noqa: E402
from investment_platform.repositories.user_repo import (  # noqa: E402
    ProfileRepository,
    UserRepository,
)
from investment_platform.services.investment_confirmation import (  # noqa: E402
    InvestmentConfirmationService,
)

# ────────────────────────────────────────────────────────────────────────────
# Factory helpers: create domain objects with sensible defaults
# ────────────────────────────────────────────────────────────────────────────

OPPORTUNITY_ID = uuid.UUID("11111111-1111-1111-1111-111111111111")
INVESTOR_ID = uuid.UUID("22222222-2222-2222-2222-222222222222")
INVESTMENT_ID = uuid.UUID("33333333-3333-3333-3333-333333333333")
TRANSACTION_ID = uuid.UUID("44444444-4444-4444-4444-444444444444")
INVESTOR_ID_2 = uuid.UUID("55555555-5555-5555-5555-555555555555")
INVESTMENT_ID_2 = uuid.UUID("66666666-6666-6666-6666-666666666666")

CONTRACT_ADDRESS = "0x5FbDB2315678afecb367f032d93F642f64180aa3"
WALLET_ADDRESS = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"
PROFILE_WALLET = "0x3C44CdDdB6a900fa2b585dd299e03d12FA4293BC"
TX_HASH = "0x" + "ab" * 32

_NOW = datetime(2025, 6, 15, 12, 0, 0, tzinfo=timezone.utc)


def make_user(
    *,
    id: uuid.UUID = INVESTOR_ID,
    name: str = "Alice Martin",
    email: str = "alice@example.com",
) -> User:
    return User(id=id, name=name, email=email, created_at=_NOW)


def make_opportunity(
    *,
    id: uuid.UUID = OPPORTUNITY_ID,
    title: str = "Solar Farm Bond",
    total_funding_target: Decimal = Decimal("1000.00"),
    current_funding: Decimal = Decimal("0.00"),
    investors_count: int = 0,
    status: OpportunityStatus = OpportunityStatus.ACTIVE,
    contract_address: Optional[str] = CONTRACT_ADDRESS,
) -> InvestmentOpportunity:
    """Create an InvestmentOpportunity with sensible test defaults."""
    return InvestmentOpportunity(
        id=id,
        title=title,
        company="Helios Energy",
        total_funding_target=total_funding_target,
        current_funding=current_funding,
        investors_count=investors_count,
        status=status,
        contract_address=contract_address,
        created_at=_NOW,
        updated_at=_NOW,
    )


def make_investment(
    *,
    id: uuid.UUID = INVESTMENT_ID,
    investor_id: uuid.UUID = INVESTOR_ID,
    opportunity_id: uuid.UUID = OPPORTUNITY_ID,
    amount: Decimal = Decimal("600.00"),
    bonds: Optional[int] = 6,
    status: InvestmentStatus = InvestmentStatus.PENDING,
    payment_method: Optional[PaymentMethod] = PaymentMethod.BANK_TRANSFER,
    wallet_address: Optional[str] = None,
    mint_tx_hash: Optional[str] = None,
) -> Investment:
    """Create an Investment with sensible test defaults."""
    return Investment(
        id=id,
        investor_id=investor_id,
        opportunity_id=opportunity_id,
        amount=amount,
        bonds=bonds,
        status=status,
        payment_method=payment_method,
        wallet_address=wallet_address,
        mint_tx_hash=mint_tx_hash,
        investment_date=date(2025, 6, 15),
        created_at=_NOW,
        updated_at=_NOW,
    )


def make_transaction(
    *,
    id: uuid.UUID = TRANSACTION_ID,
    investor_id: uuid.UUID = INVESTOR_ID,
    amount: Decimal = Decimal("-600.00"),
    investment_id: Optional[uuid.UUID] = INVESTMENT_ID,
    status: TransactionStatus = TransactionStatus.PENDING,
    payment_method: Optional[PaymentMethod] = None,
    created_at: Optional[datetime] = None,
) -> Transaction:
    """Create an INVESTMENT-type Transaction with sensible test defaults."""
    return Transaction(
        id=id,
        investor_id=investor_id,
        type=TransactionType.INVESTMENT,
        amount=amount,
        status=status,
        investment_id=investment_id,
        payment_method=payment_method,
        created_at=created_at or _NOW,
        updated_at=created_at or _NOW,
    )


def build_confirmation_service(session, *, minting=None, notifier=None) -> InvestmentConfirmationService:
    """Wire the confirmation service to real repositories on ``session``."""
    return InvestmentConfirmationService(
        investment_repo=InvestmentRepository(Investment, session),
        transaction_repo=TransactionRepository(Transaction, session),
        opportunity_repo=OpportunityRepository(InvestmentOpportunity, session),
        asset_repo=AssetRepository(Asset, session),
        profile_repo=ProfileRepository(UserProfile, session),
        user_repo=UserRepository(User, session),
        minting=minting,
        notifier=notifier,
    )


async def create_schema(engine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


async def insert_all(session_factory, *objs) -> None:
    """Insert ``objs`` in order, one commit per object so FK parents land first."""
    async with session_factory() as session:
        for obj in objs:
            session.add(obj)
            await session.commit()


# ────────────────────────────────────────────────────────────────────────────
# Pytest fixtures
# ────────────────────────────────────────────────────────────────────────────


@pytest.fixture()
def mock_db():
    """A mocked AsyncSession that tracks add/commit/refresh/rollback calls."""
    session = AsyncMock()
    session.add = MagicMock()
    session.commit = AsyncMock()
    session.refresh = AsyncMock()
    session.rollback = AsyncMock()
    session.execute = AsyncMock()
    session.get = AsyncMock()
    return session


@pytest_asyncio.fixture()
async def sqlite_engine():
    """A fresh in-memory SQLite database with every table created."""
    engine = build_engine("sqlite+aiosqlite://")
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_factory(sqlite_engine):
    return build_sessionmaker(sqlite_engine)


@pytest_asyncio.fixture()
async def seeded(session_factory):
    """One investor with a profile wallet, an ACTIVE 1,000 opportunity, nothing invested yet."""
    await insert_all(
        session_factory,
        make_user(),
        UserProfile(user_id=INVESTOR_ID, wallet_address=PROFILE_WALLET),
        make_user(id=INVESTOR_ID_2, name="Bob Chen", email="bob@example.com"),
        make_opportunity(),
    )
    return session_factory


@pytest.fixture(autouse=True)
def _reset_db_circuit_breaker():
    """Keep the process-wide breaker CLOSED between tests."""
    db_circuit_breaker._state = CircuitState.CLOSED
    db_circuit_breaker._failure_count = 0
    yield
    db_circuit_breaker._state = CircuitState.CLOSED
    db_circuit_breaker._failure_count = 0
