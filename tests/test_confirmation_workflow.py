"""
End-to-end tests of the confirmation workflow against SQLite.

The service is wired to the real repositories; minting and e-mail are
AsyncMocks.  Includes the canonical 1,000 / 600 / 500 walk-through and the
concurrency guarantees (no lost funding updates, one winner per investment).
"""

import asyncio
import uuid
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy import select

from investment_platform.core.exceptions import InvalidStateException, NotFoundException
from investment_platform.db.session import build_engine, build_sessionmaker
from investment_platform.models.asset import Asset
from investment_platform.models.investment import Investment, InvestmentStatus
from investment_platform.models.opportunity import InvestmentOpportunity, OpportunityStatus
from investment_platform.models.transaction import Transaction, TransactionStatus
from investment_platform.services.minting import MintResult

from .conftest import (
    CONTRACT_ADDRESS,
    INVESTMENT_ID,
    INVESTMENT_ID_2,
    INVESTOR_ID,
    INVESTOR_ID_2,
    OPPORTUNITY_ID,
    PROFILE_WALLET,
    TRANSACTION_ID,
    TX_HASH,
    build_confirmation_service,
    create_schema,
    insert_all,
    make_investment,
    make_opportunity,
    make_transaction,
    make_user,
)

LEGACY_TRANSACTION_ID = uuid.UUID("77777777-7777-7777-7777-777777777777")


def _minting_stub() -> AsyncMock:
    minting = AsyncMock()
    minting.mint.return_value = MintResult(
        tx_hash=TX_HASH,
        contract_address=CONTRACT_ADDRESS,
        wallet_address=PROFILE_WALLET,
        explorer_url=f"https://testnet.sonicscan.org/tx/{TX_HASH}",
    )
    return minting


async def _load(session_factory, model, id):
    async with session_factory() as session:
        return await session.get(model, id)


async def _assets(session_factory):
    async with session_factory() as session:
        result = await session.execute(select(Asset))
        return list(result.scalars().all())


@pytest_asyncio.fixture()
async def walkthrough(seeded):
    """Alice: 600 with a linked transaction.  Bob: 500 with a legacy, unlinked one."""
    await insert_all(
        seeded,
        make_investment(),
        make_investment(
            id=INVESTMENT_ID_2, investor_id=INVESTOR_ID_2, amount=Decimal("500.00"), bonds=5
        ),
        make_transaction(),
        make_transaction(
            id=LEGACY_TRANSACTION_ID,
            investor_id=INVESTOR_ID_2,
            amount=Decimal("-500.00"),
            investment_id=None,
        ),
    )
    return seeded


class TestConfirmationWalkthrough:
    @pytest.mark.asyncio
    async def test_two_confirmations_fill_and_close_the_opportunity(self, walkthrough):
        minting = _minting_stub()
        notifier = AsyncMock()

        async with walkthrough() as session:
            service = build_confirmation_service(session, minting=minting, notifier=notifier)
            first = await service.confirm_investment(INVESTMENT_ID)

        assert first.status == InvestmentStatus.CONFIRMED
        opp = await _load(walkthrough, InvestmentOpportunity, OPPORTUNITY_ID)
        assert opp.current_funding == Decimal("600")
        assert opp.investors_count == 1
        assert opp.status == OpportunityStatus.ACTIVE

        async with walkthrough() as session:
            service = build_confirmation_service(session, minting=minting, notifier=notifier)
            second = await service.confirm_investment(INVESTMENT_ID_2)

        assert second.status == InvestmentStatus.CONFIRMED
        opp = await _load(walkthrough, InvestmentOpportunity, OPPORTUNITY_ID)
        assert opp.current_funding == Decimal("1100")
        assert opp.investors_count == 2
        assert opp.status == OpportunityStatus.CLOSED

        assets = await _assets(walkthrough)
        assert sorted((a.investment_id, a.quantity) for a in assets) == sorted(
            [(INVESTMENT_ID, 6), (INVESTMENT_ID_2, 5)]
        )
        assert notifier.send_confirmation.await_count == 2

    @pytest.mark.asyncio
    async def test_confirm_settles_linked_transaction_and_records_mint(self, walkthrough):
        async with walkthrough() as session:
            service = build_confirmation_service(session, minting=_minting_stub())
            result = await service.confirm_investment(INVESTMENT_ID)

        assert result.mint_tx_hash == TX_HASH
        stored = await _load(walkthrough, Investment, INVESTMENT_ID)
        assert stored.status == InvestmentStatus.CONFIRMED
        assert stored.mint_tx_hash == TX_HASH
        assert stored.wallet_address == PROFILE_WALLET

        transaction = await _load(walkthrough, Transaction, TRANSACTION_ID)
        assert transaction.status == TransactionStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_legacy_transaction_found_by_negated_amount(self, walkthrough):
        async with walkthrough() as session:
            await build_confirmation_service(session).confirm_investment(INVESTMENT_ID_2)

        legacy = await _load(walkthrough, Transaction, LEGACY_TRANSACTION_ID)
        assert legacy.status == TransactionStatus.COMPLETED
        untouched = await _load(walkthrough, Transaction, TRANSACTION_ID)
        assert untouched.status == TransactionStatus.PENDING

    @pytest.mark.asyncio
    async def test_confirm_by_transaction_id(self, walkthrough):
        async with walkthrough() as session:
            result = await build_confirmation_service(session).confirm_investment(TRANSACTION_ID)

        assert result.id == INVESTMENT_ID
        assert result.status == InvestmentStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_confirm_twice_rejected_and_funding_credited_once(self, walkthrough):
        async with walkthrough() as session:
            service = build_confirmation_service(session)
            await service.confirm_investment(INVESTMENT_ID)
            with pytest.raises(InvalidStateException):
                await service.confirm_investment(INVESTMENT_ID)

        opp = await _load(walkthrough, InvestmentOpportunity, OPPORTUNITY_ID)
        assert opp.current_funding == Decimal("600")
        assert opp.investors_count == 1
        assert len(await _assets(walkthrough)) == 1

    @pytest.mark.asyncio
    async def test_confirm_into_closed_opportunity_rejected(self, walkthrough):
        third_id = uuid.uuid4()
        await insert_all(walkthrough, make_investment(id=third_id, amount=Decimal("100.00"), bonds=1))

        async with walkthrough() as session:
            service = build_confirmation_service(session)
            await service.confirm_investment(INVESTMENT_ID)
            await service.confirm_investment(INVESTMENT_ID_2)
            with pytest.raises(InvalidStateException, match="not active"):
                await service.confirm_investment(third_id)

        pending = await _load(walkthrough, Investment, third_id)
        assert pending.status == InvestmentStatus.PENDING
        opp = await _load(walkthrough, InvestmentOpportunity, OPPORTUNITY_ID)
        assert opp.current_funding == Decimal("1100")

    @pytest.mark.asyncio
    async def test_unknown_reference(self, walkthrough):
        async with walkthrough() as session:
            with pytest.raises(NotFoundException):
                await build_confirmation_service(session).confirm_investment(uuid.uuid4())


class TestCancellationWorkflow:
    @pytest.mark.asyncio
    async def test_cancel_leaves_funding_untouched(self, walkthrough):
        notifier = AsyncMock()
        async with walkthrough() as session:
            service = build_confirmation_service(session, notifier=notifier)
            result = await service.cancel_investment(INVESTMENT_ID)

        assert result.status == InvestmentStatus.CANCELLED
        opp = await _load(walkthrough, InvestmentOpportunity, OPPORTUNITY_ID)
        assert opp.current_funding == Decimal("0")
        assert opp.investors_count == 0
        assert await _assets(walkthrough) == []

        transaction = await _load(walkthrough, Transaction, TRANSACTION_ID)
        assert transaction.status == TransactionStatus.FAILED
        notifier.send_cancellation.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_cancel_after_confirm_rejected(self, walkthrough):
        async with walkthrough() as session:
            service = build_confirmation_service(session)
            await service.confirm_investment(INVESTMENT_ID)
            with pytest.raises(InvalidStateException, match="Only pending"):
                await service.cancel_investment(INVESTMENT_ID)

        stored = await _load(walkthrough, Investment, INVESTMENT_ID)
        assert stored.status == InvestmentStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_confirm_after_cancel_rejected(self, walkthrough):
        async with walkthrough() as session:
            service = build_confirmation_service(session)
            await service.cancel_investment(INVESTMENT_ID)
            with pytest.raises(InvalidStateException):
                await service.confirm_investment(INVESTMENT_ID)

        opp = await _load(walkthrough, InvestmentOpportunity, OPPORTUNITY_ID)
        assert opp.current_funding == Decimal("0")


# ────────────────────────────────────────────────────────────────────────────
# Concurrency (file-backed SQLite so every session has its own connection)
# ────────────────────────────────────────────────────────────────────────────


@pytest_asyncio.fixture()
async def file_session_factory(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'workflow.db'}")
    await create_schema(engine)
    factory = build_sessionmaker(engine)
    await insert_all(factory, make_user(), make_opportunity())
    yield factory
    await engine.dispose()


async def _confirm(session_factory, reference):
    async with session_factory() as session:
        return await build_confirmation_service(session).confirm_investment(reference)


class TestConcurrentConfirmations:
    @pytest.mark.asyncio
    async def test_no_lost_funding_updates(self, file_session_factory):
        ids = [uuid.uuid4() for _ in range(10)]
        await insert_all(
            file_session_factory,
            *(make_investment(id=i, amount=Decimal("100.00"), bonds=1) for i in ids),
        )

        results = await asyncio.gather(*(_confirm(file_session_factory, i) for i in ids))

        assert all(r.status == InvestmentStatus.CONFIRMED for r in results)
        opp = await _load(file_session_factory, InvestmentOpportunity, OPPORTUNITY_ID)
        assert opp.current_funding == Decimal("1000")
        assert opp.investors_count == 10
        assert opp.status == OpportunityStatus.CLOSED
        assert len(await _assets(file_session_factory)) == 10

    @pytest.mark.asyncio
    async def test_same_investment_confirmed_once(self, file_session_factory):
        await insert_all(file_session_factory, make_investment())

        outcomes = await asyncio.gather(
            _confirm(file_session_factory, INVESTMENT_ID),
            _confirm(file_session_factory, INVESTMENT_ID),
            return_exceptions=True,
        )

        winners = [o for o in outcomes if isinstance(o, Investment)]
        losers = [o for o in outcomes if isinstance(o, InvalidStateException)]
        assert len(winners) == 1
        assert len(losers) == 1

        opp = await _load(file_session_factory, InvestmentOpportunity, OPPORTUNITY_ID)
        assert opp.current_funding == Decimal("600")
        assert opp.investors_count == 1
        assert len(await _assets(file_session_factory)) == 1

    @pytest.mark.asyncio
    async def test_confirmations_stop_once_target_reached(self, file_session_factory):
        # Ten investments fill the 1000 target exactly; the eleventh must be turned away.
        ids = [uuid.uuid4() for _ in range(11)]
        await insert_all(
            file_session_factory,
            *(make_investment(id=i, amount=Decimal("100.00"), bonds=1) for i in ids),
        )

        outcomes = await asyncio.gather(
            *(_confirm(file_session_factory, i) for i in ids), return_exceptions=True
        )

        winners = [o for o in outcomes if isinstance(o, Investment)]
        losers = [o for o in outcomes if isinstance(o, InvalidStateException)]
        assert len(winners) == 10
        assert len(losers) == 1
        assert losers[0].message == "Investment opportunity is not active"

        opp = await _load(file_session_factory, InvestmentOpportunity, OPPORTUNITY_ID)
        assert opp.current_funding == Decimal("1000")
        assert opp.investors_count == 10
        assert opp.status == OpportunityStatus.CLOSED
        assert len(await _assets(file_session_factory)) == 10

        rejected = next(i for i, o in zip(ids, outcomes) if isinstance(o, InvalidStateException))
        left_over = await _load(file_session_factory, Investment, rejected)
        assert left_over.status == InvestmentStatus.PENDING
