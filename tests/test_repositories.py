"""
Integration tests for the repositories against an in-memory SQLite database.

Covers the conditional UPDATEs the workflow relies on (status CAS, atomic
funding), the companion-transaction lookups and the profile wallet read.
"""

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from investment_platform.models.asset import Asset
from investment_platform.models.investment import Investment, InvestmentStatus
from investment_platform.models.opportunity import InvestmentOpportunity, OpportunityStatus
from investment_platform.models.transaction import Transaction, TransactionStatus, TransactionType
from investment_platform.models.user import UserProfile
from investment_platform.repositories.asset_repo import AssetRepository
from investment_platform.repositories.base import BaseRepository
from investment_platform.repositories.investment_repo import InvestmentRepository
from investment_platform.repositories.opportunity_repo import OpportunityRepository
from investment_platform.repositories.transaction_repo import TransactionRepository
from investment_platform.repositories.user_repo import ProfileRepository

from .conftest import (
    INVESTMENT_ID,
    INVESTOR_ID,
    INVESTOR_ID_2,
    OPPORTUNITY_ID,
    PROFILE_WALLET,
    TX_HASH,
    WALLET_ADDRESS,
    insert_all,
    make_investment,
    make_transaction,
)


class TestInvestmentRepository:
    @pytest.mark.asyncio
    async def test_transition_status_is_compare_and_swap(self, seeded):
        await insert_all(seeded, make_investment())
        async with seeded() as session:
            repo = InvestmentRepository(Investment, session)

            confirmed = await repo.transition_status(
                INVESTMENT_ID, InvestmentStatus.PENDING, InvestmentStatus.CONFIRMED
            )
            assert confirmed is not None
            assert confirmed.status == InvestmentStatus.CONFIRMED

            again = await repo.transition_status(
                INVESTMENT_ID, InvestmentStatus.PENDING, InvestmentStatus.CANCELLED
            )
            assert again is None
            assert (await repo.get_fresh(INVESTMENT_ID)).status == InvestmentStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_transition_unknown_investment_returns_none(self, seeded):
        async with seeded() as session:
            repo = InvestmentRepository(Investment, session)
            assert (
                await repo.transition_status(
                    uuid.uuid4(), InvestmentStatus.PENDING, InvestmentStatus.CONFIRMED
                )
                is None
            )

    @pytest.mark.asyncio
    async def test_get_fresh_sees_update_made_elsewhere(self, seeded):
        await insert_all(seeded, make_investment())
        async with seeded() as reader, seeded() as writer:
            stale = await InvestmentRepository(Investment, reader).get(INVESTMENT_ID)
            assert stale.status == InvestmentStatus.PENDING

            await InvestmentRepository(Investment, writer).transition_status(
                INVESTMENT_ID, InvestmentStatus.PENDING, InvestmentStatus.CANCELLED
            )

            fresh = await InvestmentRepository(Investment, reader).get_fresh(INVESTMENT_ID)
            assert fresh.status == InvestmentStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_set_mint_reference(self, seeded):
        await insert_all(seeded, make_investment())
        async with seeded() as session:
            repo = InvestmentRepository(Investment, session)
            updated = await repo.set_mint_reference(INVESTMENT_ID, TX_HASH, WALLET_ADDRESS)
            assert updated.mint_tx_hash == TX_HASH
            assert updated.wallet_address == WALLET_ADDRESS
            assert await repo.set_mint_reference(uuid.uuid4(), TX_HASH, WALLET_ADDRESS) is None


class TestTransactionRepository:
    @pytest.mark.asyncio
    async def test_find_by_investment_id(self, seeded):
        await insert_all(seeded, make_investment(), make_transaction())
        async with seeded() as session:
            found = await TransactionRepository(Transaction, session).find_by_investment_id(
                INVESTMENT_ID
            )
            assert found is not None
            assert found.amount == Decimal("-600.00")

    @pytest.mark.asyncio
    async def test_negated_amount_lookup_picks_most_recent(self, seeded):
        base = datetime(2025, 6, 1, tzinfo=timezone.utc)
        older = make_transaction(id=uuid.uuid4(), investment_id=None, created_at=base)
        newer = make_transaction(
            id=uuid.uuid4(), investment_id=None, created_at=base + timedelta(days=1)
        )
        other_amount = make_transaction(
            id=uuid.uuid4(),
            investment_id=None,
            amount=Decimal("-500.00"),
            created_at=base + timedelta(days=2),
        )
        other_investor = make_transaction(
            id=uuid.uuid4(),
            investor_id=INVESTOR_ID_2,
            investment_id=None,
            created_at=base + timedelta(days=3),
        )
        deposit = Transaction(
            investor_id=INVESTOR_ID,
            type=TransactionType.DEPOSIT,
            amount=Decimal("-600.00"),
            created_at=base + timedelta(days=4),
        )
        await insert_all(seeded, older, newer, other_amount, other_investor, deposit)

        async with seeded() as session:
            found = await TransactionRepository(
                Transaction, session
            ).find_latest_by_investor_and_negated_amount(INVESTOR_ID, Decimal("600.00"))
            assert found.id == newer.id

    @pytest.mark.asyncio
    async def test_negated_amount_lookup_no_match(self, seeded):
        async with seeded() as session:
            found = await TransactionRepository(
                Transaction, session
            ).find_latest_by_investor_and_negated_amount(INVESTOR_ID, Decimal("600.00"))
            assert found is None

    @pytest.mark.asyncio
    async def test_update_status(self, seeded):
        await insert_all(seeded, make_investment(), make_transaction())
        async with seeded() as session:
            repo = TransactionRepository(Transaction, session)
            tx = await repo.find_by_investment_id(INVESTMENT_ID)
            assert await repo.update_status(tx.id, TransactionStatus.COMPLETED) is True
            assert (await repo.get_fresh(tx.id)).status == TransactionStatus.COMPLETED
            assert await repo.update_status(uuid.uuid4(), TransactionStatus.FAILED) is False


class TestOpportunityRepository:
    @pytest.mark.asyncio
    async def test_apply_funding_increments_without_closing(self, seeded):
        async with seeded() as session:
            opp = await OpportunityRepository(InvestmentOpportunity, session).apply_funding(
                OPPORTUNITY_ID, Decimal("600.00")
            )
            assert opp.current_funding == Decimal("600")
            assert opp.investors_count == 1
            assert opp.status == OpportunityStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_apply_funding_closes_exactly_at_target(self, seeded):
        async with seeded() as session:
            repo = OpportunityRepository(InvestmentOpportunity, session)
            await repo.apply_funding(OPPORTUNITY_ID, Decimal("400.00"))
            opp = await repo.apply_funding(OPPORTUNITY_ID, Decimal("600.00"))
            assert opp.current_funding == Decimal("1000")
            assert opp.investors_count == 2
            assert opp.status == OpportunityStatus.CLOSED

    @pytest.mark.asyncio
    async def test_apply_funding_missing_opportunity(self, seeded):
        async with seeded() as session:
            repo = OpportunityRepository(InvestmentOpportunity, session)
            assert await repo.apply_funding(uuid.uuid4(), Decimal("1.00")) is None


class TestAssetRepository:
    @pytest.mark.asyncio
    async def test_one_asset_per_investment(self, seeded):
        await insert_all(seeded, make_investment())

        def _asset() -> Asset:
            return Asset(
                owner_id=INVESTOR_ID,
                opportunity_id=OPPORTUNITY_ID,
                investment_id=INVESTMENT_ID,
                name="Solar Farm Bond - Bond #33333333",
                quantity=6,
                value=Decimal("600.00"),
            )

        async with seeded() as session:
            repo = AssetRepository(Asset, session)
            created = await repo.create(_asset())
            assert created.id is not None
            with pytest.raises(IntegrityError):
                await repo.create(_asset())


class TestProfileRepository:
    @pytest.mark.asyncio
    async def test_wallet_from_profile(self, seeded):
        async with seeded() as session:
            repo = ProfileRepository(UserProfile, session)
            assert await repo.get_wallet_address(INVESTOR_ID) == PROFILE_WALLET

    @pytest.mark.asyncio
    async def test_no_profile(self, seeded):
        async with seeded() as session:
            repo = ProfileRepository(UserProfile, session)
            assert await repo.get_wallet_address(INVESTOR_ID_2) is None

    @pytest.mark.asyncio
    async def test_blank_wallet_treated_as_missing(self, seeded):
        await insert_all(seeded, UserProfile(user_id=INVESTOR_ID_2, wallet_address=""))
        async with seeded() as session:
            repo = ProfileRepository(UserProfile, session)
            assert await repo.get_wallet_address(INVESTOR_ID_2) is None


class TestBaseRepositoryCommit:
    @pytest.mark.asyncio
    async def test_operational_error_rolls_back(self, mock_db):
        mock_db.commit.side_effect = OperationalError("COMMIT", {}, Exception("gone"))
        repo = BaseRepository(Asset, mock_db)
        with pytest.raises(OperationalError):
            await repo.create(MagicMock())
        mock_db.rollback.assert_awaited_once()
        mock_db.refresh.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_create_adds_commits_refreshes(self, mock_db):
        repo = BaseRepository(Asset, mock_db)
        obj = MagicMock()
        assert await repo.create(obj) is obj
        mock_db.add.assert_called_once_with(obj)
        mock_db.commit.assert_awaited_once()
        mock_db.refresh.assert_awaited_once_with(obj)
