"""
Investment confirmation service: the admin confirm/cancel workflow.

Confirming a pending investment touches five independently stored records
and one external chain call, in this order:

1. investment status  PENDING → CONFIRMED   (compare-and-swap)
2. companion transaction → COMPLETED
3. opportunity funding totals                (funding ledger, one atomic UPDATE)
4. asset record for the bonds
5. on-chain mint of the bond tokens          best-effort
6. confirmation e-mail                       best-effort

Steps 1-3 run under a per-opportunity lock, after re-reading the
opportunity and checking it is still ACTIVE, so no confirmation lands on an
opportunity that an earlier one has just closed.  The lock is per process.

Steps 1-4 are load-bearing.  The store gives no cross-record transaction, so a
failure in steps 2-4 leaves the investment CONFIRMED with the earlier writes
in place; it is logged with ``reconciliation_required`` and surfaced as
:class:`LedgerFailure`.  Steps 5-6 go through :meth:`run_best_effort`, the
only place in the workflow that swallows errors.

Cancelling runs the same resolution, flips PENDING → CANCELLED, marks the
companion transaction FAILED and sends a best-effort e-mail.

Timeouts: the read-only resolution phase runs under the caller's deadline and
fails with :class:`DeadlineExceededException` before anything is written.
Once the status has flipped, load-bearing steps run to completion, and the
best-effort steps only get whatever budget is left.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Tuple, TypeVar
from uuid import UUID

from investment_platform.core.exceptions import (
    DeadlineExceededException,
    InvalidStateException,
    LedgerFailure,
    NotFoundException,
)
from investment_platform.core.resilience import Deadline, KeyedLocks, opportunity_locks
from investment_platform.models.asset import Asset, AssetType
from investment_platform.models.investment import Investment, InvestmentStatus
from investment_platform.models.opportunity import InvestmentOpportunity, OpportunityStatus
from investment_platform.models.transaction import Transaction, TransactionStatus
from investment_platform.repositories.asset_repo import AssetRepository
from investment_platform.repositories.investment_repo import InvestmentRepository
from investment_platform.repositories.opportunity_repo import OpportunityRepository
from investment_platform.repositories.transaction_repo import TransactionRepository
from investment_platform.repositories.user_repo import ProfileRepository, UserRepository
from investment_platform.services.funding_ledger import FundingLedger
from investment_platform.services.minting import MintingAdapter, MintingError, MintResult
from investment_platform.services.notifications import (
    InvestmentEmailDetails,
    NotificationDispatcher,
    NotificationError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

NOT_PENDING_MESSAGE = "Investment is not in pending status"
NOT_ACTIVE_MESSAGE = "Investment opportunity is not active"
CANCEL_NOT_PENDING_MESSAGE = "Only pending investments can be cancelled"
FALLBACK_OPPORTUNITY_TITLE = "Investment Opportunity"


class InvestmentConfirmationService:
    """
    Orchestrates confirmation and cancellation of investments.

    ``minting`` and ``notifier`` are optional: ``None`` means the feature is
    disabled and the corresponding step is skipped with an INFO log line.
    """

    def __init__(
        self,
        investment_repo: InvestmentRepository,
        transaction_repo: TransactionRepository,
        opportunity_repo: OpportunityRepository,
        asset_repo: AssetRepository,
        profile_repo: ProfileRepository,
        user_repo: UserRepository,
        minting: Optional[MintingAdapter] = None,
        notifier: Optional[NotificationDispatcher] = None,
        ledger: Optional[FundingLedger] = None,
        locks: Optional[KeyedLocks] = None,
    ):
        self._investment_repo = investment_repo
        self._transaction_repo = transaction_repo
        self._opportunity_repo = opportunity_repo
        self._asset_repo = asset_repo
        self._profile_repo = profile_repo
        self._user_repo = user_repo
        self._minting = minting
        self._notifier = notifier
        self._ledger = ledger or FundingLedger(opportunity_repo)
        self._locks = locks or opportunity_locks

    # ── Public operations ──

    async def get_investment(self, investment_id: UUID) -> Investment:
        """Return a single investment by id → 404 if not found."""
        investment = await self._investment_repo.get(investment_id)
        if investment is None:
            raise NotFoundException("Investment", investment_id)
        return investment

    async def confirm_investment(
        self, reference: UUID, timeout: Optional[float] = None
    ) -> Investment:
        """
        Confirm the investment identified by ``reference``.

        ``reference`` is an investment id, or the id of a transaction that
        points at one.  ``timeout`` (seconds) bounds the call; ``None`` means
        no bound.

        Raises:
            NotFoundException: nothing resolves, or the opportunity is missing.
            InvalidStateException: the investment is not pending, or the
                opportunity is not active (including one closed by a
                confirmation that ran first).  Nothing has been written.
            DeadlineExceededException: resolution did not finish in time.
                Nothing has been written.
            LedgerFailure: a write after the status change failed.
        """
        deadline = Deadline(timeout)
        investment, opportunity, via_transaction = await self._within_deadline(
            deadline, "Confirm investment", self._load_confirmable(reference)
        )

        # Funding writes for one opportunity run one at a time, and the status
        # is read again once the lock is held: a confirm that was waiting
        # behind the one that closed the opportunity must be rejected.
        async with self._locks(opportunity.id):
            opportunity = await self._opportunity_repo.get_fresh(opportunity.id)
            if opportunity is None:
                raise NotFoundException("InvestmentOpportunity", investment.opportunity_id)
            if opportunity.status != OpportunityStatus.ACTIVE:
                raise InvalidStateException(NOT_ACTIVE_MESSAGE)

            confirmed = await self._investment_repo.transition_status(
                investment.id, InvestmentStatus.PENDING, InvestmentStatus.CONFIRMED
            )
            if confirmed is None:
                # Another confirm/cancel got there between our read and our write.
                raise InvalidStateException(NOT_PENDING_MESSAGE)
            logger.info(
                "Investment %s confirmed (%s into opportunity %s)",
                confirmed.id,
                confirmed.amount,
                confirmed.opportunity_id,
                extra=self._context(confirmed.id, "status"),
            )

            transaction = await self._run_load_bearing(
                confirmed.id,
                "transaction",
                self._settle_transaction,
                confirmed,
                via_transaction,
                TransactionStatus.COMPLETED,
            )
            await self._run_load_bearing(
                confirmed.id,
                "funding",
                self._ledger.apply_confirmed_investment,
                confirmed.opportunity_id,
                confirmed.amount,
            )

        await self._run_load_bearing(
            confirmed.id, "asset", self._issue_asset, confirmed, opportunity
        )

        mint = await self.run_best_effort(
            "mint",
            self._mint,
            confirmed,
            opportunity,
            investment_id=confirmed.id,
            deadline=deadline,
        )
        final = confirmed
        if mint is not None:
            # The tokens exist on chain now; record them regardless of the deadline.
            recorded = await self.run_best_effort(
                "mint_reference",
                self._investment_repo.set_mint_reference,
                confirmed.id,
                mint.tx_hash,
                mint.wallet_address,
                investment_id=confirmed.id,
            )
            final = recorded or confirmed

        await self.run_best_effort(
            "notify",
            self._notify_confirmed,
            final,
            opportunity,
            transaction,
            mint,
            investment_id=confirmed.id,
            deadline=deadline,
        )
        return final

    async def cancel_investment(
        self, reference: UUID, timeout: Optional[float] = None
    ) -> Investment:
        """
        Cancel the pending investment identified by ``reference``.

        Funding, assets and the chain are never touched.  Raises the same
        errors as :meth:`confirm_investment`, except that the opportunity's
        state is not checked.
        """
        deadline = Deadline(timeout)
        investment, via_transaction = await self._within_deadline(
            deadline, "Cancel investment", self._load_cancellable(reference)
        )

        cancelled = await self._investment_repo.transition_status(
            investment.id, InvestmentStatus.PENDING, InvestmentStatus.CANCELLED
        )
        if cancelled is None:
            raise InvalidStateException(CANCEL_NOT_PENDING_MESSAGE)
        logger.info(
            "Investment %s cancelled", cancelled.id, extra=self._context(cancelled.id, "status")
        )

        transaction = await self._run_load_bearing(
            cancelled.id,
            "transaction",
            self._settle_transaction,
            cancelled,
            via_transaction,
            TransactionStatus.FAILED,
        )

        await self.run_best_effort(
            "notify",
            self._notify_cancelled,
            cancelled,
            transaction,
            investment_id=cancelled.id,
            deadline=deadline,
        )
        return cancelled

    async def run_best_effort(
        self,
        step: str,
        fn: Callable[..., Awaitable[T]],
        *args: Any,
        investment_id: Optional[UUID] = None,
        deadline: Optional[Deadline] = None,
    ) -> Optional[T]:
        """
        Await ``fn(*args)`` and return its result, or ``None`` on any failure.

        Adapter failures (minting, e-mail) are logged at WARNING with their
        ``error_kind``; anything else at ERROR with a traceback.  With a
        ``deadline`` the step gets only the remaining budget, and is skipped
        outright once that budget is spent.
        """
        context = self._context(investment_id, step)
        if deadline is not None and deadline.expired:
            logger.warning(
                "Skipping '%s' for investment %s: deadline exhausted",
                step,
                investment_id,
                extra={**context, "error_kind": "deadline_exhausted"},
            )
            return None

        try:
            if deadline is None:
                return await fn(*args)
            return await deadline.bound(fn(*args))
        except asyncio.TimeoutError:
            logger.warning(
                "'%s' for investment %s did not finish within the deadline",
                step,
                investment_id,
                extra={**context, "error_kind": "deadline_exceeded"},
            )
        except (MintingError, NotificationError) as exc:
            logger.warning(
                "'%s' for investment %s failed (%s): %s",
                step,
                investment_id,
                exc.kind,
                exc,
                extra={**context, "error_kind": exc.kind},
            )
        except Exception:
            logger.exception(
                "'%s' for investment %s failed unexpectedly",
                step,
                investment_id,
                extra={**context, "error_kind": "unexpected"},
            )
        return None

    # ── Resolution & preconditions (read-only) ──

    async def _within_deadline(
        self, deadline: Deadline, operation: str, awaitable: Awaitable[T]
    ) -> T:
        try:
            return await deadline.bound(awaitable)
        except asyncio.TimeoutError:
            if not deadline.expired:
                raise
            raise DeadlineExceededException(operation, deadline.timeout or 0.0) from None

    async def _resolve(self, reference: UUID) -> Tuple[Investment, Optional[Transaction]]:
        """Find the investment by its own id, falling back to a transaction id."""
        investment = await self._investment_repo.get(reference)
        if investment is not None:
            return investment, None

        transaction = await self._transaction_repo.get(reference)
        if transaction is not None and transaction.investment_id is not None:
            investment = await self._investment_repo.get(transaction.investment_id)
            if investment is not None:
                return investment, transaction

        raise NotFoundException("Investment", reference)

    async def _load_confirmable(
        self, reference: UUID
    ) -> Tuple[Investment, InvestmentOpportunity, Optional[Transaction]]:
        investment, via_transaction = await self._resolve(reference)
        if investment.status != InvestmentStatus.PENDING:
            raise InvalidStateException(NOT_PENDING_MESSAGE)

        opportunity = await self._opportunity_repo.get(investment.opportunity_id)
        if opportunity is None:
            raise NotFoundException("InvestmentOpportunity", investment.opportunity_id)
        if opportunity.status != OpportunityStatus.ACTIVE:
            raise InvalidStateException(NOT_ACTIVE_MESSAGE)
        return investment, opportunity, via_transaction

    async def _load_cancellable(
        self, reference: UUID
    ) -> Tuple[Investment, Optional[Transaction]]:
        investment, via_transaction = await self._resolve(reference)
        if investment.status != InvestmentStatus.PENDING:
            raise InvalidStateException(CANCEL_NOT_PENDING_MESSAGE)
        return investment, via_transaction

    # ── Load-bearing steps ──

    async def _run_load_bearing(
        self, investment_id: UUID, step: str, fn: Callable[..., Awaitable[T]], *args: Any
    ) -> T:
        try:
            return await fn(*args)
        except Exception as exc:
            logger.error(
                "'%s' failed after investment %s changed status; manual reconciliation required",
                step,
                investment_id,
                exc_info=True,
                extra={
                    **self._context(investment_id, step),
                    "reconciliation_required": True,
                },
            )
            raise LedgerFailure(investment_id, step, str(exc) or type(exc).__name__) from exc

    async def _find_companion_transaction(self, investment: Investment) -> Optional[Transaction]:
        transaction = await self._transaction_repo.find_by_investment_id(investment.id)
        if transaction is None:
            transaction = await self._transaction_repo.find_latest_by_investor_and_negated_amount(
                investment.investor_id, investment.amount
            )
        return transaction

    async def _settle_transaction(
        self,
        investment: Investment,
        via_transaction: Optional[Transaction],
        status: TransactionStatus,
    ) -> Optional[Transaction]:
        transaction = via_transaction or await self._find_companion_transaction(investment)
        if transaction is None:
            logger.warning(
                "No companion transaction found for investment %s",
                investment.id,
                extra=self._context(investment.id, "transaction"),
            )
            return None

        if not await self._transaction_repo.update_status(transaction.id, status):
            raise NotFoundException("Transaction", transaction.id)
        logger.info(
            "Transaction %s marked %s",
            transaction.id,
            status.value,
            extra={
                **self._context(investment.id, "transaction"),
                "transaction_id": str(transaction.id),
            },
        )
        return transaction

    async def _issue_asset(
        self, investment: Investment, opportunity: InvestmentOpportunity
    ) -> Asset:
        asset = Asset(
            owner_id=investment.investor_id,
            opportunity_id=opportunity.id,
            investment_id=investment.id,
            name=f"{opportunity.title} - Bond #{str(investment.id)[:8]}",
            type=AssetType.BOND,
            quantity=investment.bond_count,
            value=investment.amount,
        )
        return await self._asset_repo.create(asset)

    # ── Best-effort steps ──

    async def _mint(
        self, investment: Investment, opportunity: InvestmentOpportunity
    ) -> Optional[MintResult]:
        context = self._context(investment.id, "mint")
        if self._minting is None:
            logger.info("Minting disabled; skipping investment %s", investment.id, extra=context)
            return None
        if not opportunity.contract_address:
            logger.info(
                "Opportunity %s has no bond contract; skipping mint",
                opportunity.id,
                extra=context,
            )
            return None

        wallet = investment.wallet_address or await self._profile_repo.get_wallet_address(
            investment.investor_id
        )
        if not wallet:
            logger.info(
                "Investor %s has no wallet address; skipping mint",
                investment.investor_id,
                extra=context,
            )
            return None

        result = await self._minting.mint(
            opportunity.contract_address, wallet, investment.bond_count
        )
        logger.info(
            "Minted %d bonds for investment %s in %s",
            investment.bond_count,
            investment.id,
            result.tx_hash,
            extra={**context, "tx_hash": result.tx_hash},
        )
        return result

    async def _notify_confirmed(
        self,
        investment: Investment,
        opportunity: InvestmentOpportunity,
        transaction: Optional[Transaction],
        mint: Optional[MintResult],
    ) -> None:
        if self._notifier is None:
            logger.info("E-mail disabled; no confirmation sent for %s", investment.id)
            return
        user = await self._user_repo.get(investment.investor_id)
        if user is None:
            logger.warning(
                "Investor %s not found; no confirmation e-mail sent",
                investment.investor_id,
                extra=self._context(investment.id, "notify"),
            )
            return

        details = self._email_details(investment, opportunity.title, transaction, user.name)
        if mint is not None:
            details.mint_tx_hash = mint.tx_hash
            details.contract_address = mint.contract_address
            details.wallet_address = mint.wallet_address
            details.explorer_url = mint.explorer_url
        await self._notifier.send_confirmation(user.email, details)

    async def _notify_cancelled(
        self, investment: Investment, transaction: Optional[Transaction]
    ) -> None:
        if self._notifier is None:
            logger.info("E-mail disabled; no cancellation sent for %s", investment.id)
            return
        user = await self._user_repo.get(investment.investor_id)
        if user is None:
            logger.warning(
                "Investor %s not found; no cancellation e-mail sent",
                investment.investor_id,
                extra=self._context(investment.id, "notify"),
            )
            return

        opportunity = await self._opportunity_repo.get(investment.opportunity_id)
        title = opportunity.title if opportunity is not None else FALLBACK_OPPORTUNITY_TITLE
        details = self._email_details(investment, title, transaction, user.name)
        await self._notifier.send_cancellation(user.email, details)

    # ── Helpers ──

    @staticmethod
    def _email_details(
        investment: Investment,
        opportunity_title: str,
        transaction: Optional[Transaction],
        investor_name: str,
    ) -> InvestmentEmailDetails:
        payment_method = investment.payment_method or (
            transaction.payment_method if transaction is not None else None
        )
        return InvestmentEmailDetails(
            investor_name=investor_name,
            investment_id=str(investment.id),
            amount=investment.amount,
            bonds=investment.bond_count,
            opportunity_title=opportunity_title,
            status=investment.status.value,
            date=investment.updated_at,
            transaction_id=str(transaction.id) if transaction is not None else None,
            payment_method=payment_method.value if payment_method else None,
        )

    @staticmethod
    def _context(investment_id: Optional[UUID], step: str) -> dict:
        return {
            "investment_id": str(investment_id) if investment_id is not None else None,
            "step": step,
        }
