"""
Admin investment endpoints.

- GET   /admin/investments/{investment_id}          — Fetch one investment
- POST  /admin/investments/{reference}/confirm      — Confirm a pending investment
- POST  /admin/investments/{reference}/cancel       — Cancel a pending investment

``reference`` is an investment id or the id of a transaction that points at
an investment.  Authentication is handled upstream of this service.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from investment_platform.core.config import settings
from investment_platform.db.session import get_db
from investment_platform.models.asset import Asset
from investment_platform.models.investment import Investment
from investment_platform.models.opportunity import InvestmentOpportunity
from investment_platform.models.transaction import Transaction
from investment_platform.models.user import User, UserProfile
from investment_platform.repositories.asset_repo import AssetRepository
from investment_platform.repositories.investment_repo import InvestmentRepository
from investment_platform.repositories.opportunity_repo import OpportunityRepository
from investment_platform.repositories.transaction_repo import TransactionRepository
from investment_platform.repositories.user_repo import ProfileRepository, UserRepository
from investment_platform.schemas.common import ErrorResponse, ValidationErrorResponse
from investment_platform.schemas.investment import InvestmentResponse
from investment_platform.services.investment_confirmation import InvestmentConfirmationService

router = APIRouter()


# ── Dependency injection ──


def get_confirmation_service(
    request: Request, db: AsyncSession = Depends(get_db)
) -> InvestmentConfirmationService:
    """
    Build the confirmation service on the current request's DB session.

    The minting adapter and notification dispatcher are process-wide, built
    once in the application lifespan and kept on ``app.state``.
    """
    return InvestmentConfirmationService(
        investment_repo=InvestmentRepository(Investment, db),
        transaction_repo=TransactionRepository(Transaction, db),
        opportunity_repo=OpportunityRepository(InvestmentOpportunity, db),
        asset_repo=AssetRepository(Asset, db),
        profile_repo=ProfileRepository(UserProfile, db),
        user_repo=UserRepository(User, db),
        minting=getattr(request.app.state, "minting_adapter", None),
        notifier=getattr(request.app.state, "notifier", None),
    )


def _timeout_param(
    timeout: Optional[float] = Query(
        None,
        gt=0,
        le=300,
        description=(
            "Deadline in seconds for the whole call. Defaults to the server's "
            "CONFIRMATION_TIMEOUT_SECONDS."
        ),
    ),
) -> float:
    return timeout if timeout is not None else settings.CONFIRMATION_TIMEOUT_SECONDS


_WORKFLOW_ERRORS = {
    404: {"model": ErrorResponse, "description": "Investment or opportunity not found"},
    409: {"model": ErrorResponse, "description": "Investment is not pending / opportunity not active"},
    422: {"model": ValidationErrorResponse, "description": "Invalid path or query parameter"},
    500: {"model": ErrorResponse, "description": "Partial failure; manual reconciliation required"},
    503: {"model": ErrorResponse, "description": "Database circuit open"},
    504: {"model": ErrorResponse, "description": "Deadline exceeded before any write"},
}


# ── Endpoints ──


@router.get(
    "/{investment_id}",
    response_model=InvestmentResponse,
    summary="Get an investment",
    responses={404: {"model": ErrorResponse, "description": "Investment not found"}},
)
async def get_investment(
    investment_id: UUID,
    service: InvestmentConfirmationService = Depends(get_confirmation_service),
) -> InvestmentResponse:
    return await service.get_investment(investment_id)


@router.post(
    "/{reference}/confirm",
    response_model=InvestmentResponse,
    summary="Confirm a pending investment",
    description=(
        "Marks the investment confirmed, completes its transaction, credits the "
        "opportunity's funding and issues the bond asset. Minting the bond "
        "tokens and e-mailing the investor are attempted afterwards; their "
        "failure does not change the response."
    ),
    responses=_WORKFLOW_ERRORS,
)
async def confirm_investment(
    reference: UUID,
    timeout: float = Depends(_timeout_param),
    service: InvestmentConfirmationService = Depends(get_confirmation_service),
) -> InvestmentResponse:
    return await service.confirm_investment(reference, timeout=timeout)


@router.post(
    "/{reference}/cancel",
    response_model=InvestmentResponse,
    summary="Cancel a pending investment",
    description=(
        "Marks the investment cancelled and its transaction failed. Funding "
        "totals are not touched. The investor e-mail is best-effort."
    ),
    responses=_WORKFLOW_ERRORS,
)
async def cancel_investment(
    reference: UUID,
    timeout: float = Depends(_timeout_param),
    service: InvestmentConfirmationService = Depends(get_confirmation_service),
) -> InvestmentResponse:
    return await service.cancel_investment(reference, timeout=timeout)
