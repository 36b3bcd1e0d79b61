"""
Opportunity endpoints.

- GET  /opportunities/{opportunity_id}  — Funding state of one opportunity
"""

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from investment_platform.db.session import get_db
from investment_platform.models.opportunity import InvestmentOpportunity
from investment_platform.repositories.opportunity_repo import OpportunityRepository
from investment_platform.schemas.common import ErrorResponse
from investment_platform.schemas.opportunity import OpportunityResponse
from investment_platform.services.funding_ledger import FundingLedger

router = APIRouter()


def get_funding_ledger(db: AsyncSession = Depends(get_db)) -> FundingLedger:
    return FundingLedger(OpportunityRepository(InvestmentOpportunity, db))


@router.get(
    "/{opportunity_id}",
    response_model=OpportunityResponse,
    summary="Get an opportunity's funding state",
    responses={404: {"model": ErrorResponse, "description": "Opportunity not found"}},
)
async def get_opportunity(
    opportunity_id: UUID,
    ledger: FundingLedger = Depends(get_funding_ledger),
) -> OpportunityResponse:
    return await ledger.get_funding(opportunity_id)
