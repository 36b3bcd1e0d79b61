"""
V1 API router aggregation.

All versioned endpoint routers are mounted here under a common prefix.
The top-level ``main.py`` mounts this router at ``/api/v1``.
"""

from fastapi import APIRouter

from investment_platform.api.v1.endpoints import admin_investments, opportunities

api_router = APIRouter()

api_router.include_router(
    admin_investments.router, prefix="/admin/investments", tags=["Admin: Investments"]
)
api_router.include_router(opportunities.router, prefix="/opportunities", tags=["Opportunities"])
