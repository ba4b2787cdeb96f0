"""Cart recovery reporting endpoints."""

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from cart_recovery_service.api.deps import get_reporting_service
from cart_recovery_service.services.reporting import ReportingService
from shared.constants import DEFAULT_RECENT_CARTS_LIMIT, MAX_RECENT_CARTS_LIMIT

router = APIRouter()


class CartStatsResponse(BaseModel):
    """Headline recovery numbers."""

    abandoned_count: int
    recovered_count: int
    recovery_rate: float
    recovered_revenue: float


class RecentCartsResponse(BaseModel):
    carts: list[dict[str, Any]]
    total_count: int
    limit: int


@router.get("/stats", response_model=CartStatsResponse)
async def get_cart_stats(
    reporting: ReportingService = Depends(get_reporting_service),
) -> CartStatsResponse:
    """
    Abandoned and recovered cart counts, recovery rate and recovered revenue.

    The recovery rate is recovered / (abandoned + recovered) as a percentage.
    """
    return CartStatsResponse(**await reporting.stats())


@router.get("/recent", response_model=RecentCartsResponse)
async def get_recent_carts(
    limit: Annotated[int, Query(ge=1, le=MAX_RECENT_CARTS_LIMIT)] = DEFAULT_RECENT_CARTS_LIMIT,
    reporting: ReportingService = Depends(get_reporting_service),
) -> RecentCartsResponse:
    """Most recently active carts with their display status and line items."""
    carts = await reporting.list_recent(limit)
    return RecentCartsResponse(carts=carts, total_count=len(carts), limit=limit)
