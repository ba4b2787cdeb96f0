"""API v1 router that aggregates all endpoint routers."""

from fastapi import APIRouter

from cart_recovery_service.api.v1 import (
    cart_settings,
    carts,
    health,
    jobs,
    reports,
)

api_router = APIRouter()

# Include all routers
api_router.include_router(
    health.router,
    tags=["Health"],
)

api_router.include_router(
    carts.router,
    prefix="/carts",
    tags=["Carts"],
)

api_router.include_router(
    reports.router,
    prefix="/reports",
    tags=["Reports"],
)

api_router.include_router(
    cart_settings.router,
    prefix="/settings",
    tags=["Settings"],
)

api_router.include_router(
    jobs.router,
    prefix="/jobs",
    tags=["Jobs"],
)
