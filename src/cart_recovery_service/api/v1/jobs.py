"""Maintenance job endpoints."""

from fastapi import APIRouter, Depends

from cart_recovery_service.api.deps import get_scheduler
from cart_recovery_service.services.scheduler import AbandonmentScheduler

router = APIRouter()


@router.post("/abandoned-carts/run")
async def run_abandoned_cart_job(
    scheduler: AbandonmentScheduler = Depends(get_scheduler),
) -> dict:
    """
    Run one abandonment pass now.

    For hosts without the Celery beat worker, an external cron can call this
    endpoint instead. Overlapping calls are skipped.
    """
    summary = await scheduler.run()
    return summary.to_dict()
