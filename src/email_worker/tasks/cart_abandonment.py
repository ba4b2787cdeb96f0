"""Abandoned cart processing tasks."""

import asyncio

import structlog
from celery import shared_task

from cart_recovery_service.config import Settings, get_settings
from cart_recovery_service.infrastructure.database.connection import (
    ensure_schema,
    get_async_engine,
    get_async_session_factory,
    get_db_session,
)
from cart_recovery_service.infrastructure.redis import CacheService, connect_redis
from cart_recovery_service.repositories.cart_repository import CartRepository
from cart_recovery_service.services.recovery_email import RecoveryEmailSender
from cart_recovery_service.services.scheduler import AbandonmentScheduler
from cart_recovery_service.services.settings_store import SettingsStore
from email_worker.services import build_email_sender

logger = structlog.get_logger()


async def run_abandoned_cart_pass(settings: Settings | None = None) -> dict:
    """
    Run one scheduler pass with its own engine and Redis client.

    Each task invocation gets a fresh event loop, so connections are opened
    and closed here rather than shared with the API process.
    """
    settings = settings or get_settings()
    engine = get_async_engine(settings)
    redis_client = await connect_redis(settings.redis_url)
    cache = CacheService(redis_client)

    try:
        await ensure_schema(engine)
        async with get_db_session(get_async_session_factory(engine)) as session:
            scheduler = AbandonmentScheduler(
                CartRepository(session, cache),
                SettingsStore(session, cache),
                RecoveryEmailSender(build_email_sender(settings), settings),
                cache,
                lock_ttl_seconds=settings.scheduler_lock_ttl_seconds,
            )
            summary = await scheduler.run()
    finally:
        if redis_client is not None:
            await redis_client.aclose()
        await engine.dispose()

    return summary.to_dict()


@shared_task
def process_abandoned_carts() -> dict:
    """
    Transition idle carts and send due recovery emails.

    Failed emails are not retried by Celery; the cart stays eligible and is
    picked up again by the next scheduled run.

    Returns:
        dict: Summary of the run
    """
    logger.info("Processing abandoned carts")
    return asyncio.run(run_abandoned_cart_pass())
