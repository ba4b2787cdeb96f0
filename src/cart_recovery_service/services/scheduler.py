"""Abandonment scheduler.

One pass of the periodic job:

1. active carts idle past abandon_minutes become abandoned
2. active or abandoned carts idle past retention_days become expired
3. aggregate caches are dropped
4. if recovery emails are enabled, each step (ascending) is sent to the
   abandoned carts that reached its delay and have not had it yet
5. caches are dropped again

Recovered carts are never selected by either bulk transition, so a cart
that checked out always keeps its recovered status.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Protocol

import structlog
from sqlalchemy.exc import SQLAlchemyError

from cart_recovery_service.infrastructure.database.models import AbandonedCart, CartStatus
from cart_recovery_service.infrastructure.redis import CacheService
from cart_recovery_service.repositories.cart_repository import CartRepository
from cart_recovery_service.services.settings_store import CartRecoverySettings, SettingsStore
from shared.constants import SCHEDULER_LOCK_KEY
from shared.timeutils import utcnow

logger = structlog.get_logger()


class RecoverySender(Protocol):
    async def send(self, cart: AbandonedCart, step: int) -> bool: ...


@dataclass
class RunSummary:
    """Outcome of one scheduler pass."""

    skipped: bool = False
    abandoned: int = 0
    expired: int = 0
    emails_sent: int = 0
    emails_failed: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class AbandonmentScheduler:
    """Transitions cart lifecycles and dispatches recovery emails."""

    def __init__(
        self,
        repository: CartRepository,
        settings_store: SettingsStore,
        sender: RecoverySender,
        cache: CacheService,
        lock_ttl_seconds: int = 300,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repository = repository
        self.settings_store = settings_store
        self.sender = sender
        self.cache = cache
        self.lock_ttl_seconds = lock_ttl_seconds
        self.clock = clock

    async def run(self, now: datetime | None = None) -> RunSummary:
        """Run one pass unless another pass holds the lock."""
        if not await self.cache.acquire_lock(SCHEDULER_LOCK_KEY, self.lock_ttl_seconds):
            logger.info("Abandoned cart run skipped, another run in progress")
            return RunSummary(skipped=True)

        try:
            summary = await self._process(now or self.clock())
        finally:
            await self.cache.release_lock(SCHEDULER_LOCK_KEY)

        logger.info("Abandoned cart run finished", **summary.to_dict())
        return summary

    async def _process(self, now: datetime) -> RunSummary:
        settings = await self.settings_store.get()
        summary = RunSummary()

        abandon_cutoff = now - timedelta(minutes=settings.abandon_minutes)
        retention_cutoff = now - timedelta(days=settings.retention_days)

        try:
            summary.abandoned = await self.repository.bulk_transition(
                [CartStatus.ACTIVE.value],
                abandon_cutoff,
                CartStatus.ABANDONED.value,
                now,
                timestamp_field="abandoned_at",
            )
        except SQLAlchemyError:
            await self.repository.rollback()
            logger.exception("Abandonment sweep failed")
            summary.errors.append("abandon")

        try:
            summary.expired = await self.repository.bulk_transition(
                [CartStatus.ACTIVE.value, CartStatus.ABANDONED.value],
                retention_cutoff,
                CartStatus.EXPIRED.value,
                now,
            )
        except SQLAlchemyError:
            await self.repository.rollback()
            logger.exception("Expiry sweep failed")
            summary.errors.append("expire")

        await self.repository.invalidate_all()

        if not settings.enable_emails:
            return summary

        await self._send_recovery_emails(settings, now, summary)
        await self.repository.invalidate_all()
        return summary

    async def _send_recovery_emails(
        self, settings: CartRecoverySettings, now: datetime, summary: RunSummary
    ) -> None:
        for step in sorted(settings.email_steps):
            cutoff = now - timedelta(hours=settings.email_steps[step])
            try:
                candidates = await self.repository.email_candidates(step, cutoff)
            except SQLAlchemyError:
                await self.repository.rollback()
                logger.exception("Email candidate query failed", step=step)
                summary.errors.append(f"candidates:{step}")
                continue

            for cart in candidates:
                if await self._send_one(cart, step, now):
                    summary.emails_sent += 1
                else:
                    summary.emails_failed += 1

    async def _send_one(self, cart: AbandonedCart, step: int, now: datetime) -> bool:
        # A failed send leaves the watermark alone so the next run retries
        try:
            sent = await self.sender.send(cart, step)
        except Exception:
            logger.exception("Recovery email raised", cart_token=cart.cart_token, step=step)
            return False
        if not sent:
            return False

        try:
            await self.repository.record_email_sent(cart.id, step, now)
        except SQLAlchemyError:
            await self.repository.rollback()
            logger.exception("Email watermark update failed", cart_id=cart.id, step=step)
        return True
