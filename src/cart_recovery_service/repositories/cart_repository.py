"""Persistence for cart records.

Every write to abandoned_carts goes through CartRepository, which commits and
then drops the affected cache entries itself so callers never have to
remember which keys a mutation touches.
"""

from datetime import datetime
from typing import Any, Iterable

import structlog
from sqlalchemy import case, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from cart_recovery_service.infrastructure.database.models import (
    AbandonedCart,
    CartOrderLink,
    CartStatus,
)
from cart_recovery_service.infrastructure.redis import CacheService
from shared.constants import (
    AGGREGATE_CACHE_TTL,
    CACHE_PREFIX,
    CART_STATS_CACHE_KEY,
    CART_TOKEN_CACHE_KEY,
    CART_TOKEN_CACHE_TTL,
    EMAIL_CANDIDATES_CACHE_KEY,
    EMAIL_CANDIDATES_CACHE_TTL,
    RECENT_CARTS_CACHE_KEY,
)

logger = structlog.get_logger()

TERMINAL_STATUSES = (CartStatus.RECOVERED.value, CartStatus.EXPIRED.value)
RECOVERABLE_STATUSES = (CartStatus.ACTIVE.value, CartStatus.ABANDONED.value)

# Columns a tracker upsert may write
SNAPSHOT_FIELDS = frozenset(
    {
        "restore_key",
        "user_id",
        "email",
        "phone",
        "cart_items",
        "currency",
        "subtotal",
        "total",
        "status",
        "last_activity_at",
    }
)

_AGGREGATE_PREFIXES = (
    RECENT_CARTS_CACHE_KEY.split("{")[0],
    EMAIL_CANDIDATES_CACHE_KEY.split("{")[0],
)


class CartNotFoundError(LookupError):
    """A cart row written in this session could not be read back."""


class CartRepository:
    """Repository for AbandonedCart rows."""

    def __init__(self, session: AsyncSession, cache: CacheService):
        self.session = session
        self.cache = cache

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def find_by_token(self, token: str) -> AbandonedCart | None:
        query = (
            select(AbandonedCart)
            .where(AbandonedCart.cart_token == token)
            .execution_options(populate_existing=True)
        )
        return (await self.session.scalars(query)).first()

    async def find_by_restore_key(self, restore_key: str) -> AbandonedCart | None:
        query = (
            select(AbandonedCart)
            .where(AbandonedCart.restore_key == restore_key)
            .execution_options(populate_existing=True)
        )
        return (await self.session.scalars(query)).first()

    async def lookup(self, token: str) -> dict[str, Any] | None:
        """
        Cached summary of the record for a token.

        Returns:
            dict with id, email and status, or None if no record exists
        """
        key = CART_TOKEN_CACHE_KEY.format(token=token)
        cached = await self.cache.get(key)
        if cached is not None:
            return cached or None

        query = select(AbandonedCart.id, AbandonedCart.email, AbandonedCart.status).where(
            AbandonedCart.cart_token == token
        )
        row = (await self.session.execute(query)).first()
        summary = {"id": row.id, "email": row.email, "status": row.status} if row else {}
        await self.cache.set(key, summary, ttl_seconds=CART_TOKEN_CACHE_TTL)
        return summary or None

    async def email_candidates(self, step: int, cutoff: datetime) -> list[AbandonedCart]:
        """
        Abandoned carts due for a recovery email step.

        The candidate id list is cached briefly; rows are always reloaded and
        re-checked against the watermark before being returned.
        """
        key = EMAIL_CANDIDATES_CACHE_KEY.format(step=step)
        ids = await self.cache.get(key)
        if ids is None:
            query = (
                select(AbandonedCart.id)
                .where(
                    AbandonedCart.status == CartStatus.ABANDONED.value,
                    AbandonedCart.abandoned_at.is_not(None),
                    AbandonedCart.abandoned_at < cutoff,
                    AbandonedCart.last_email_step < step,
                    AbandonedCart.email.is_not(None),
                    AbandonedCart.email != "",
                )
                .order_by(AbandonedCart.id)
            )
            ids = list((await self.session.scalars(query)).all())
            await self.cache.set(key, ids, ttl_seconds=EMAIL_CANDIDATES_CACHE_TTL)

        if not ids:
            return []

        query = (
            select(AbandonedCart)
            .where(
                AbandonedCart.id.in_(ids),
                AbandonedCart.status == CartStatus.ABANDONED.value,
                AbandonedCart.last_email_step < step,
            )
            .order_by(AbandonedCart.id)
            .execution_options(populate_existing=True)
        )
        carts = list((await self.session.scalars(query)).all())
        # Detached so a rollback while sending does not expire them
        for cart in carts:
            self.session.expunge(cart)
        return carts

    async def list_recent(self, limit: int) -> list[dict[str, Any]]:
        """Most recently active carts, newest first."""
        key = RECENT_CARTS_CACHE_KEY.format(limit=limit)
        cached = await self.cache.get(key)
        if cached is not None:
            return cached

        query = (
            select(AbandonedCart)
            .order_by(AbandonedCart.last_activity_at.desc(), AbandonedCart.id.desc())
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        rows = [cart.to_dict() for cart in (await self.session.scalars(query)).all()]
        await self.cache.set(key, rows, ttl_seconds=AGGREGATE_CACHE_TTL)
        return rows

    async def stats(self) -> dict[str, Any]:
        """Counts of abandoned and recovered carts plus recovered revenue."""
        cached = await self.cache.get(CART_STATS_CACHE_KEY)
        if cached is not None:
            return cached

        query = select(
            func.count(case((AbandonedCart.status == CartStatus.ABANDONED.value, 1))),
            func.count(case((AbandonedCart.status == CartStatus.RECOVERED.value, 1))),
            func.coalesce(
                func.sum(
                    case(
                        (AbandonedCart.status == CartStatus.RECOVERED.value, AbandonedCart.total),
                        else_=0,
                    )
                ),
                0,
            ),
        )
        abandoned, recovered, revenue = (await self.session.execute(query)).one()
        result = {
            "abandoned_count": int(abandoned or 0),
            "recovered_count": int(recovered or 0),
            "recovered_revenue": round(float(revenue or 0), 2),
        }
        await self.cache.set(CART_STATS_CACHE_KEY, result, ttl_seconds=AGGREGATE_CACHE_TTL)
        return result

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def upsert(self, token: str, fields: dict[str, Any], now: datetime) -> AbandonedCart:
        """
        Insert or refresh the snapshot for a cart token.

        A recovered or expired record keeps its status; only the snapshot
        columns are refreshed.
        """
        values = {k: v for k, v in fields.items() if k in SNAPSHOT_FIELDS}
        existing = await self.lookup(token)

        if existing is None:
            try:
                self.session.add(
                    AbandonedCart(
                        cart_token=token,
                        **{
                            "status": CartStatus.ACTIVE.value,
                            "last_email_step": 0,
                            **values,
                        },
                        created_at=now,
                        updated_at=now,
                    )
                )
                await self.session.commit()
            except IntegrityError:
                # Another request inserted the same token first
                await self.session.rollback()
                logger.info("Cart insert raced, updating instead", cart_token=token)
                await self._update_snapshot(token, values, now)
        else:
            await self._update_snapshot(token, values, now)

        await self.invalidate(token)
        cart = await self.find_by_token(token)
        if cart is None:
            # Deleted between the write and the read back
            raise CartNotFoundError(f"Cart {token} vanished after upsert")
        return cart

    async def _update_snapshot(self, token: str, values: dict[str, Any], now: datetime) -> None:
        values = dict(values)
        if "status" in values:
            values["status"] = case(
                (AbandonedCart.status.in_(TERMINAL_STATUSES), AbandonedCart.status),
                else_=values["status"],
            )
        stmt = (
            update(AbandonedCart)
            .where(AbandonedCart.cart_token == token)
            .values(**values, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(stmt)
        await self.session.commit()

    async def bulk_transition(
        self,
        from_statuses: Iterable[str],
        cutoff: datetime,
        new_status: str,
        now: datetime,
        timestamp_field: str | None = None,
    ) -> int:
        """
        Move every row in from_statuses whose last activity is older than
        cutoff to new_status in a single UPDATE.

        Returns:
            int: Number of rows transitioned
        """
        values: dict[str, Any] = {"status": new_status, "updated_at": now}
        if timestamp_field:
            values[timestamp_field] = now

        stmt = (
            update(AbandonedCart)
            .where(
                AbandonedCart.status.in_(list(from_statuses)),
                AbandonedCart.last_activity_at.is_not(None),
                AbandonedCart.last_activity_at < cutoff,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        await self.session.commit()
        await self.invalidate_all()
        return result.rowcount or 0

    async def mark_recovered(self, token: str, order_id: int, now: datetime) -> bool:
        """Mark an active or abandoned cart as recovered by an order."""
        stmt = (
            update(AbandonedCart)
            .where(
                AbandonedCart.cart_token == token,
                AbandonedCart.status.in_(RECOVERABLE_STATUSES),
            )
            .values(
                status=CartStatus.RECOVERED.value,
                recovered_at=now,
                order_id=order_id,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        await self.session.commit()
        await self.invalidate(token)
        return bool(result.rowcount)

    async def tag_order(self, order_id: int, token: str, now: datetime) -> None:
        """Record which cart token an order originated from."""
        self.session.add(CartOrderLink(order_id=order_id, cart_token=token, created_at=now))
        await self.session.commit()

    async def record_email_sent(self, cart_id: int, step: int, now: datetime) -> bool:
        """
        Advance the email watermark to step.

        The update only applies while the stored watermark is below step, so
        the watermark never moves backwards.
        """
        stmt = (
            update(AbandonedCart)
            .where(AbandonedCart.id == cart_id, AbandonedCart.last_email_step < step)
            .values(last_email_step=step, last_email_sent_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        await self.session.commit()
        await self.invalidate()
        return bool(result.rowcount)

    async def rollback(self) -> None:
        await self.session.rollback()

    # -------------------------------------------------------------------------
    # Cache
    # -------------------------------------------------------------------------

    async def invalidate(self, token: str | None = None) -> None:
        """Drop the token lookup (if given) and all aggregate caches."""
        if token:
            await self.cache.delete(CART_TOKEN_CACHE_KEY.format(token=token))
        await self.cache.delete(CART_STATS_CACHE_KEY)
        for prefix in _AGGREGATE_PREFIXES:
            await self.cache.delete_prefix(prefix)

    async def invalidate_all(self) -> None:
        await self.cache.delete_prefix(CACHE_PREFIX)
