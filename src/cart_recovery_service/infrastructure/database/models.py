"""SQLAlchemy models for cart tracking and recovery.

The abandoned_carts table holds one row per storefront shopping session,
keyed by an opaque cart token carried in a cookie.
"""

from datetime import datetime
from enum import Enum as PyEnum
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    DateTime,
    Index,
    Integer,
    Numeric,
    SmallInteger,
    String,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# SQLite only autoincrements INTEGER primary keys
BigIntPK = BigInteger().with_variant(Integer(), "sqlite")


class Base(DeclarativeBase):
    """Base class for all models."""


# =============================================================================
# Enums
# =============================================================================


class CartStatus(str, PyEnum):
    """Stored cart lifecycle states."""

    ACTIVE = "active"
    ABANDONED = "abandoned"
    RECOVERED = "recovered"
    EXPIRED = "expired"


# =============================================================================
# Abandoned Carts
# =============================================================================


class AbandonedCart(Base):
    """Snapshot of a storefront cart and its recovery progress."""

    __tablename__ = "abandoned_carts"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    cart_token: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    restore_key: Mapped[str] = mapped_column(String(64), nullable=False)
    user_id: Mapped[Optional[int]] = mapped_column(BigInteger)
    email: Mapped[Optional[str]] = mapped_column(String(190))
    phone: Mapped[Optional[str]] = mapped_column(String(50))

    # Snapshot
    cart_items: Mapped[Optional[list]] = mapped_column(JSON, default=list)
    currency: Mapped[Optional[str]] = mapped_column(String(10))
    subtotal: Mapped[Optional[float]] = mapped_column(Numeric(18, 2, asdecimal=False))
    total: Mapped[Optional[float]] = mapped_column(Numeric(18, 2, asdecimal=False))

    # Lifecycle
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=CartStatus.ACTIVE.value
    )
    last_activity_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    abandoned_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    recovered_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    order_id: Mapped[Optional[int]] = mapped_column(BigInteger)

    # Recovery email watermark
    last_email_step: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=0)
    last_email_sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        Index("ix_abandoned_carts_status", "status"),
        Index("ix_abandoned_carts_email", "email"),
        Index("ix_abandoned_carts_abandoned_at", "abandoned_at"),
        Index("ix_abandoned_carts_restore_key", "restore_key"),
    )

    def to_dict(self) -> dict[str, Any]:
        """Serialize the record for API responses."""
        return {
            "id": self.id,
            "cart_token": self.cart_token,
            "user_id": self.user_id,
            "email": self.email,
            "phone": self.phone,
            "cart_items": self.cart_items or [],
            "currency": self.currency,
            "subtotal": self.subtotal,
            "total": self.total,
            "status": self.status,
            "last_activity_at": _iso(self.last_activity_at),
            "abandoned_at": _iso(self.abandoned_at),
            "recovered_at": _iso(self.recovered_at),
            "order_id": self.order_id,
            "last_email_step": self.last_email_step,
            "last_email_sent_at": _iso(self.last_email_sent_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


# =============================================================================
# Options
# =============================================================================


class CartRecoveryOption(Base):
    """Key/value option storage for operator settings."""

    __tablename__ = "cart_recovery_options"

    option_key: Mapped[str] = mapped_column(String(191), primary_key=True)
    value: Mapped[Any] = mapped_column(JSON, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


# =============================================================================
# Order Audit
# =============================================================================


class CartOrderLink(Base):
    """Audit tag linking a completed order to its originating cart token."""

    __tablename__ = "cart_order_links"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    cart_token: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None
