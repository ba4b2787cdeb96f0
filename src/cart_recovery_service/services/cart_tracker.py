"""Cart tracking service.

Turns storefront events (cart changes, checkout email capture, completed
orders) into upserts on the cart record for the visitor's cart token.
"""

import hashlib
import hmac
import re
import secrets
import string
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Mapping

import structlog
from email_validator import EmailNotValidError, validate_email
from pydantic import BaseModel, Field

from cart_recovery_service.infrastructure.database.models import AbandonedCart, CartStatus
from cart_recovery_service.repositories.cart_repository import CartRepository
from cart_recovery_service.services.settings_store import SettingsStore
from shared.constants import CART_TOKEN_LENGTH
from shared.timeutils import utcnow

logger = structlog.get_logger()

TOKEN_ALPHABET = string.ascii_letters + string.digits
_TOKEN_PATTERN = re.compile(r"^[A-Za-z0-9]{1,64}$")


# =============================================================================
# Snapshot Models
# =============================================================================


class CartLineItem(BaseModel):
    """A single line of a cart snapshot."""

    product_id: int | str
    name: str
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0, description="Unit display price")


class CartSnapshot(BaseModel):
    """Cart contents as seen by the storefront at the time of the event."""

    items: list[CartLineItem] = Field(default_factory=list)
    currency: str = Field("USD", max_length=10)
    subtotal: float | None = None
    total: float | None = None

    @property
    def is_empty(self) -> bool:
        return not self.items

    def computed_subtotal(self) -> float:
        if self.subtotal is not None:
            return round(self.subtotal, 2)
        return round(sum(item.price * item.quantity for item in self.items), 2)

    def computed_total(self) -> float:
        if self.total is not None:
            return round(self.total, 2)
        return self.computed_subtotal()


@dataclass
class TrackingContext:
    """Per-request tracking state.

    tracked_this_request stops a second cart event in the same request from
    writing again; current_token carries a freshly generated token because
    the cookie set on the response is not visible in the request.
    """

    cookie_token: str | None = None
    user_id: int | None = None
    user_email: str | None = None
    is_admin: bool = False
    current_token: str | None = None
    tracked_this_request: bool = False
    set_cookie_token: str | None = None
    clear_cookie: bool = False


# =============================================================================
# Helpers
# =============================================================================


def generate_cart_token(length: int = CART_TOKEN_LENGTH) -> str:
    """Cryptographically random alphanumeric cart token."""
    return "".join(secrets.choice(TOKEN_ALPHABET) for _ in range(length))


def compute_restore_key(token: str, secret: str) -> str:
    """HMAC-SHA256 of the cart token, hex encoded."""
    return hmac.new(secret.encode(), token.encode(), hashlib.sha256).hexdigest()


def normalize_email(value: Any) -> str:
    """Normalized email address, or an empty string if it is not valid."""
    if not value or not isinstance(value, str):
        return ""
    try:
        return validate_email(value.strip(), check_deliverability=False).normalized
    except EmailNotValidError:
        return ""


# =============================================================================
# Tracker
# =============================================================================


class CartTracker:
    """Records storefront cart activity against cart tokens."""

    def __init__(
        self,
        repository: CartRepository,
        settings_store: SettingsStore,
        secret_key: str,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repository = repository
        self.settings_store = settings_store
        self.secret_key = secret_key
        self.clock = clock

    def restore_key(self, token: str) -> str:
        return compute_restore_key(token, self.secret_key)

    def issue_checkout_nonce(self, token: str) -> str:
        """Anti-forgery token the checkout form must echo back."""
        return hmac.new(
            self.secret_key.encode(), f"checkout:{token}".encode(), hashlib.sha256
        ).hexdigest()

    def verify_checkout_nonce(self, token: str, nonce: str | None) -> bool:
        if not nonce:
            return False
        return hmac.compare_digest(self.issue_checkout_nonce(token), nonce)

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------

    async def on_cart_changed(
        self, ctx: TrackingContext, snapshot: CartSnapshot
    ) -> AbandonedCart | None:
        """Handle an add-to-cart or cart-updated event."""
        if ctx.tracked_this_request or ctx.is_admin:
            return None
        if snapshot.is_empty:
            return None

        ctx.tracked_this_request = True
        token = self.ensure_cart_token(ctx)

        fields: dict[str, Any] = {
            "cart_items": [item.model_dump() for item in snapshot.items],
            "currency": snapshot.currency,
            "subtotal": snapshot.computed_subtotal(),
            "total": snapshot.computed_total(),
        }
        cart = await self._upsert(ctx, token, fields)
        logger.info(
            "Cart change tracked",
            cart_token=token,
            items=len(snapshot.items),
            total=fields["total"],
        )
        return cart

    async def on_checkout_email_entered(
        self, ctx: TrackingContext, form: Mapping[str, Any]
    ) -> AbandonedCart | None:
        """
        Capture the billing email from a checkout form submission.

        The form's checkout_nonce is verified before any field is read. No
        cart token, no existing record, or an empty email is a silent no-op.
        """
        token = self.get_cart_token(ctx)
        if not token:
            return None
        if not self.verify_checkout_nonce(token, form.get("checkout_nonce")):
            logger.warning("Checkout nonce rejected", cart_token=token)
            return None

        email = normalize_email(form.get("billing_email"))
        if not email:
            return None
        if await self.repository.lookup(token) is None:
            return None

        fields: dict[str, Any] = {"email": email}
        phone = str(form.get("billing_phone") or "").strip()[:50]
        if phone:
            fields["phone"] = phone

        cart = await self._upsert(ctx, token, fields)
        logger.info("Checkout email captured", cart_token=token)
        return cart

    async def on_order_completed(self, ctx: TrackingContext, order_id: int) -> bool:
        """
        Mark the visitor's cart recovered by order_id.

        The order is tagged with the cart token and the cookie is cleared so
        that the next cart starts a fresh record.

        Returns:
            bool: True if a cart record transitioned to recovered
        """
        token = self.get_cart_token(ctx)
        if not token:
            return False

        now = self.clock()
        recovered = await self.repository.mark_recovered(token, order_id, now)
        await self.repository.tag_order(order_id, token, now)

        ctx.current_token = None
        ctx.set_cookie_token = None
        ctx.clear_cookie = True

        logger.info(
            "Order completed for tracked cart",
            cart_token=token,
            order_id=order_id,
            recovered=recovered,
        )
        return recovered

    async def restore_cart(self, ctx: TrackingContext, restore_key: str) -> dict[str, Any] | None:
        """
        Resolve a restore link back to its cart.

        Rebinds the visitor to the cart's token so that a later order
        completion is attributed to it.
        """
        cart = await self.repository.find_by_restore_key(restore_key)
        if cart is None or not hmac.compare_digest(self.restore_key(cart.cart_token), restore_key):
            return None

        ctx.current_token = cart.cart_token
        ctx.set_cookie_token = cart.cart_token
        ctx.clear_cookie = False

        settings = await self.settings_store.get()
        logger.info("Cart restored from link", cart_token=cart.cart_token, status=cart.status)
        return {
            "cart_token": cart.cart_token,
            "items": cart.cart_items or [],
            "currency": cart.currency,
            "total": cart.total,
            "status": cart.status,
            "redirect": settings.restore_redirect,
        }

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def get_cart_token(self, ctx: TrackingContext) -> str | None:
        """Token for this request, generated earlier or read from the cookie."""
        if ctx.current_token:
            return ctx.current_token

        cookie = (ctx.cookie_token or "").strip()
        if cookie and _TOKEN_PATTERN.match(cookie):
            ctx.current_token = cookie
            return cookie
        return None

    def ensure_cart_token(self, ctx: TrackingContext) -> str:
        """Existing token for this request, or a new one queued as the cookie."""
        existing = self.get_cart_token(ctx)
        if existing:
            return existing

        token = generate_cart_token()
        ctx.current_token = token
        ctx.set_cookie_token = token
        return token

    async def _upsert(
        self, ctx: TrackingContext, token: str, fields: dict[str, Any]
    ) -> AbandonedCart:
        existing = await self.repository.lookup(token)
        email = self._resolve_email(fields.get("email"), existing, ctx)
        now = self.clock()

        values = {
            **fields,
            "restore_key": self.restore_key(token),
            "user_id": ctx.user_id or None,
            "email": email or None,
            "status": CartStatus.ACTIVE.value,
            "last_activity_at": now,
        }
        return await self.repository.upsert(token, values, now)

    @staticmethod
    def _resolve_email(
        explicit: str | None, existing: dict[str, Any] | None, ctx: TrackingContext
    ) -> str:
        # explicit > stored on record > account email
        if explicit:
            return explicit
        if existing and existing.get("email"):
            return existing["email"]
        if ctx.user_id:
            return normalize_email(ctx.user_email)
        return ""
