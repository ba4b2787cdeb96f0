"""Storefront cart tracking endpoints."""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import BaseModel, Field

from cart_recovery_service.api.deps import (
    apply_cart_cookie,
    get_cart_tracker,
    get_tracking_context,
)
from cart_recovery_service.config import Settings, get_settings
from cart_recovery_service.services.cart_tracker import (
    CartSnapshot,
    CartTracker,
    TrackingContext,
)

router = APIRouter()


# =============================================================================
# Models
# =============================================================================


class TrackResponse(BaseModel):
    """Result of a cart change event."""

    tracked: bool
    cart_token: str | None = None
    status: str | None = None


class CheckoutNonceResponse(BaseModel):
    cart_token: str | None
    checkout_nonce: str | None


class CheckoutEmailRequest(BaseModel):
    """Checkout form fields relevant to cart recovery."""

    billing_email: str = ""
    billing_phone: str | None = None
    checkout_nonce: str = ""


class CheckoutEmailResponse(BaseModel):
    captured: bool


class OrderCompletedRequest(BaseModel):
    order_id: int = Field(..., ge=1)


class OrderCompletedResponse(BaseModel):
    recovered: bool


class RestoreResponse(BaseModel):
    """Cart contents for a restore link."""

    cart_token: str
    items: list[dict[str, Any]]
    currency: str | None
    total: float | None
    status: str
    redirect: str


# =============================================================================
# Endpoints
# =============================================================================


@router.post("/track", response_model=TrackResponse)
async def track_cart(
    snapshot: CartSnapshot,
    response: Response,
    ctx: TrackingContext = Depends(get_tracking_context),
    tracker: CartTracker = Depends(get_cart_tracker),
    settings: Settings = Depends(get_settings),
) -> TrackResponse:
    """
    Record an add-to-cart or cart-updated event.

    Empty carts and admin sessions are ignored. A new visitor gets a cart
    token cookie.
    """
    cart = await tracker.on_cart_changed(ctx, snapshot)
    apply_cart_cookie(response, ctx, settings)
    if cart is None:
        return TrackResponse(tracked=False)
    return TrackResponse(tracked=True, cart_token=cart.cart_token, status=cart.status)


@router.get("/checkout-nonce", response_model=CheckoutNonceResponse)
async def checkout_nonce(
    ctx: TrackingContext = Depends(get_tracking_context),
    tracker: CartTracker = Depends(get_cart_tracker),
) -> CheckoutNonceResponse:
    """Anti-forgery token to embed in the checkout form."""
    token = tracker.get_cart_token(ctx)
    return CheckoutNonceResponse(
        cart_token=token,
        checkout_nonce=tracker.issue_checkout_nonce(token) if token else None,
    )


@router.post("/checkout-email", response_model=CheckoutEmailResponse)
async def capture_checkout_email(
    form: CheckoutEmailRequest,
    ctx: TrackingContext = Depends(get_tracking_context),
    tracker: CartTracker = Depends(get_cart_tracker),
) -> CheckoutEmailResponse:
    cart = await tracker.on_checkout_email_entered(ctx, form.model_dump())
    return CheckoutEmailResponse(captured=cart is not None)


@router.post("/order-completed", response_model=OrderCompletedResponse)
async def order_completed(
    body: OrderCompletedRequest,
    response: Response,
    ctx: TrackingContext = Depends(get_tracking_context),
    tracker: CartTracker = Depends(get_cart_tracker),
    settings: Settings = Depends(get_settings),
) -> OrderCompletedResponse:
    recovered = await tracker.on_order_completed(ctx, body.order_id)
    apply_cart_cookie(response, ctx, settings)
    return OrderCompletedResponse(recovered=recovered)


@router.get("/restore/{restore_key}", response_model=RestoreResponse)
async def restore_cart(
    restore_key: str,
    response: Response,
    ctx: TrackingContext = Depends(get_tracking_context),
    tracker: CartTracker = Depends(get_cart_tracker),
    settings: Settings = Depends(get_settings),
) -> RestoreResponse:
    """Resolve a recovery email link and rebind the visitor to that cart."""
    restored = await tracker.restore_cart(ctx, restore_key)
    if restored is None:
        raise HTTPException(status_code=404, detail="Cart not found")
    apply_cart_cookie(response, ctx, settings)
    return RestoreResponse(**restored)
