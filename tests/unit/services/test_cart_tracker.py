"""Unit tests for the cart tracker."""

from datetime import timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from cart_recovery_service.infrastructure.database.models import AbandonedCart, CartOrderLink
from cart_recovery_service.repositories.cart_repository import CartRepository
from cart_recovery_service.services.cart_tracker import (
    CartSnapshot,
    CartTracker,
    TrackingContext,
    compute_restore_key,
    generate_cart_token,
    normalize_email,
)
from cart_recovery_service.services.settings_store import SettingsStore


@pytest.fixture
def snapshot(sample_snapshot: dict) -> CartSnapshot:
    return CartSnapshot.model_validate(sample_snapshot)


async def track_new_cart(tracker: CartTracker, snapshot: CartSnapshot) -> str:
    ctx = TrackingContext()
    cart = await tracker.on_cart_changed(ctx, snapshot)
    assert cart is not None
    return cart.cart_token


class TestHelpers:
    def test_generated_tokens(self) -> None:
        token = generate_cart_token()
        assert len(token) == 32
        assert token.isalnum()
        assert generate_cart_token() != token

    def test_restore_key_is_deterministic(self) -> None:
        key = compute_restore_key("abc", "secret")
        assert key == compute_restore_key("abc", "secret")
        assert key != compute_restore_key("abc", "other-secret")
        assert len(key) == 64

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            (" shopper@example.com ", "shopper@example.com"),
            ("not-an-email", ""),
            ("", ""),
            (None, ""),
            (42, ""),
        ],
    )
    def test_normalize_email(self, value, expected: str) -> None:
        assert normalize_email(value) == expected

    def test_snapshot_totals(self) -> None:
        snapshot = CartSnapshot.model_validate(
            {"items": [{"product_id": "sku-1", "name": "Mug", "quantity": 3, "price": 4.5}]}
        )
        assert snapshot.computed_subtotal() == 13.5
        assert snapshot.computed_total() == 13.5

    def test_cart_token_from_cookie_or_new(self, tracker: CartTracker) -> None:
        ctx = TrackingContext()
        assert tracker.get_cart_token(ctx) is None

        token = tracker.ensure_cart_token(ctx)
        assert ctx.set_cookie_token == token
        assert tracker.ensure_cart_token(ctx) == token

        cookie_ctx = TrackingContext(cookie_token="Abc12345")
        assert tracker.ensure_cart_token(cookie_ctx) == "Abc12345"
        assert cookie_ctx.set_cookie_token is None

        assert tracker.get_cart_token(TrackingContext(cookie_token="bad token!")) is None


class TestCartChanged:
    @pytest.mark.asyncio
    async def test_new_visitor_gets_token(self, tracker: CartTracker, snapshot: CartSnapshot, clock) -> None:
        ctx = TrackingContext()

        cart = await tracker.on_cart_changed(ctx, snapshot)

        assert cart is not None
        assert ctx.set_cookie_token == cart.cart_token
        assert cart.status == "active"
        assert cart.total == 20.0
        assert cart.last_activity_at == clock.now
        assert cart.restore_key == tracker.restore_key(cart.cart_token)

    @pytest.mark.asyncio
    async def test_existing_cookie_is_reused(
        self, tracker: CartTracker, snapshot: CartSnapshot, session: AsyncSession, clock
    ) -> None:
        token = await track_new_cart(tracker, snapshot)
        clock.advance(minutes=10)

        ctx = TrackingContext(cookie_token=token)
        cart = await tracker.on_cart_changed(ctx, snapshot)

        assert cart.cart_token == token
        assert ctx.set_cookie_token is None
        assert cart.last_activity_at == clock.now
        assert await session.scalar(select(func.count()).select_from(AbandonedCart)) == 1

    @pytest.mark.asyncio
    async def test_malformed_cookie_is_replaced(self, tracker: CartTracker, snapshot: CartSnapshot) -> None:
        ctx = TrackingContext(cookie_token="bad token;--")

        cart = await tracker.on_cart_changed(ctx, snapshot)

        assert cart.cart_token != "bad token;--"
        assert ctx.set_cookie_token == cart.cart_token

    @pytest.mark.asyncio
    async def test_ignored_events(self, tracker: CartTracker, snapshot: CartSnapshot) -> None:
        assert await tracker.on_cart_changed(TrackingContext(is_admin=True), snapshot) is None
        assert await tracker.on_cart_changed(TrackingContext(), CartSnapshot()) is None

    @pytest.mark.asyncio
    async def test_second_event_in_same_request_is_skipped(
        self, tracker: CartTracker, snapshot: CartSnapshot
    ) -> None:
        ctx = TrackingContext()

        assert await tracker.on_cart_changed(ctx, snapshot) is not None
        assert await tracker.on_cart_changed(ctx, snapshot) is None

    @pytest.mark.asyncio
    async def test_logged_in_user_email(self, tracker: CartTracker, snapshot: CartSnapshot) -> None:
        ctx = TrackingContext(user_id=7, user_email="member@example.com")

        cart = await tracker.on_cart_changed(ctx, snapshot)

        assert cart.user_id == 7
        assert cart.email == "member@example.com"

    @pytest.mark.asyncio
    async def test_guest_account_email_ignored(self, tracker: CartTracker, snapshot: CartSnapshot) -> None:
        cart = await tracker.on_cart_changed(TrackingContext(user_email="x@example.com"), snapshot)
        assert cart.email is None


class TestCheckoutEmail:
    @pytest.mark.asyncio
    async def test_captures_email_and_phone(self, tracker: CartTracker, snapshot: CartSnapshot) -> None:
        token = await track_new_cart(tracker, snapshot)
        ctx = TrackingContext(cookie_token=token)

        cart = await tracker.on_checkout_email_entered(
            ctx,
            {
                "billing_email": "shopper@example.com",
                "billing_phone": " 555-0100 ",
                "checkout_nonce": tracker.issue_checkout_nonce(token),
            },
        )

        assert cart is not None
        assert cart.email == "shopper@example.com"
        assert cart.phone == "555-0100"

    @pytest.mark.asyncio
    async def test_checkout_email_beats_account_email(
        self, tracker: CartTracker, snapshot: CartSnapshot
    ) -> None:
        ctx = TrackingContext(user_id=3, user_email="member@example.com")
        cart = await tracker.on_cart_changed(ctx, snapshot)
        token = cart.cart_token

        cart = await tracker.on_checkout_email_entered(
            TrackingContext(cookie_token=token, user_id=3, user_email="member@example.com"),
            {"billing_email": "billing@example.com", "checkout_nonce": tracker.issue_checkout_nonce(token)},
        )
        assert cart.email == "billing@example.com"

        # A later cart change keeps the captured email
        cart = await tracker.on_cart_changed(
            TrackingContext(cookie_token=token, user_id=3, user_email="member@example.com"), snapshot
        )
        assert cart.email == "billing@example.com"

    @pytest.mark.asyncio
    async def test_rejects_bad_nonce(self, tracker: CartTracker, snapshot: CartSnapshot) -> None:
        token = await track_new_cart(tracker, snapshot)

        for nonce in ("", "forged", tracker.issue_checkout_nonce("someone-else")):
            cart = await tracker.on_checkout_email_entered(
                TrackingContext(cookie_token=token),
                {"billing_email": "shopper@example.com", "checkout_nonce": nonce},
            )
            assert cart is None

    @pytest.mark.asyncio
    async def test_noop_without_record_or_email(self, tracker: CartTracker, snapshot: CartSnapshot) -> None:
        unknown = "A" * 32
        assert (
            await tracker.on_checkout_email_entered(
                TrackingContext(cookie_token=unknown),
                {"billing_email": "shopper@example.com", "checkout_nonce": tracker.issue_checkout_nonce(unknown)},
            )
            is None
        )
        assert await tracker.on_checkout_email_entered(TrackingContext(), {"billing_email": "a@example.com"}) is None

        token = await track_new_cart(tracker, snapshot)
        assert (
            await tracker.on_checkout_email_entered(
                TrackingContext(cookie_token=token),
                {"billing_email": "nope", "checkout_nonce": tracker.issue_checkout_nonce(token)},
            )
            is None
        )


class TestOrderCompleted:
    @pytest.mark.asyncio
    async def test_marks_recovered_and_clears_cookie(
        self, tracker: CartTracker, snapshot: CartSnapshot, session: AsyncSession, clock
    ) -> None:
        token = await track_new_cart(tracker, snapshot)
        ctx = TrackingContext(cookie_token=token)

        assert await tracker.on_order_completed(ctx, 9001) is True

        assert ctx.clear_cookie is True
        assert ctx.current_token is None
        cart = await tracker.repository.find_by_token(token)
        assert cart.status == "recovered"
        assert cart.order_id == 9001
        assert cart.recovered_at == clock.now
        link = await session.scalar(select(CartOrderLink).where(CartOrderLink.order_id == 9001))
        assert link.cart_token == token

    @pytest.mark.asyncio
    async def test_without_cookie(self, tracker: CartTracker) -> None:
        assert await tracker.on_order_completed(TrackingContext(), 1) is False

    @pytest.mark.asyncio
    async def test_next_cart_starts_fresh(self, tracker: CartTracker, snapshot: CartSnapshot) -> None:
        token = await track_new_cart(tracker, snapshot)
        await tracker.on_order_completed(TrackingContext(cookie_token=token), 10)

        new_token = await track_new_cart(tracker, snapshot)

        assert new_token != token


class TestRestore:
    @pytest.mark.asyncio
    async def test_restore_rebinds_token(
        self, tracker: CartTracker, snapshot: CartSnapshot, settings_store: SettingsStore
    ) -> None:
        token = await track_new_cart(tracker, snapshot)
        await settings_store.save({"restore_redirect": "cart", "enable_emails": "1"})

        ctx = TrackingContext(cookie_token="Other1234")
        restored = await tracker.restore_cart(ctx, tracker.restore_key(token))

        assert restored["cart_token"] == token
        assert restored["redirect"] == "cart"
        assert restored["items"][0]["name"] == "Widget"
        assert ctx.set_cookie_token == token
        assert tracker.get_cart_token(ctx) == token

    @pytest.mark.asyncio
    async def test_unknown_key(self, tracker: CartTracker) -> None:
        assert await tracker.restore_cart(TrackingContext(), "0" * 64) is None

    @pytest.mark.asyncio
    async def test_key_signed_with_other_secret(
        self, tracker: CartTracker, repository: CartRepository, clock
    ) -> None:
        forged = compute_restore_key("tok1", "attacker")
        await repository.upsert("tok1", {"restore_key": forged, "last_activity_at": clock.now}, clock.now)

        assert await tracker.restore_cart(TrackingContext(), forged) is None

    @pytest.mark.asyncio
    async def test_order_after_restore_recovers_abandoned_cart(
        self, tracker: CartTracker, snapshot: CartSnapshot, repository: CartRepository, clock
    ) -> None:
        token = await track_new_cart(tracker, snapshot)
        clock.advance(hours=2)
        await repository.bulk_transition(
            ["active"], clock.now - timedelta(hours=1), "abandoned", clock.now, "abandoned_at"
        )

        ctx = TrackingContext()
        await tracker.restore_cart(ctx, tracker.restore_key(token))
        assert await tracker.on_order_completed(ctx, 77) is True
