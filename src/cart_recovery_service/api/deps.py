"""FastAPI dependencies wiring services per request."""

from fastapi import Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from cart_recovery_service.config import Settings, get_settings
from cart_recovery_service.infrastructure.database.connection import get_session
from cart_recovery_service.infrastructure.redis import CacheService, get_redis_client
from cart_recovery_service.repositories.cart_repository import CartRepository
from cart_recovery_service.services.cart_tracker import CartTracker, TrackingContext
from cart_recovery_service.services.recovery_email import RecoveryEmailSender
from cart_recovery_service.services.reporting import ReportingService
from cart_recovery_service.services.scheduler import AbandonmentScheduler
from cart_recovery_service.services.settings_store import SettingsStore
from email_worker.services import EmailSender, build_email_sender


async def get_cache() -> CacheService:
    return CacheService(await get_redis_client())


def get_cart_repository(
    session: AsyncSession = Depends(get_session),
    cache: CacheService = Depends(get_cache),
) -> CartRepository:
    return CartRepository(session, cache)


def get_settings_store(
    session: AsyncSession = Depends(get_session),
    cache: CacheService = Depends(get_cache),
) -> SettingsStore:
    return SettingsStore(session, cache)


def get_cart_tracker(
    repository: CartRepository = Depends(get_cart_repository),
    settings_store: SettingsStore = Depends(get_settings_store),
    settings: Settings = Depends(get_settings),
) -> CartTracker:
    return CartTracker(repository, settings_store, settings.secret_key)


def get_reporting_service(
    repository: CartRepository = Depends(get_cart_repository),
) -> ReportingService:
    return ReportingService(repository)


def get_email_sender(settings: Settings = Depends(get_settings)) -> EmailSender:
    return build_email_sender(settings)


def get_scheduler(
    repository: CartRepository = Depends(get_cart_repository),
    settings_store: SettingsStore = Depends(get_settings_store),
    email_sender: EmailSender = Depends(get_email_sender),
    cache: CacheService = Depends(get_cache),
    settings: Settings = Depends(get_settings),
) -> AbandonmentScheduler:
    return AbandonmentScheduler(
        repository,
        settings_store,
        RecoveryEmailSender(email_sender, settings),
        cache,
        lock_ttl_seconds=settings.scheduler_lock_ttl_seconds,
    )


def get_tracking_context(
    request: Request,
    settings: Settings = Depends(get_settings),
) -> TrackingContext:
    """
    Build the per-request tracking state.

    The storefront forwards the visitor's identity in X-User-Id,
    X-User-Email and X-Admin-Context headers.
    """
    user_id = request.headers.get("x-user-id", "")
    return TrackingContext(
        cookie_token=request.cookies.get(settings.cart_cookie_name),
        user_id=int(user_id) if user_id.isdigit() else None,
        user_email=request.headers.get("x-user-email") or None,
        is_admin=request.headers.get("x-admin-context", "").lower() in ("1", "true", "yes"),
    )


def apply_cart_cookie(response: Response, ctx: TrackingContext, settings: Settings) -> None:
    """Write or clear the cart token cookie after a tracking call."""
    if ctx.clear_cookie:
        response.delete_cookie(settings.cart_cookie_name, path="/")
    elif ctx.set_cookie_token:
        response.set_cookie(
            settings.cart_cookie_name,
            ctx.set_cookie_token,
            max_age=settings.cart_cookie_max_age_days * 24 * 60 * 60,
            path="/",
            httponly=True,
            samesite="lax",
        )
