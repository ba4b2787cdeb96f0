"""Cart recovery settings endpoints."""

from typing import Any

from fastapi import APIRouter, Body, Depends

from cart_recovery_service.api.deps import get_settings_store
from cart_recovery_service.services.settings_store import CartRecoverySettings, SettingsStore

router = APIRouter()


@router.get("/cart-recovery", response_model=CartRecoverySettings)
async def read_cart_recovery_settings(
    store: SettingsStore = Depends(get_settings_store),
) -> CartRecoverySettings:
    return await store.get()


@router.put("/cart-recovery", response_model=CartRecoverySettings)
async def update_cart_recovery_settings(
    form: dict[str, Any] = Body(...),
    store: SettingsStore = Depends(get_settings_store),
) -> CartRecoverySettings:
    """
    Save settings from a flat form.

    Accepted keys: abandon_minutes, retention_days, enable_emails,
    email_step_1, email_step_2, email_step_3, restore_redirect. Values out of
    range are clamped rather than rejected; the stored result is returned.
    An absent enable_emails means unchecked.
    """
    return await store.save(form)
