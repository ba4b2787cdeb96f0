"""Operator settings for abandonment detection and recovery emails."""

from typing import Any, Literal, Mapping

import structlog
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cart_recovery_service.infrastructure.database.models import CartRecoveryOption
from cart_recovery_service.infrastructure.redis import CacheService
from shared.constants import (
    EMAIL_STEPS,
    RESTORE_REDIRECTS,
    SETTINGS_CACHE_KEY,
    SETTINGS_CACHE_TTL,
    SETTINGS_OPTION_KEY,
)
from shared.timeutils import utcnow

logger = structlog.get_logger()

MIN_ABANDON_MINUTES = 5
MIN_RETENTION_DAYS = 1
MIN_FIRST_STEP_HOURS = 1


def _default_email_steps() -> dict[int, int]:
    return {1: 1, 2: 24, 3: 72}


class CartRecoverySettings(BaseModel):
    """Abandoned cart configuration.

    email_steps maps step number to hours after abandonment.
    """

    abandon_minutes: int = 60
    retention_days: int = 30
    enable_emails: bool = True
    email_steps: dict[int, int] = Field(default_factory=_default_email_steps)
    restore_redirect: Literal["checkout", "cart"] = "checkout"

    @classmethod
    def from_form(
        cls, data: Mapping[str, Any], current: "CartRecoverySettings"
    ) -> "CartRecoverySettings":
        """
        Build settings from a flat form submission.

        Missing fields keep their current value. Out-of-range numbers are
        clamped to the nearest valid value instead of being rejected, and each
        email step is pushed at least one hour past the previous one.
        """
        steps = current.email_steps

        def number(key: str, fallback: int) -> int:
            return _absint(data[key]) if key in data else fallback

        abandon = max(MIN_ABANDON_MINUTES, number("abandon_minutes", current.abandon_minutes))
        retain = max(MIN_RETENTION_DAYS, number("retention_days", current.retention_days))
        step_1 = max(MIN_FIRST_STEP_HOURS, number("email_step_1", steps[1]))
        step_2 = max(step_1 + 1, number("email_step_2", steps[2]))
        step_3 = max(step_2 + 1, number("email_step_3", steps[3]))

        redirect = str(data.get("restore_redirect", current.restore_redirect)).strip().lower()
        if redirect not in RESTORE_REDIRECTS:
            redirect = "checkout"

        return cls(
            abandon_minutes=abandon,
            retention_days=retain,
            enable_emails=_truthy(data.get("enable_emails")),
            email_steps={1: step_1, 2: step_2, 3: step_3},
            restore_redirect=redirect,
        )


def _absint(value: Any) -> int:
    try:
        return abs(int(float(value)))
    except (TypeError, ValueError):
        return 0


def _truthy(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() not in ("", "0", "false", "off", "no")
    return bool(value)


class SettingsStore:
    """Reads and writes the single settings object in the options table."""

    def __init__(self, session: AsyncSession, cache: CacheService):
        self.session = session
        self.cache = cache

    async def get(self) -> CartRecoverySettings:
        cached = await self.cache.get(SETTINGS_CACHE_KEY)
        if cached is not None:
            return CartRecoverySettings.model_validate(cached)

        option = await self.session.get(CartRecoveryOption, SETTINGS_OPTION_KEY)
        settings = CartRecoverySettings()
        if option is not None:
            settings = CartRecoverySettings.model_validate(
                {**settings.model_dump(), **(option.value or {})}
            )
            # Stored steps may be partial; fill gaps from defaults
            settings.email_steps = {
                step: settings.email_steps.get(step, _default_email_steps()[step])
                for step in EMAIL_STEPS
            }

        await self.cache.set(
            SETTINGS_CACHE_KEY, settings.model_dump(mode="json"), ttl_seconds=SETTINGS_CACHE_TTL
        )
        return settings

    async def save(self, data: Mapping[str, Any]) -> CartRecoverySettings:
        """Clamp a form submission and persist it. Returns the stored value."""
        current = await self.get()
        settings = CartRecoverySettings.from_form(data, current)

        value = settings.model_dump(mode="json")
        option = await self.session.get(CartRecoveryOption, SETTINGS_OPTION_KEY)
        if option is None:
            self.session.add(
                CartRecoveryOption(option_key=SETTINGS_OPTION_KEY, value=value, updated_at=utcnow())
            )
        else:
            option.value = value
            option.updated_at = utcnow()
        await self.session.commit()
        await self.cache.delete(SETTINGS_CACHE_KEY)

        logger.info(
            "Cart recovery settings saved",
            abandon_minutes=settings.abandon_minutes,
            retention_days=settings.retention_days,
            enable_emails=settings.enable_emails,
            email_steps=value["email_steps"],
            restore_redirect=settings.restore_redirect,
        )
        return settings
