"""Business logic services."""

from cart_recovery_service.services.cart_tracker import CartTracker, TrackingContext
from cart_recovery_service.services.recovery_email import RecoveryEmailSender
from cart_recovery_service.services.reporting import ReportingService
from cart_recovery_service.services.scheduler import AbandonmentScheduler, RunSummary
from cart_recovery_service.services.settings_store import CartRecoverySettings, SettingsStore

__all__ = [
    "AbandonmentScheduler",
    "CartRecoverySettings",
    "CartTracker",
    "RecoveryEmailSender",
    "ReportingService",
    "RunSummary",
    "SettingsStore",
    "TrackingContext",
]
