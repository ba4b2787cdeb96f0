"""Email transports."""

from typing import Any, Protocol

from cart_recovery_service.config import Settings
from email_worker.services.errors import EmailDeliveryError
from email_worker.services.mock_email_sender import MockEmailSender
from email_worker.services.sendgrid_sender import SendGridEmailSender


class EmailSender(Protocol):
    async def send_email(
        self,
        to_email: str,
        subject: str,
        html_content: str,
        from_email: str,
        from_name: str,
        tracking_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> dict[str, Any]: ...


def build_email_sender(settings: Settings) -> EmailSender:
    """Transport selected by the email_service setting."""
    if settings.email_service == "sendgrid":
        return SendGridEmailSender(
            api_key=settings.sendgrid_api_key,
            api_url=settings.sendgrid_api_url,
            timeout=settings.email_timeout,
        )
    return MockEmailSender(settings.mock_email_storage_path)


__all__ = [
    "EmailDeliveryError",
    "EmailSender",
    "MockEmailSender",
    "SendGridEmailSender",
    "build_email_sender",
]
