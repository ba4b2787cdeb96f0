"""SendGrid email transport."""

from typing import Any
from uuid import uuid4

import httpx
import structlog

from email_worker.services.errors import EmailDeliveryError

logger = structlog.get_logger()


class SendGridEmailSender:
    """Delivers email through the SendGrid v3 mail/send API."""

    def __init__(
        self,
        api_key: str,
        api_url: str = "https://api.sendgrid.com/v3/mail/send",
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.api_url = api_url
        self.timeout = timeout
        self.transport = transport

    async def send_email(
        self,
        to_email: str,
        subject: str,
        html_content: str,
        from_email: str,
        from_name: str,
        tracking_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Send one email.

        Raises:
            EmailDeliveryError: If the API is unreachable or does not accept
                the message (anything but HTTP 202)
        """
        message_id = tracking_id or str(uuid4())
        payload = {
            "personalizations": [
                {
                    "to": [{"email": to_email}],
                    "custom_args": {k: str(v) for k, v in (metadata or {}).items()},
                }
            ],
            "from": {"email": from_email, "name": from_name},
            "subject": subject,
            "content": [{"type": "text/html", "value": html_content}],
            "headers": {"X-Message-Id": message_id},
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    self.api_url,
                    json=payload,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
        except httpx.HTTPError as e:
            raise EmailDeliveryError(f"SendGrid request failed: {e}") from e

        if response.status_code != 202:
            raise EmailDeliveryError(
                f"SendGrid rejected message: HTTP {response.status_code} {response.text[:200]}"
            )

        logger.info("Email sent via SendGrid", message_id=message_id, to_email=to_email)
        return {"success": True, "message_id": message_id, "status": "sent"}
