"""Mock email sender for testing and development."""

from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from uuid import uuid4

import orjson
import structlog

logger = structlog.get_logger()


class MockEmailSender:
    """
    Email transport that records messages instead of delivering them.

    Messages are kept in memory and, when a storage path is given, written
    as JSON files so recovery emails can be inspected during development.
    """

    def __init__(self, storage_path: str | None = None):
        self.storage_path = Path(storage_path) if storage_path else None
        if self.storage_path:
            self.storage_path.mkdir(parents=True, exist_ok=True)
        self.sent_emails: list[dict[str, Any]] = []

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
        """Record an outgoing email. Always succeeds."""
        message_id = tracking_id or str(uuid4())
        timestamp = datetime.now(timezone.utc)

        email_record = {
            "message_id": message_id,
            "to_email": to_email,
            "from_email": from_email,
            "from_name": from_name,
            "subject": subject,
            "html_content": html_content,
            "metadata": metadata or {},
            "sent_at": timestamp.isoformat(),
            "status": "sent",
        }
        self.sent_emails.append(email_record)

        stored_at = None
        if self.storage_path:
            filepath = self.storage_path / f"{timestamp.strftime('%Y%m%d_%H%M%S')}_{message_id}.json"
            filepath.write_bytes(orjson.dumps(email_record, option=orjson.OPT_INDENT_2))
            stored_at = str(filepath)

        logger.info(
            "Mock email sent",
            message_id=message_id,
            to_email=to_email,
            subject=subject,
            stored_at=stored_at,
        )

        return {
            "success": True,
            "message_id": message_id,
            "status": "sent",
            "stored_at": stored_at,
        }

    def get_sent_emails(self, to_email: str | None = None) -> list[dict[str, Any]]:
        """Emails recorded by this sender, optionally filtered by recipient."""
        if to_email:
            return [e for e in self.sent_emails if e["to_email"] == to_email]
        return list(self.sent_emails)

    def clear(self) -> int:
        """Forget recorded emails and delete stored files. Returns the count removed."""
        count = len(self.sent_emails)
        self.sent_emails.clear()
        if self.storage_path:
            for filepath in self.storage_path.glob("*.json"):
                filepath.unlink()
        return count
