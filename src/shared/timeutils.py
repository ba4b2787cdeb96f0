"""Time helpers shared by the API and workers."""

from datetime import datetime, timezone


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (the DB stores naive UTC)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
