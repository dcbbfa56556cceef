"""UTC clock shared by models and services."""

from datetime import datetime, timezone


def utcnow() -> datetime:
    """
    Current time as a timezone-aware UTC datetime.

    Datetime columns are mapped to timezone-aware UTC by SQLModel, which
    rejects naive values on write, so every timestamp comes from here.
    """
    return datetime.now(timezone.utc)
