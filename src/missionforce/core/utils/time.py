"""Shared UTC time helpers.

Every module that needs the current time or day arithmetic goes through
these helpers so that timestamps are always timezone-aware UTC values.
"""

from __future__ import annotations

from datetime import UTC, datetime
from zoneinfo import ZoneInfo

SECONDS_PER_DAY = 24 * 60 * 60


def utc_now() -> datetime:
    """Return the current UTC timestamp."""
    return datetime.now(UTC)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def parse_timestamp(value: str | datetime | None) -> datetime | None:
    """Parse an ISO-8601 string (or pass through a datetime) as aware UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(text))


def format_timestamp(value: datetime | None) -> str | None:
    """Serialize a datetime for storage."""
    return ensure_utc(value).isoformat() if value else None


def days_between(earlier: datetime, later: datetime) -> float:
    """Fractional days from ``earlier`` to ``later`` (negative if reversed)."""
    delta = ensure_utc(later) - ensure_utc(earlier)
    return delta.total_seconds() / SECONDS_PER_DAY


def local_hour(now: datetime, timezone_name: str) -> int:
    """Hour of day for ``now`` on the owner's local clock."""
    return ensure_utc(now).astimezone(ZoneInfo(timezone_name)).hour
