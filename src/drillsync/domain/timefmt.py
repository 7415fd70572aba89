"""ISO-8601 helpers shared by every persisted timestamp.

Timestamps are stored as UTC strings with millisecond precision and a
trailing ``Z`` so they stay lexicographically comparable.
"""

from datetime import UTC, date, datetime


def utcnow() -> datetime:
    return datetime.now(UTC)


def format_ts(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_ts(value: str | None) -> datetime | None:
    """Parse a stored timestamp; returns None for anything unparseable."""
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def day_key(value: datetime | date) -> str:
    """Activity heatmap key (``YYYY-MM-DD``)."""
    if isinstance(value, datetime):
        value = value.astimezone(UTC).date()
    return value.isoformat()
