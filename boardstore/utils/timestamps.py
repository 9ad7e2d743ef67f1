"""
Canonical timestamp text for everything the store persists.

All stored times are UTC ISO 8601 with microseconds, e.g.
'2026-10-17T09:30:00.000000+00:00'. A fixed width keeps the text sortable
and makes encoding deterministic.
"""

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """
    Attach UTC to naive datetimes and convert aware ones to UTC.

    Raises:
        ValueError: If the UTC equivalent falls outside the datetime range
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    try:
        return value.astimezone(timezone.utc)
    except OverflowError as e:
        raise ValueError(f"{value.isoformat()} has no UTC equivalent: {e}") from e


def format_timestamp(value: datetime) -> str:
    """
    Render a datetime in the canonical stored form.

    Args:
        value: Naive (assumed UTC) or aware datetime

    Returns:
        ISO 8601 string in UTC with microsecond precision
    """
    return ensure_utc(value).isoformat(timespec='microseconds')


def parse_timestamp(text: str) -> datetime:
    """
    Parse stored timestamp text back into an aware UTC datetime.

    Accepts a trailing 'Z' (as written by JavaScript's toISOString) and
    treats values without an offset as UTC.

    Raises:
        ValueError: If the text is not an ISO 8601 timestamp
        TypeError: If text is not a string
    """
    if not isinstance(text, str):
        raise TypeError(f"timestamp must be a string, got {type(text).__name__}")
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    return ensure_utc(datetime.fromisoformat(text))
