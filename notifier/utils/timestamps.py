"""UTC time helpers shared by the queue, the stores and the result types.

Stored timestamps are fixed-width ISO-8601 strings with microseconds, so
comparing the strings orders them in time; job ids and delays use epoch
milliseconds.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utc_now() -> datetime:
    """Current time, timezone-aware UTC. The default clock everywhere."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Naive datetimes are read as UTC; aware ones are converted."""
    if dt is None:
        return None
    return dt.replace(tzinfo=timezone.utc) if dt.tzinfo is None else dt.astimezone(timezone.utc)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 string (``Z`` suffix accepted) to UTC, or None if it is not one.

    Example:
        >>> parse_iso_datetime("2025-11-04T12:00:00Z").hour
        12
    """
    text = (value or "").strip()
    if not text:
        return None
    if text[-1] in "zZ":
        text = f"{text[:-1]}+00:00"
    try:
        return ensure_utc(datetime.fromisoformat(text))
    except ValueError:
        return None


def format_timestamp(dt: Optional[datetime]) -> Optional[str]:
    """
    Storage and API form of a datetime.

    Example:
        >>> format_timestamp(datetime(2025, 11, 4, 12, 0, tzinfo=timezone.utc))
        '2025-11-04T12:00:00.000000+00:00'
    """
    moment = ensure_utc(dt)
    return None if moment is None else moment.isoformat(timespec="microseconds")


def to_epoch_ms(dt: datetime) -> int:
    return (ensure_utc(dt) - EPOCH) // timedelta(milliseconds=1)


def add_ms(dt: datetime, milliseconds: int) -> datetime:
    return dt + timedelta(milliseconds=milliseconds)
