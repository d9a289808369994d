"""
Timestamp helpers shared by the transformers, builders and metrics.

Exports mix several timestamp dialects: ISO-8601 with or without a zone,
space-separated "YYYY-MM-DD HH:MM:SS" (Hinge), and RFC 1123 strings such as
"Fri, 05 Jun 2020 02:47:39 GMT" (older Tinder exports). Everything is
normalized to aware UTC datetimes in memory and to ISO-8601 TEXT in storage.
"""

from datetime import date, datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Iterator, Optional

ISO_FORMAT = "%Y-%m-%dT%H:%M:%SZ"
DATE_FORMAT = "%Y-%m-%d"


def now_iso() -> str:
    """Get current UTC timestamp in ISO-8601 format."""
    return datetime.now(tz=timezone.utc).strftime(ISO_FORMAT)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse an export timestamp into an aware UTC datetime.

    Naive values are assumed to be UTC.

    Args:
        value: String, datetime or date from an export.

    Returns:
        Aware datetime in UTC, or None if the value is empty or unparseable.
    """
    if value is None or value == "":
        return None

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            try:
                parsed = parsedate_to_datetime(text)
            except (TypeError, ValueError, IndexError):
                return None
    else:
        return None

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def parse_date(value: Any) -> Optional[date]:
    """Parse a YYYY-MM-DD string (or any timestamp) into a date."""
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    parsed = parse_timestamp(value)
    return parsed.date() if parsed else None


def to_iso(value: datetime) -> str:
    """Format an aware datetime as ISO-8601 UTC text."""
    return value.astimezone(timezone.utc).strftime(ISO_FORMAT)


def to_iso_date(value: date) -> str:
    """Format a date as YYYY-MM-DD."""
    return value.strftime(DATE_FORMAT)


def years_between(start: date, end: date) -> int:
    """Whole years elapsed from start to end (an age calculation)."""
    years = end.year - start.year
    if (end.month, end.day) < (start.month, start.day):
        years -= 1
    return years


def days_between(start: date, end: date) -> int:
    """Whole calendar days from start to end."""
    return (end - start).days


def iter_days(start: date, end: date) -> Iterator[date]:
    """Yield every calendar day from start to end, inclusive."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)
