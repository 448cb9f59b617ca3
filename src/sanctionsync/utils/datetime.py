"""Datetime utilities for consistent timestamp handling.

All timestamps in sanctionsync are UTC. SQLite drops tzinfo on the way
back out, so values read from the database go through ensure_utc().
"""

from datetime import UTC, date, datetime

# Formats seen in OFAC publications ("08/15/2024", "15 Aug 1970", "1970")
FEED_DATE_FORMATS = ("%m/%d/%Y", "%d %b %Y", "%Y-%m-%d", "%b %Y", "%Y")


def utc_now() -> datetime:
    """Return current UTC datetime.

    Returns:
        Current time in UTC with timezone info
    """
    return datetime.now(UTC)


def ensure_utc(dt: datetime) -> datetime:
    """Attach UTC to naive datetimes, leave aware ones untouched."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


def parse_feed_date(value: str | None) -> date | None:
    """Parse a loosely formatted feed date, returning None if unparseable."""
    if not value:
        return None
    value = value.strip()
    for fmt in FEED_DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    return None

