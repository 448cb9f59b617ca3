"""sanctionsync utilities."""

from sanctionsync.utils.datetime import ensure_utc, parse_feed_date, utc_now

__all__ = [
    "utc_now",
    "ensure_utc",
    "parse_feed_date",
]
