"""
HTTP-date helpers (RFC 7231 section 7.1.1.1).

HTTP dates are always GMT:

    Wed, 01 Jan 2026 12:00:00 GMT
"""

from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Optional


_DAYS = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
_MONTHS = ["Jan", "Feb", "Mar", "Apr", "May", "Jun",
           "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]


def format_http_date(dt: Optional[datetime] = None) -> str:
    """
    Format a datetime as an HTTP-date.

    Naive datetimes are assumed to be UTC already; aware ones are
    converted. ``strftime`` is avoided because ``%a``/``%b`` follow the
    process locale.

    Args:
        dt: Datetime to format. Defaults to now.

    Returns:
        Formatted date string.
    """
    if dt is None:
        dt = datetime.now(timezone.utc)
    elif dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc)

    return (
        f"{_DAYS[dt.weekday()]}, {dt.day:02d} {_MONTHS[dt.month - 1]} "
        f"{dt.year:04d} {dt.hour:02d}:{dt.minute:02d}:{dt.second:02d} GMT"
    )


def parse_http_date(value: str) -> Optional[datetime]:
    """
    Parse an HTTP-date into an aware UTC datetime.

    Returns:
        The datetime, or None when the value is not a valid date.
    """
    if not value:
        return None
    try:
        dt = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt
