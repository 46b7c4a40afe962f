"""Pharmacy-local time helpers.

All pharmacy timestamps use Philippine time (UTC+8) in the
``YYYY-MM-DD HH:MM:SS`` format written by the backend.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

PHARMACY_TZ = timezone(timedelta(hours=8), name="Asia/Manila")
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def pharmacy_now() -> datetime:
    """Get the current time in UTC+8."""
    return datetime.now(PHARMACY_TZ)


def to_pharmacy_time(value: datetime) -> datetime:
    """Convert a datetime to UTC+8.

    Naive datetimes are taken to be UTC.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(PHARMACY_TZ)


def format_timestamp(value: datetime | None = None) -> str:
    """Format a datetime (default: now) as a UTC+8 timestamp string."""
    if value is None:
        return pharmacy_now().strftime(TIMESTAMP_FORMAT)
    return to_pharmacy_time(value).strftime(TIMESTAMP_FORMAT)


def ensure_timestamp(value: object) -> str:
    """Coerce a value into a UTC+8 timestamp string.

    Strings that already look like a full timestamp are returned as-is.
    Other strings are parsed as ISO 8601. Anything else yields "now".

    Args:
        value: A datetime, a string, or None.

    Returns:
        Timestamp string in ``YYYY-MM-DD HH:MM:SS`` form.
    """
    if isinstance(value, datetime):
        return format_timestamp(value)
    if isinstance(value, str):
        if len(value) == 19:
            try:
                datetime.strptime(value, TIMESTAMP_FORMAT)
                return value
            except ValueError:
                pass
        try:
            return format_timestamp(datetime.fromisoformat(value.replace("Z", "+00:00")))
        except ValueError:
            return format_timestamp()
    return format_timestamp()


def pharmacy_date_key(value: datetime | None = None) -> str:
    """Get the UTC+8 calendar date as an ISO string (e.g. "2025-01-31")."""
    moment = pharmacy_now() if value is None else to_pharmacy_time(value)
    return moment.date().isoformat()
