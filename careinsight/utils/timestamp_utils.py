"""
Timestamp utilities for consistent time handling across the system.

Care records are written in facility-local time, which is a fixed UTC+9
offset (no daylight saving), so every calendar computation goes through
a ``datetime.timezone`` built from that offset.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional

# Textual timestamp layouts seen in synced spreadsheet rows
TIMESTAMP_FORMATS = (
    '%Y/%m/%d %H:%M:%S',
    '%Y/%m/%d %H:%M',
    '%Y/%m/%d',
    '%Y-%m-%d %H:%M:%S',
    '%Y-%m-%d %H:%M',
    '%Y-%m-%d',
)


def fixed_offset(hours: int = 9) -> timezone:
    """Return a fixed-offset timezone (UTC+9 by default)."""
    return timezone(timedelta(hours=hours))


def parse_timestamp(value: Optional[str], tz: Optional[timezone] = None) -> Optional[datetime]:
    """Parse a textual record timestamp.

    Args:
        value: Timestamp text such as ``2025/6/1 8:30:00`` or an ISO-8601 string
        tz: Offset for naive timestamps and for converting aware ones

    Returns:
        Aware datetime in ``tz``, or None when the text is not a timestamp
    """
    if not value:
        return None
    tz = tz or fixed_offset()
    text = str(value).strip()

    parsed = None
    for fmt in TIMESTAMP_FORMATS:
        try:
            parsed = datetime.strptime(text, fmt)
            break
        except ValueError:
            continue

    if parsed is None:
        try:
            parsed = datetime.fromisoformat(text.replace('Z', '+00:00'))
        except ValueError:
            return None

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=tz)
    return parsed.astimezone(tz)


def day_boundary(day: date, end_of_day: bool = False, tz: Optional[timezone] = None) -> datetime:
    """Return 00:00:00 or 23:59:59 of ``day`` in the fixed offset."""
    tz = tz or fixed_offset()
    moment = time(23, 59, 59) if end_of_day else time(0, 0, 0)
    return datetime.combine(day, moment, tzinfo=tz)


def now_in(tz: Optional[timezone] = None) -> datetime:
    """Current time in the fixed offset."""
    return datetime.now(tz or fixed_offset())


def today_in(tz: Optional[timezone] = None) -> date:
    """Current calendar date in the fixed offset."""
    return now_in(tz).date()


def iso_week_key(day: date) -> str:
    """Return the ISO week key (``YYYY-Www``) containing ``day``."""
    iso_year, iso_week, _ = day.isocalendar()
    return f'{iso_year}-W{iso_week:02d}'


def month_key(day: date) -> str:
    """Return the month key (``YYYY-MM``) containing ``day``."""
    return f'{day.year:04d}-{day.month:02d}'
