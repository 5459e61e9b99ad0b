"""
Date and Time utilities

This module handles XMLTV and ISO8601 timestamp parsing.
Centralizes all date parsing logic to maintain consistency across the application.
"""
from datetime import datetime, timedelta, timezone
import logging
import re

logger = logging.getLogger(__name__)

# YYYYMMDDHHMM[SS] with an optional +HHMM / -HHMM offset
_XMLTV_TIME_RE = re.compile(
    r"^(\d{4})(\d{2})(\d{2})(\d{2})(\d{2})(\d{2})?\s*([+-]\d{4})?$"
)

_MIN_YEAR = 1970
_MAX_YEAR = 2100


class DateFormatError(ValueError):
    """Raised when date format is invalid"""
    pass


def _normalize_iso8601_string(date_str: str) -> str:
    """Normalize ISO8601 string by replacing 'Z' with '+00:00'

    Args:
        date_str: ISO8601 datetime string

    Returns:
        Normalized string with explicit timezone offset
    """
    return date_str.replace('Z', '+00:00') if date_str.endswith('Z') else date_str


def parse_iso8601_to_utc(date_str: str) -> datetime:
    """
    Parse ISO8601 date string and convert to UTC datetime

    Args:
        date_str: ISO8601 datetime string (e.g., '2025-10-09T00:00:00Z' or '2025-10-09T00:00:00+01:00')

    Returns:
        Timezone-aware datetime in UTC

    Raises:
        DateFormatError: If the date string format is invalid
    """
    try:
        normalized = _normalize_iso8601_string(date_str)
        dt = datetime.fromisoformat(normalized)
        if dt.tzinfo is None:
            return dt.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc)
    except (ValueError, AttributeError) as e:
        raise DateFormatError(f"Invalid ISO8601 datetime format: '{date_str}'") from e


def parse_xmltv_time(time_str: str | None) -> datetime | None:
    """
    Convert an XMLTV timestamp to a UTC datetime

    Args:
        time_str: XMLTV time like '20080715003000 -0600'; ISO8601 strings are
            accepted as a fallback

    Returns:
        Timezone-aware datetime in UTC, or None when the value is missing,
        malformed, or outside 1970-2100
    """
    if not time_str or not isinstance(time_str, str):
        return None

    value = time_str.strip()
    match = _XMLTV_TIME_RE.match(value)
    if not match:
        try:
            dt = parse_iso8601_to_utc(value)
        except DateFormatError:
            return None
        return dt if _MIN_YEAR <= dt.year <= _MAX_YEAR else None

    year, month, day, hour, minute, second, tz_part = match.groups()
    try:
        dt = datetime(
            int(year), int(month), int(day),
            int(hour), int(minute), int(second or 0),
            tzinfo=timezone.utc,
        )
    except ValueError:
        return None

    if tz_part:
        tz_sign = 1 if tz_part[0] == '+' else -1
        tz_hours = int(tz_part[1:3])
        tz_mins = int(tz_part[3:5])
        if tz_hours > 14 or tz_mins > 59:
            return None
        dt -= timedelta(minutes=tz_sign * (tz_hours * 60 + tz_mins))

    if not _MIN_YEAR <= dt.year <= _MAX_YEAR:
        return None
    return dt


def to_epoch_ms(value: datetime) -> int:
    """Milliseconds since the Unix epoch for an aware datetime."""
    return int(value.timestamp() * 1000)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes read back from SQLite."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
