"""UTC-everywhere time handling. Eliminates timezone bugs at the source."""

from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dateutil.relativedelta import relativedelta


def now_utc() -> datetime:
    """
    Current time in UTC.

    Use this instead of datetime.now() everywhere.
    """
    return datetime.now(timezone.utc)


def to_utc(dt: datetime) -> datetime:
    """
    Convert a datetime to UTC.

    Raises ValueError if datetime is naive (no timezone).
    """
    if dt.tzinfo is None:
        raise ValueError(
            "Cannot convert naive datetime to UTC. Datetime must be timezone-aware."
        )
    return dt.astimezone(timezone.utc)


def assume_timezone(dt: datetime, tz_name: str) -> datetime:
    """
    Interpret a naive datetime as wall-clock time in tz_name, return UTC.

    Aware datetimes are converted to UTC unchanged. Use this only at
    boundaries where a remote system reports local times without an offset.

    Raises:
        ValueError: If timezone name is invalid
    """
    if dt.tzinfo is not None:
        return to_utc(dt)

    try:
        local_tz = ZoneInfo(tz_name)
    except (KeyError, ZoneInfoNotFoundError):
        raise ValueError(f"Unknown timezone: {tz_name}")

    return dt.replace(tzinfo=local_tz).astimezone(timezone.utc)


def add_months(dt: datetime, months: int) -> datetime:
    """
    Add calendar months to a datetime.

    The day is clamped to the last day of the target month, so
    Jan 31 + 1 month is Feb 29 in a leap year (Feb 28 otherwise).
    Time of day and tzinfo are preserved.
    """
    return dt + relativedelta(months=months)


def parse_iso(iso_string: str) -> datetime:
    """
    Parse ISO 8601 datetime string to UTC datetime.

    Raises ValueError if string has no timezone info.
    """
    dt = datetime.fromisoformat(iso_string)
    if dt.tzinfo is None:
        raise ValueError(
            "Cannot parse naive datetime string. "
            "Include timezone offset (e.g., 'Z' or '+00:00')."
        )
    return to_utc(dt)
