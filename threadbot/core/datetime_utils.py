"""Centralized datetime utilities for consistent timezone handling.

All stored timestamps are naive UTC datetimes for database compatibility
(SQLAlchemy models use naive UTC). User-facing schedule math happens in the
user's IANA timezone.

Usage:
    from threadbot.core.datetime_utils import utc_now, is_expired, send_window_offset

    now = utc_now()

    if is_expired(code.expires_at):
        ...

    offset = send_window_offset("Europe/Paris", "09:00", now)
    if offset is not None:
        send_prompt(...)
"""

from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

MINUTES_PER_DAY = 24 * 60


def utc_now() -> datetime:
    """Get current UTC time as naive datetime.

    Returns naive datetime for database compatibility.
    """
    return datetime.now(UTC).replace(tzinfo=None)


def is_expired(expires_at: datetime, now: datetime | None = None) -> bool:
    """Check if a timestamp has expired.

    Args:
        expires_at: Expiry timestamp (naive UTC)
        now: Reference time (naive UTC), defaults to current time

    Returns:
        True if the reference time is past expires_at
    """
    return (now or utc_now()) > expires_at


def to_naive_utc(dt: datetime) -> datetime:
    """Convert a datetime to naive UTC.

    Args:
        dt: Datetime to convert (can be aware or naive)

    Returns:
        Naive UTC datetime for database compatibility
    """
    if dt.tzinfo is None:
        # Already naive, assume it's UTC
        return dt
    return dt.astimezone(UTC).replace(tzinfo=None)


# =============================================================================
# Per-user timezone utilities
# =============================================================================

# Common valid IANA timezones (subset for dropdown UX)
COMMON_TIMEZONES = [
    "UTC",
    "America/New_York",
    "America/Chicago",
    "America/Denver",
    "America/Los_Angeles",
    "America/Toronto",
    "America/Sao_Paulo",
    "Europe/London",
    "Europe/Paris",
    "Europe/Berlin",
    "Europe/Madrid",
    "Asia/Dubai",
    "Asia/Kolkata",
    "Asia/Singapore",
    "Asia/Tokyo",
    "Australia/Sydney",
    "Pacific/Auckland",
]


def is_valid_timezone(tz_name: str) -> bool:
    """Check if a timezone name is a valid IANA identifier."""
    if not tz_name:
        return False
    try:
        ZoneInfo(tz_name)
        return True
    except (ZoneInfoNotFoundError, KeyError, ValueError):
        return False


def parse_local_time(value: str) -> time:
    """Parse an "HH:MM" string into a time object.

    Raises:
        ValueError: If the value is not a valid 24h time
    """
    parts = value.split(":")
    if len(parts) != 2:
        raise ValueError(f"Time must be in HH:MM format, got {value!r}")
    try:
        hour, minute = int(parts[0]), int(parts[1])
    except ValueError as e:
        raise ValueError(f"Time must be in HH:MM format, got {value!r}") from e
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError(f"Invalid hour or minute in {value!r}")
    return time(hour=hour, minute=minute)


def normalize_local_time(value: str) -> str:
    """Return a time string in canonical zero-padded HH:MM form."""
    parsed = parse_local_time(value)
    return f"{parsed.hour:02d}:{parsed.minute:02d}"


def local_now(timezone: str, now: datetime | None = None) -> datetime:
    """Project a UTC instant into a user's timezone.

    Args:
        timezone: IANA timezone string (e.g., "America/New_York")
        now: Naive UTC (or aware) instant, defaults to current time

    Returns:
        Aware datetime in the user's local timezone

    Raises:
        ZoneInfoNotFoundError: If the timezone is unknown
    """
    instant = now or utc_now()
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=UTC)
    return instant.astimezone(ZoneInfo(timezone))


def minutes_from_slot(local_dt: datetime, slot_time: time) -> int:
    """Signed whole-minute distance from the slot time to local wall-clock time.

    Wraps around midnight so 00:02 is +4 from a 23:58 slot. Range is
    [-720, 719].
    """
    current = local_dt.hour * 60 + local_dt.minute
    scheduled = slot_time.hour * 60 + slot_time.minute
    return (current - scheduled + MINUTES_PER_DAY // 2) % MINUTES_PER_DAY - MINUTES_PER_DAY // 2


def send_window_offset(
    timezone: str,
    slot_time_local: str,
    now: datetime | None = None,
    window_minutes: int = 5,
) -> int | None:
    """Minutes past the slot time if "now" is inside the send window, else None.

    The window spans the minute that starts window_minutes + 1 before the
    slot through the minute that starts window_minutes after it: with the
    default of 5, 08:54 and 09:05 are eligible for a 09:00 slot while 08:53
    and 09:06 are not.

    Raises:
        ZoneInfoNotFoundError: If the timezone is unknown
        ValueError: If the slot time is malformed
    """
    slot_time = parse_local_time(slot_time_local)
    offset = minutes_from_slot(local_now(timezone, now), slot_time)
    if -(window_minutes + 1) <= offset <= window_minutes:
        return offset
    return None


def is_in_send_window(
    timezone: str,
    slot_time_local: str,
    now: datetime | None = None,
    window_minutes: int = 5,
) -> bool:
    """Check if current time is within the user's send window for a slot."""
    return send_window_offset(timezone, slot_time_local, now, window_minutes) is not None


def slot_local_date(
    timezone: str,
    slot_time_local: str,
    now: datetime | None = None,
) -> date:
    """The user's calendar date at the slot instant nearest to now.

    A 23:58 slot swept at 00:02 local still belongs to the previous day.
    """
    local = local_now(timezone, now)
    offset = minutes_from_slot(local, parse_local_time(slot_time_local))
    return (local - timedelta(minutes=offset)).date()
