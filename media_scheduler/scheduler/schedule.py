"""Schedule calculation utilities.

Computes next fire instants for daily (time-of-day) and one-time (absolute
date) actions. All instants returned here are timezone-aware UTC datetimes.
"""
import re
from datetime import datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

DAY_SECONDS = 24 * 60 * 60
DAILY_INTERVAL = timedelta(seconds=DAY_SECONDS)

_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?$")


def utcnow() -> datetime:
    """Get the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_epoch(dt: datetime) -> int:
    """Convert an aware datetime to epoch seconds."""
    return int(dt.timestamp())


def from_epoch(seconds: int | float) -> datetime:
    """Convert epoch seconds to an aware UTC datetime."""
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def parse_time_of_day(value: str) -> time:
    """Parse ``HH:MM`` or ``HH:MM:SS`` into a time.

    Raises:
        ValueError: If the value is malformed or out of range
    """
    match = _TIME_RE.match(value.strip()) if isinstance(value, str) else None
    if not match:
        raise ValueError(f"Invalid time format: {value!r} (expected HH:MM or HH:MM:SS)")

    hours, minutes = int(match.group(1)), int(match.group(2))
    seconds = int(match.group(3)) if match.group(3) else 0
    if not (0 <= hours <= 23 and 0 <= minutes <= 59 and 0 <= seconds <= 59):
        raise ValueError(f"Time out of range: {value!r}")
    return time(hours, minutes, seconds)


def normalize_time(value: str) -> str:
    """Normalize a time-of-day to ``HH:MM:SS``."""
    return parse_time_of_day(value).strftime("%H:%M:%S")


def resolve_timezone(name: str) -> ZoneInfo:
    """Look up an IANA zone.

    Raises:
        ValueError: If the zone name is unknown
    """
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"Unknown timezone: {name!r}") from e


def parse_date(value: datetime | str | int | float | None) -> datetime | None:
    """Parse an absolute date from ISO text or epoch seconds.

    Naive values are returned naive; callers localize them to the
    action's timezone.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)):
        return from_epoch(value)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return datetime.fromisoformat(text)
        except ValueError as e:
            raise ValueError(f"Invalid date: {value!r}") from e
    raise ValueError(f"Invalid date: {value!r}")


def localize(dt: datetime, tz_name: str) -> datetime:
    """Attach the action's zone to a naive datetime."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=resolve_timezone(tz_name))
    return dt


def next_daily_occurrence(time_of_day: str, tz_name: str, now: datetime) -> datetime:
    """Compute the next instant, strictly after ``now``, at ``time_of_day`` in ``tz_name``.

    If today's occurrence has already passed, tomorrow's is returned.
    """
    tz = resolve_timezone(tz_name)
    target = parse_time_of_day(time_of_day)
    local_now = now.astimezone(tz)

    candidate = datetime.combine(local_now.date(), target, tzinfo=tz)
    # Compare in UTC: same-tzinfo comparisons ignore the offset.
    if candidate.astimezone(timezone.utc) <= now.astimezone(timezone.utc):
        candidate = datetime.combine(local_now.date() + timedelta(days=1), target, tzinfo=tz)

    return candidate.astimezone(timezone.utc)


def one_time_instant(date: datetime, tz_name: str) -> datetime:
    """Resolve a one-time action's date to an aware UTC instant."""
    return localize(date, tz_name).astimezone(timezone.utc)


def compute_next_run(
    is_daily: bool,
    time_of_day: str,
    date: datetime | None,
    tz_name: str,
    now: datetime | None = None,
) -> int | None:
    """Compute the ``nextRun`` cache in epoch seconds.

    Returns:
        The next fire instant, or None for a one-time action that is
        already in the past or has no date
    """
    if now is None:
        now = utcnow()

    if is_daily:
        return to_epoch(next_daily_occurrence(time_of_day, tz_name, now))
    if date is None:
        return None

    instant = one_time_instant(date, tz_name)
    if instant < now:
        return None
    return to_epoch(instant)


def describe_schedule(
    is_daily: bool,
    time_of_day: str,
    date: datetime | None,
    tz_name: str,
) -> str:
    """Describe a schedule in a short human-readable form."""
    if is_daily:
        return f"Every day at {time_of_day} ({tz_name})"
    if date is not None:
        local = localize(date, tz_name).astimezone(resolve_timezone(tz_name))
        return f"Once at {local.strftime('%Y-%m-%d %H:%M:%S')} ({tz_name})"
    return "No execution time set"
