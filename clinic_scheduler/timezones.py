"""Conversions between absolute instants and practice-local wall-clock time.

All instants handed out by this module are aware ``datetime`` objects in UTC.
Wall-clock values are ``LocalWallClock`` tuples read against an IANA zone.

DST handling for local times that do not map to exactly one instant:

* ambiguous ("fall back", e.g. 01:30 on the first Sunday of November in New
  York) resolves to the earlier of the two instants;
* nonexistent ("spring forward", e.g. 02:30 on the second Sunday of March in
  New York) is read with the offset in force before the gap, which moves it
  forward by the size of the gap (02:30 becomes 03:30 EDT).
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .errors import InvalidTimezone
from .models import LocalWallClock, TimezoneOption

# Common medical practice timezones
SUPPORTED_TIMEZONES: tuple[TimezoneOption, ...] = (
    TimezoneOption(value="America/New_York", label="Eastern Time (ET)", abbreviation="EST/EDT"),
    TimezoneOption(value="America/Chicago", label="Central Time (CT)", abbreviation="CST/CDT"),
    TimezoneOption(value="America/Denver", label="Mountain Time (MT)", abbreviation="MST/MDT"),
    TimezoneOption(value="America/Los_Angeles", label="Pacific Time (PT)", abbreviation="PST/PDT"),
    TimezoneOption(value="America/Phoenix", label="Arizona Time (MST)", abbreviation="MST"),
    TimezoneOption(value="America/Anchorage", label="Alaska Time (AKT)", abbreviation="AKST/AKDT"),
    TimezoneOption(value="Pacific/Honolulu", label="Hawaii Time (HST)", abbreviation="HST"),
)

DEFAULT_PATTERN = "%b %-d, %Y %-I:%M %p"


def get_zone(tz: str) -> ZoneInfo:
    """Return the zone for an IANA name or raise InvalidTimezone."""
    if not tz or not isinstance(tz, str):
        raise InvalidTimezone(tz)
    try:
        return ZoneInfo(tz)
    except (ZoneInfoNotFoundError, ValueError, OSError) as exc:
        raise InvalidTimezone(tz) from exc


def timezone_info(tz: str) -> TimezoneOption | None:
    for option in SUPPORTED_TIMEZONES:
        if option.value == tz:
            return option
    return None


def is_supported(tz: str) -> bool:
    return timezone_info(tz) is not None


def to_instant(local: LocalWallClock, tz: str) -> datetime:
    """Resolve a wall-clock reading in ``tz`` to an absolute UTC instant."""
    zone = get_zone(tz)
    wall = local.to_naive().replace(tzinfo=zone, fold=0)
    return wall.astimezone(timezone.utc)


def to_local(instant: datetime, tz: str) -> LocalWallClock:
    """Project an instant onto the wall clock of ``tz``."""
    if instant.tzinfo is None:
        raise ValueError("instant must be timezone-aware")
    return LocalWallClock.from_datetime(instant.astimezone(get_zone(tz)))


def is_nonexistent(local: LocalWallClock, tz: str) -> bool:
    """True when ``local`` falls in a spring-forward gap of ``tz``."""
    return to_local(to_instant(local, tz), tz) != local


def is_ambiguous(local: LocalWallClock, tz: str) -> bool:
    """True when ``local`` occurs twice in ``tz`` (fall-back overlap)."""
    zone = get_zone(tz)
    naive = local.to_naive()
    first = naive.replace(tzinfo=zone, fold=0).utcoffset()
    second = naive.replace(tzinfo=zone, fold=1).utcoffset()
    return first != second and not is_nonexistent(local, tz)


def format_instant(instant: datetime, tz: str, pattern: str = DEFAULT_PATTERN) -> str:
    if instant.tzinfo is None:
        raise ValueError("instant must be timezone-aware")
    return instant.astimezone(get_zone(tz)).strftime(pattern)


def timezone_offset(tz: str, at: datetime | None = None) -> str:
    """Offset of ``tz`` at ``at`` (default: now) as ``+HH:MM``."""
    at = at or datetime.now(timezone.utc)
    offset = at.astimezone(get_zone(tz)).utcoffset() or timedelta(0)
    sign = "-" if offset < timedelta(0) else "+"
    minutes = abs(int(offset.total_seconds())) // 60
    return f"{sign}{minutes // 60:02d}:{minutes % 60:02d}"


def format_appointment_time(start: datetime, end: datetime, tz: str, show_timezone: bool = True) -> str:
    """Render an appointment like ``Dec 1, 2024 • 5:00 AM - 5:30 AM (EST/EDT)``."""
    day = format_instant(start, tz, "%b %-d, %Y")
    start_text = format_instant(start, tz, "%-I:%M %p")
    end_text = format_instant(end, tz, "%-I:%M %p")
    text = f"{day} • {start_text} - {end_text}"
    if show_timezone:
        option = timezone_info(tz)
        text += f" ({option.abbreviation if option else tz})"
    return text


def convert_interval(start: datetime, end: datetime, from_tz: str, to_tz: str) -> tuple[datetime, datetime]:
    """Re-express an interval in ``to_tz``; naive bounds are read in ``from_tz``."""
    target = get_zone(to_tz)

    def resolve(value: datetime) -> datetime:
        if value.tzinfo is None:
            value = to_instant(LocalWallClock.from_datetime(value), from_tz)
        return value.astimezone(target)

    get_zone(from_tz)
    return resolve(start), resolve(end)


def calculate_duration(start: datetime, end: datetime) -> int:
    """Whole minutes between two instants."""
    return round((end - start).total_seconds() / 60)


def format_duration(minutes: int) -> str:
    if minutes < 60:
        return f"{minutes}m"
    hours, remaining = divmod(minutes, 60)
    if remaining == 0:
        return f"{hours}h"
    return f"{hours}h {remaining}m"
