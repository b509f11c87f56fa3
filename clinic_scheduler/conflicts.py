"""The one overlap test used for every scheduling decision."""
from __future__ import annotations

from datetime import datetime
from typing import Iterable, Union

from pydantic import ValidationError

from .errors import InvalidInterval
from .models import Appointment, LocalWallClock, TimeInterval
from .timezones import get_zone, to_instant

IntervalLike = Union[TimeInterval, Appointment, tuple]


def make_interval(start: datetime, end: datetime, tz: str | None = None) -> TimeInterval:
    """Build a TimeInterval, reading naive bounds as wall-clock time in ``tz``."""
    if tz is not None:
        get_zone(tz)
        start = _resolve(start, tz)
        end = _resolve(end, tz)
    try:
        return TimeInterval(start=start, end=end, timezone=tz)
    except ValidationError as exc:
        raise InvalidInterval(start, end, exc.errors()[0]["msg"]) from exc


def _resolve(value: datetime, tz: str) -> datetime:
    if value.tzinfo is not None:
        return value
    return to_instant(LocalWallClock.from_datetime(value), tz)


def as_interval(value: IntervalLike) -> TimeInterval:
    if isinstance(value, TimeInterval):
        return value
    if isinstance(value, Appointment):
        return value.interval
    start, end, *rest = value
    return make_interval(start, end, rest[0] if rest else None)


def overlaps(a: IntervalLike, b: IntervalLike) -> bool:
    """True when the half-open intervals share an instant.

    Touching endpoints (``a.end == b.start``) do not overlap.
    """
    a = as_interval(a)
    b = as_interval(b)
    return a.start < b.end and b.start < a.end


def find_conflicts(
    proposed: IntervalLike,
    appointments: Iterable[Appointment],
    exclude_id: str | None = None,
) -> list[Appointment]:
    """Non-cancelled appointments overlapping ``proposed``, minus ``exclude_id``."""
    proposed = as_interval(proposed)
    return [
        appt
        for appt in appointments
        if appt.is_active and (exclude_id is None or appt.id != exclude_id) and overlaps(proposed, appt)
    ]
