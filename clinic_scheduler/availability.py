"""
Availability Service

Combines the slot grid with a snapshot of existing appointments:
- resolve_availability: partitions a day's grid into available / booked slots
- check_slot_availability: advisory check for one proposed interval
- next_available_slot: first open slot at or after "now"

Nothing here reads storage; callers pass the appointment snapshot in.
"""
from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable

from pydantic import BaseModel

from .conflicts import IntervalLike, as_interval, find_conflicts
from .models import Appointment, LocalWallClock, Slot, SlotListing, SlotsByPeriod, TimeInterval
from .slots import DEFAULT_END_HOUR, DEFAULT_SLOT_DURATION, DEFAULT_START_HOUR, SlotGrid
from .timezones import to_instant, to_local

# (name, first local hour, hour after last)
PERIODS: tuple[tuple[str, int, int], ...] = (
    ("morning", 0, 12),
    ("afternoon", 12, 17),
    ("evening", 17, 24),
)


class Availability(BaseModel):
    day: date
    timezone: str
    parameters: dict
    grid: list[Slot]
    available: list[Slot]
    booked: list[Slot]
    past: list[Slot] = []

    def by_period(self) -> SlotsByPeriod:
        return SlotsByPeriod(**group_by_period(self.available, self.timezone))

    def listing(self) -> SlotListing:
        return SlotListing(all=self.available, by_period=self.by_period())


class SlotCheck(BaseModel):
    available: bool
    conflicts: list[Appointment]


def group_by_period(slots: Iterable[Slot], tz: str) -> dict[str, list[Slot]]:
    """Bucket slots by the local hour their start falls in."""
    groups: dict[str, list[Slot]] = {name: [] for name, _, _ in PERIODS}
    for slot in slots:
        hour = to_local(slot.start, tz).hour
        for name, first, last in PERIODS:
            if first <= hour < last:
                groups[name].append(slot)
                break
    return groups


def resolve_availability(
    day: date,
    tz: str,
    existing: Iterable[Appointment],
    start_hour: int = DEFAULT_START_HOUR,
    end_hour: int = DEFAULT_END_HOUR,
    slot_duration: int = DEFAULT_SLOT_DURATION,
    now: datetime | None = None,
) -> Availability:
    """
    Partition the day's grid against ``existing``.

    A slot is booked when it overlaps any non-cancelled appointment. When
    ``now`` is given, open slots that already started are set aside in
    ``past``. Every grid slot lands in exactly one of available, booked, past.
    """
    grid_spec = SlotGrid(day, tz, start_hour, end_hour, slot_duration)
    existing = list(existing)

    grid: list[Slot] = []
    available: list[Slot] = []
    booked: list[Slot] = []
    past: list[Slot] = []

    for slot in grid_spec:
        grid.append(slot)
        if find_conflicts(slot, existing):
            booked.append(slot)
        elif now is not None and slot.start < now:
            past.append(slot)
        else:
            available.append(slot)

    return Availability(
        day=day,
        timezone=tz,
        parameters=grid_spec.parameters(),
        grid=grid,
        available=available,
        booked=booked,
        past=past,
    )


def check_slot_availability(
    proposed: IntervalLike,
    existing: Iterable[Appointment],
    exclude_id: str | None = None,
) -> SlotCheck:
    """Advisory pre-booking check; the booking guard re-checks before writing."""
    conflicts = find_conflicts(proposed, existing, exclude_id=exclude_id)
    return SlotCheck(available=not conflicts, conflicts=conflicts)


def next_available_slot(
    day: date,
    tz: str,
    existing: Iterable[Appointment],
    now: datetime,
    start_hour: int = DEFAULT_START_HOUR,
    end_hour: int = DEFAULT_END_HOUR,
    slot_duration: int = DEFAULT_SLOT_DURATION,
) -> Slot | None:
    result = resolve_availability(day, tz, existing, start_hour, end_hour, slot_duration, now=now)
    return result.available[0] if result.available else None


def local_day_window(day: date, tz: str) -> TimeInterval:
    """Instants covering the local calendar day ``day`` in ``tz``."""
    start = to_instant(LocalWallClock.from_datetime(datetime.combine(day, time())), tz)
    end = to_instant(LocalWallClock.from_datetime(datetime.combine(day + timedelta(days=1), time())), tz)
    return TimeInterval(start=start, end=end, timezone=tz)


def utc_dates_spanning(interval: IntervalLike) -> list[date]:
    """UTC dates whose appointments could overlap ``interval``.

    Storage filters appointments by the UTC date of their start, so the day
    before the interval is included for appointments running past midnight.
    """
    interval = as_interval(interval)
    first = interval.start.astimezone(timezone.utc).date() - timedelta(days=1)
    last = interval.end.astimezone(timezone.utc).date()
    days = []
    current = first
    while current <= last:
        days.append(current)
        current += timedelta(days=1)
    return days
