"""Slot grid generation for a practice-local calendar day."""
from __future__ import annotations

from datetime import date, datetime, time, timedelta
from typing import Iterator

from .errors import InvalidSlotConfiguration, InvalidTimezone
from .models import LocalWallClock, Slot
from .timezones import format_instant, is_nonexistent, is_supported, to_instant

DEFAULT_START_HOUR = 8
DEFAULT_END_HOUR = 17
DEFAULT_SLOT_DURATION = 30
DISPLAY_PATTERN = "%-I:%M %p"


class SlotGrid:
    """Bookable slots between ``start_hour`` and ``end_hour`` local time on ``day``.

    The grid is lazy and holds no iteration state: each ``iter()`` walks the
    local wall clock again from ``start_hour:00`` in ``slot_duration`` steps and
    yields every slot that ends by ``end_hour:00``. Leftover minutes that do not
    fit a whole slot are dropped, so 08:00-17:00 with 40-minute slots yields 13.

    Slot bounds are resolved to instants one at a time, so a slot that spans a
    DST change lasts more or less than ``slot_duration`` in real time. Slots
    whose local start falls in a spring-forward gap are skipped.
    """

    def __init__(
        self,
        day: date,
        tz: str,
        start_hour: int = DEFAULT_START_HOUR,
        end_hour: int = DEFAULT_END_HOUR,
        slot_duration: int = DEFAULT_SLOT_DURATION,
    ):
        if not is_supported(tz):
            raise InvalidTimezone(tz)
        if not (0 <= start_hour < end_hour <= 24):
            raise InvalidSlotConfiguration(
                f"Invalid hours: start_hour={start_hour}, end_hour={end_hour} (need 0 <= start < end <= 24)"
            )
        if slot_duration <= 0:
            raise InvalidSlotConfiguration(f"Slot duration must be positive, got {slot_duration}")
        if slot_duration > (end_hour - start_hour) * 60:
            raise InvalidSlotConfiguration(
                f"Slot duration {slot_duration} exceeds the {end_hour - start_hour}h window"
            )

        self.day = day
        self.tz = tz
        self.start_hour = start_hour
        self.end_hour = end_hour
        self.slot_duration = slot_duration

    def __iter__(self) -> Iterator[Slot]:
        midnight = datetime.combine(self.day, time())
        step = timedelta(minutes=self.slot_duration)
        tick = midnight + timedelta(hours=self.start_hour)
        close = midnight + timedelta(hours=self.end_hour)

        while tick + step <= close:
            start_local = LocalWallClock.from_datetime(tick)
            if not is_nonexistent(start_local, self.tz):
                yield self._make_slot(start_local, LocalWallClock.from_datetime(tick + step))
            tick += step

    def __len__(self) -> int:
        return sum(1 for _ in self)

    def _make_slot(self, start_local: LocalWallClock, end_local: LocalWallClock) -> Slot:
        start = to_instant(start_local, self.tz)
        end = to_instant(end_local, self.tz)
        return Slot(start=start, end=end, timezone=self.tz, display=format_instant(start, self.tz, DISPLAY_PATTERN))

    @property
    def nominal_count(self) -> int:
        """Slot count on a day without a DST change."""
        return ((self.end_hour - self.start_hour) * 60) // self.slot_duration

    def parameters(self) -> dict:
        return {
            "date": self.day.isoformat(),
            "timezone": self.tz,
            "start_hour": self.start_hour,
            "end_hour": self.end_hour,
            "slot_duration": self.slot_duration,
        }


def generate_time_slots(
    day: date,
    tz: str,
    start_hour: int = DEFAULT_START_HOUR,
    end_hour: int = DEFAULT_END_HOUR,
    slot_duration: int = DEFAULT_SLOT_DURATION,
) -> list[Slot]:
    return list(SlotGrid(day, tz, start_hour, end_hour, slot_duration))


_DURATION_HINTS: tuple[tuple[tuple[str, ...], int], ...] = (
    (("consultation", "physical"), 45),
    (("follow-up", "check-up"), 15),
    (("procedure", "surgery"), 90),
    (("therapy", "counseling"), 60),
)


def suggest_duration(reason: str | None) -> int:
    """Typical visit length in minutes for a free-text appointment reason."""
    if not reason:
        return DEFAULT_SLOT_DURATION
    reason = reason.lower()
    for keywords, minutes in _DURATION_HINTS:
        if any(keyword in reason for keyword in keywords):
            return minutes
    return DEFAULT_SLOT_DURATION
