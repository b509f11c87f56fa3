from __future__ import annotations

from datetime import date, datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field, field_validator, model_validator


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        raise ValueError("datetime must carry a UTC offset")
    return value.astimezone(timezone.utc)


class LocalWallClock(BaseModel):
    """Calendar date and time of day as read off a clock in some timezone."""

    model_config = {"frozen": True}

    year: int
    month: int = Field(ge=1, le=12)
    day: int = Field(ge=1, le=31)
    hour: int = Field(0, ge=0, le=23)
    minute: int = Field(0, ge=0, le=59)
    second: int = Field(0, ge=0, le=59)

    @model_validator(mode="after")
    def _check_calendar_date(self) -> "LocalWallClock":
        try:
            date(self.year, self.month, self.day)
        except ValueError as exc:
            raise ValueError(f"{self.year:04d}-{self.month:02d}-{self.day:02d} is not a calendar date") from exc
        return self

    @classmethod
    def from_datetime(cls, value: datetime) -> "LocalWallClock":
        return cls(
            year=value.year,
            month=value.month,
            day=value.day,
            hour=value.hour,
            minute=value.minute,
            second=value.second,
        )

    def to_naive(self) -> datetime:
        return datetime(self.year, self.month, self.day, self.hour, self.minute, self.second)


class TimezoneOption(BaseModel):
    value: str
    label: str
    abbreviation: str


class TimeInterval(BaseModel):
    """Half-open interval [start, end) between two instants, stored in UTC."""

    model_config = {"frozen": True}

    start: datetime
    end: datetime
    timezone: str | None = None  # source/display zone, never changes the instants

    @field_validator("start", "end")
    @classmethod
    def _normalize(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @model_validator(mode="after")
    def _check_order(self) -> "TimeInterval":
        if self.end <= self.start:
            raise ValueError("End time must be after start time")
        return self

    @property
    def interval(self) -> "TimeInterval":
        return self

    @property
    def duration_minutes(self) -> float:
        return (self.end - self.start).total_seconds() / 60


class Slot(TimeInterval):
    """A candidate bookable interval; generated per request, never stored."""

    display: str


class AppointmentStatus(str, Enum):
    scheduled = "scheduled"
    completed = "completed"
    cancelled = "cancelled"


class Appointment(BaseModel):
    id: str
    patient_id: str
    start_time: datetime
    end_time: datetime
    status: AppointmentStatus = AppointmentStatus.scheduled
    reason: str | None = None
    notes: str | None = None
    timezone: str | None = None  # display only
    patient_name: str | None = None

    @field_validator("start_time", "end_time")
    @classmethod
    def _normalize(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @model_validator(mode="after")
    def _check_order(self) -> "Appointment":
        if self.end_time <= self.start_time:
            raise ValueError("End time must be after start time")
        return self

    @property
    def interval(self) -> TimeInterval:
        return TimeInterval(start=self.start_time, end=self.end_time, timezone=self.timezone)

    @property
    def is_active(self) -> bool:
        return self.status != AppointmentStatus.cancelled


class AppointmentCreate(BaseModel):
    patient_id: str = Field(min_length=1)
    start_time: datetime
    end_time: datetime
    reason: str | None = Field(None, max_length=200)
    status: AppointmentStatus = AppointmentStatus.scheduled
    notes: str | None = Field(None, max_length=1000)
    timezone: str | None = None

    @field_validator("start_time", "end_time")
    @classmethod
    def _normalize(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @model_validator(mode="after")
    def _check_order(self) -> "AppointmentCreate":
        if self.end_time <= self.start_time:
            raise ValueError("End time must be after start time")
        return self

    @property
    def interval(self) -> TimeInterval:
        return TimeInterval(start=self.start_time, end=self.end_time, timezone=self.timezone)


class AppointmentReschedule(BaseModel):
    start_time: datetime
    end_time: datetime
    timezone: str | None = None  # resolves naive times; aware times are taken as-is


class StatusUpdate(BaseModel):
    status: AppointmentStatus


class SlotCheckRequest(BaseModel):
    start_time: datetime
    end_time: datetime
    timezone: str | None = None
    exclude_appointment_id: str | None = None


class ConflictSummary(BaseModel):
    id: str
    start_time: datetime
    end_time: datetime
    patient_name: str
    reason: str | None = None
    timezone: str

    @classmethod
    def from_appointment(cls, appt: Appointment, default_timezone: str) -> "ConflictSummary":
        return cls(
            id=appt.id,
            start_time=appt.start_time,
            end_time=appt.end_time,
            patient_name=(appt.patient_name or "").strip(),
            reason=appt.reason,
            timezone=appt.timezone or default_timezone,
        )


class SlotCheckResponse(BaseModel):
    available: bool
    conflicts: list[ConflictSummary]
    timezone: str


class SlotsByPeriod(BaseModel):
    morning: list[Slot]
    afternoon: list[Slot]
    evening: list[Slot]


class SlotListing(BaseModel):
    all: list[Slot]
    by_period: SlotsByPeriod


class SlotsResponse(BaseModel):
    date: str
    timezone: str
    timezone_info: TimezoneOption | None = None
    total_slots: int
    available_slots: int
    booked_slots: int
    slots: SlotListing
    parameters: dict


class RateWindowEntry(BaseModel):
    count: int
    reset_at: datetime

    def expired(self, now: datetime) -> bool:
        return now > self.reset_at
