"""Typed failures raised by the scheduling core and its collaborators."""
from __future__ import annotations

from datetime import datetime
from typing import Any


class SchedulerError(Exception):
    """Base class for every error the service raises on purpose."""

    code = "scheduler_error"

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "message": str(self)}


class InvalidTimezone(SchedulerError):
    code = "invalid_timezone"

    def __init__(self, timezone: str | None):
        self.timezone = timezone
        super().__init__(f"Unrecognized timezone: {timezone!r}")


class InvalidSlotConfiguration(SchedulerError):
    code = "invalid_slot_configuration"


class InvalidInterval(SchedulerError):
    code = "invalid_interval"

    def __init__(self, start: datetime | None, end: datetime | None, message: str = "End time must be after start time"):
        self.start = start
        self.end = end
        super().__init__(message)


class SchedulingConflict(SchedulerError):
    """The proposed interval overlaps one or more live appointments."""

    code = "scheduling_conflict"

    def __init__(self, start: datetime, end: datetime, conflicts: list | None = None):
        self.start = start
        self.end = end
        self.conflicts = list(conflicts or [])
        super().__init__("Scheduling conflict detected. Please choose a different time.")

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["proposed"] = {"start_time": self.start.isoformat(), "end_time": self.end.isoformat()}
        payload["conflicts"] = [
            {
                "id": appt.id,
                "patient_id": appt.patient_id,
                "start_time": appt.start_time.isoformat(),
                "end_time": appt.end_time.isoformat(),
            }
            for appt in self.conflicts
        ]
        return payload


class RateLimited(SchedulerError):
    code = "rate_limited"

    def __init__(self, retry_after_seconds: int, limit: int, reset_at: datetime, message: str | None = None):
        self.retry_after_seconds = retry_after_seconds
        self.limit = limit
        self.reset_at = reset_at
        super().__init__(message or "Too many requests, please try again later.")

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["retry_after"] = self.retry_after_seconds
        return payload


class AppointmentNotFound(SchedulerError):
    code = "appointment_not_found"

    def __init__(self, appointment_id: str):
        self.appointment_id = appointment_id
        super().__init__(f"Appointment {appointment_id} not found")


class InvalidStatusTransition(SchedulerError):
    code = "invalid_status_transition"

    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot change appointment status from {current} to {requested}")


class PersistenceError(SchedulerError):
    """Opaque failure reported by the storage collaborator."""

    code = "persistence_error"

    def __init__(self, detail: str, status_code: int | None = None):
        self.detail = detail
        self.status_code = status_code
        super().__init__(detail)


class UniqueViolation(PersistenceError):
    code = "unique_violation"


class ReferentialViolation(PersistenceError):
    code = "referential_violation"
