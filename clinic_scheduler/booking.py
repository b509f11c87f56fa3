"""
Booking Guard

Last check before an appointment is written. The guard re-reads the live
appointments around the proposed interval, runs the shared overlap test, and
only then asks storage to write. Anything overlapping is refused with
SchedulingConflict and nothing is persisted.

The read and the write are separate calls, so a concurrent writer can still
slip in between them. Closing that gap is storage's job (an exclusion
constraint); a UniqueViolation coming back from the write is treated as a
conflict. No in-process lock is taken because this process may not be the
only writer.
"""
from __future__ import annotations

import logging

from .clock import Clock, SystemClock
from .conflicts import find_conflicts, make_interval
from .errors import AppointmentNotFound, InvalidInterval, InvalidStatusTransition, PersistenceError, SchedulingConflict, UniqueViolation
from .log import get_structured_logger, log_scheduling_event
from .models import Appointment, AppointmentCreate, AppointmentReschedule, AppointmentStatus, TimeInterval
from .repository import AppointmentRepository, fetch_candidates

logger = get_structured_logger("clinic_scheduler.booking")

_TRANSITIONS: dict[AppointmentStatus, set[AppointmentStatus]] = {
    AppointmentStatus.scheduled: {AppointmentStatus.completed, AppointmentStatus.cancelled},
    AppointmentStatus.completed: set(),
    AppointmentStatus.cancelled: set(),
}


class BookingGuard:
    def __init__(self, repository: AppointmentRepository, clock: Clock | None = None):
        self.repository = repository
        self.clock = clock or SystemClock()

    async def _assert_free(self, interval: TimeInterval, exclude_id: str | None = None) -> None:
        existing = await fetch_candidates(self.repository, interval)
        conflicts = find_conflicts(interval, existing, exclude_id=exclude_id)
        if conflicts:
            log_scheduling_event(
                logger,
                "booking_rejected",
                f"{len(conflicts)} overlapping appointment(s)",
                level=logging.WARNING,
                appointment_id=exclude_id,
                error_code=SchedulingConflict.code,
            )
            raise SchedulingConflict(interval.start, interval.end, conflicts)

    async def create(self, data: AppointmentCreate) -> Appointment:
        """Persist a new appointment if nothing live overlaps it."""
        interval = data.interval
        if data.start_time < self.clock.now():
            raise InvalidInterval(data.start_time, data.end_time, "Appointment must be in the future")
        if data.status != AppointmentStatus.cancelled:
            await self._assert_free(interval)

        try:
            appt = await self.repository.insert_appointment(data)
        except UniqueViolation as exc:
            raise await self._storage_conflict(interval, exc) from exc

        log_scheduling_event(
            logger,
            "booking_created",
            appointment_id=appt.id,
            patient_id=appt.patient_id,
            status=appt.status.value,
        )
        return appt

    async def reschedule(self, appointment_id: str, request: AppointmentReschedule) -> Appointment:
        """Move a scheduled appointment to a new interval, re-running the conflict check."""
        current = await self.repository.get_appointment(appointment_id)
        if current is None:
            raise AppointmentNotFound(appointment_id)
        if current.status != AppointmentStatus.scheduled:
            raise InvalidStatusTransition(current.status.value, "rescheduled")

        interval = make_interval(request.start_time, request.end_time, request.timezone)
        await self._assert_free(interval, exclude_id=appointment_id)

        changes = {"start_time": interval.start, "end_time": interval.end}
        if request.timezone:
            changes["timezone"] = request.timezone
        try:
            appt = await self.repository.update_appointment(appointment_id, changes)
        except UniqueViolation as exc:
            raise await self._storage_conflict(interval, exc, exclude_id=appointment_id) from exc

        log_scheduling_event(logger, "booking_rescheduled", appointment_id=appt.id, status=appt.status.value)
        return appt

    async def change_status(self, appointment_id: str, status: AppointmentStatus) -> Appointment:
        """Apply a lifecycle transition. Only scheduled appointments can move."""
        current = await self.repository.get_appointment(appointment_id)
        if current is None:
            raise AppointmentNotFound(appointment_id)
        if current.status == status:
            return current
        if status not in _TRANSITIONS[current.status]:
            raise InvalidStatusTransition(current.status.value, status.value)

        appt = await self.repository.update_appointment(appointment_id, {"status": status})
        log_scheduling_event(logger, "status_changed", appointment_id=appt.id, status=appt.status.value)
        return appt

    async def _storage_conflict(
        self, interval: TimeInterval, exc: PersistenceError, exclude_id: str | None = None
    ) -> SchedulingConflict:
        """Storage refused the write; re-read so the conflict names what won the race."""
        log_scheduling_event(
            logger,
            "storage_conflict",
            "storage rejected overlapping write",
            level=logging.WARNING,
            error_code=exc.code,
            error_message=exc.detail,
        )
        existing = await fetch_candidates(self.repository, interval)
        conflicts = find_conflicts(interval, existing, exclude_id=exclude_id)
        return SchedulingConflict(interval.start, interval.end, conflicts)
