"""Appointment read/write contract and the in-memory store used in offline mode."""
from __future__ import annotations

import uuid
from datetime import date, timezone
from typing import Any, Protocol

from .conflicts import IntervalLike, find_conflicts
from .availability import utc_dates_spanning
from .errors import AppointmentNotFound, ReferentialViolation, UniqueViolation
from .models import Appointment, AppointmentCreate, AppointmentStatus


class AppointmentRepository(Protocol):
    """What the scheduling core needs from storage. Results are snapshots."""

    async def get_appointments(
        self,
        date: date | None = None,
        patient_id: str | None = None,
        status: AppointmentStatus | None = None,
    ) -> list[Appointment]:
        ...

    async def get_appointment(self, appointment_id: str) -> Appointment | None:
        ...

    async def insert_appointment(self, data: AppointmentCreate) -> Appointment:
        ...

    async def update_appointment(self, appointment_id: str, changes: dict[str, Any]) -> Appointment:
        ...


async def fetch_candidates(repository: AppointmentRepository, interval: IntervalLike) -> list[Appointment]:
    """Fetch every stored appointment that could overlap ``interval``, de-duplicated."""
    seen: dict[str, Appointment] = {}
    for day in utc_dates_spanning(interval):
        for appt in await repository.get_appointments(date=day):
            seen.setdefault(appt.id, appt)
    return sorted(seen.values(), key=lambda appt: appt.start_time)


class InMemoryAppointmentRepository:
    """Process-local appointment store.

    ``known_patients`` turns on the patient reference check; ``enforce_no_overlap``
    makes inserts and updates fail with UniqueViolation like a storage-side
    exclusion constraint would.
    """

    def __init__(
        self,
        appointments: list[Appointment] | None = None,
        known_patients: set[str] | None = None,
        enforce_no_overlap: bool = False,
    ):
        self._rows: dict[str, Appointment] = {appt.id: appt for appt in appointments or []}
        self.known_patients = known_patients
        self.enforce_no_overlap = enforce_no_overlap

    async def get_appointments(
        self,
        date: date | None = None,
        patient_id: str | None = None,
        status: AppointmentStatus | None = None,
    ) -> list[Appointment]:
        rows = list(self._rows.values())
        if date is not None:
            rows = [appt for appt in rows if appt.start_time.astimezone(timezone.utc).date() == date]
        if patient_id is not None:
            rows = [appt for appt in rows if appt.patient_id == patient_id]
        if status is not None:
            rows = [appt for appt in rows if appt.status == status]
        rows.sort(key=lambda appt: appt.start_time)
        return [appt.model_copy() for appt in rows]

    async def get_appointment(self, appointment_id: str) -> Appointment | None:
        appt = self._rows.get(appointment_id)
        return appt.model_copy() if appt else None

    async def insert_appointment(self, data: AppointmentCreate) -> Appointment:
        if self.known_patients is not None and data.patient_id not in self.known_patients:
            raise ReferentialViolation(f"Patient {data.patient_id} not found", status_code=404)

        appt = Appointment(id=str(uuid.uuid4()), **data.model_dump())
        self._check_constraint(appt)
        self._rows[appt.id] = appt
        return appt.model_copy()

    async def update_appointment(self, appointment_id: str, changes: dict[str, Any]) -> Appointment:
        current = self._rows.get(appointment_id)
        if current is None:
            raise AppointmentNotFound(appointment_id)

        updated = Appointment(**{**current.model_dump(), **changes})
        self._check_constraint(updated)
        self._rows[appointment_id] = updated
        return updated.model_copy()

    def _check_constraint(self, appt: Appointment) -> None:
        if not self.enforce_no_overlap or not appt.is_active:
            return
        if find_conflicts(appt, self._rows.values(), exclude_id=appt.id):
            raise UniqueViolation("appointments_no_overlap constraint violated", status_code=409)
