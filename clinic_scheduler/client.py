"""Async client for the practice records backend (FHIR-style Appointment API).
Assumes OAuth2 client-credentials flow.
"""
from __future__ import annotations
import os
import time
from datetime import date
from typing import Any

import httpx
from dotenv import load_dotenv

from .errors import PersistenceError, ReferentialViolation, UniqueViolation
from .log import get_structured_logger, log_scheduling_event
from .models import Appointment, AppointmentCreate, AppointmentStatus

load_dotenv()

_BASE_URL = os.getenv("RECORDS_BASE_URL", "https://sandbox.clinicrecords.example/api")
_TOKEN_URL = os.getenv("RECORDS_TOKEN_URL", f"{_BASE_URL}/oauth2/token")
_CLIENT_ID = os.getenv("RECORDS_CLIENT_ID")
_CLIENT_SECRET = os.getenv("RECORDS_CLIENT_SECRET")

# refetch this long before the backend-reported expiry
_TOKEN_LEEWAY_SECONDS = 300

# FHIR appointment status <-> ours
_FROM_FHIR = {
    "booked": AppointmentStatus.scheduled,
    "pending": AppointmentStatus.scheduled,
    "arrived": AppointmentStatus.scheduled,
    "checked-in": AppointmentStatus.scheduled,
    "fulfilled": AppointmentStatus.completed,
    "cancelled": AppointmentStatus.cancelled,
    "noshow": AppointmentStatus.cancelled,
    "entered-in-error": AppointmentStatus.cancelled,
}
_TO_FHIR = {
    AppointmentStatus.scheduled: "booked",
    AppointmentStatus.completed: "fulfilled",
    AppointmentStatus.cancelled: "cancelled",
}
_TZ_EXTENSION = "urn:clinic-scheduler:display-timezone"

logger = get_structured_logger("clinic_scheduler.client")


class _BearerToken:
    """Access token plus the monotonic deadline after which it is refetched."""

    def __init__(self, value: str, expires_in: float):
        self.value = value
        self.refresh_at = time.monotonic() + expires_in - _TOKEN_LEEWAY_SECONDS

    def usable(self) -> bool:
        return time.monotonic() < self.refresh_at


_token: _BearerToken | None = None


async def _get_token() -> str:
    """Client-credentials token, reused until shortly before it expires."""
    global _token
    if _token is not None and _token.usable():
        return _token.value

    try:
        async with httpx.AsyncClient(http2=True, timeout=15) as client:
            resp = await client.post(
                _TOKEN_URL,
                data={"grant_type": "client_credentials"},
                auth=(_CLIENT_ID or "", _CLIENT_SECRET or ""),
            )
    except httpx.HTTPError as exc:
        raise PersistenceError(f"Token endpoint unreachable: {exc}") from exc
    _raise_for_status(resp)
    payload = resp.json()
    _token = _BearerToken(payload["access_token"], float(payload.get("expires_in", 3600)))
    return _token.value


def _raise_for_status(resp: httpx.Response, on_write: bool = False) -> None:
    """Translate backend failures into persistence errors the core understands."""
    if resp.is_success:
        return
    detail = resp.text[:500] or resp.reason_phrase
    log_scheduling_event(
        logger,
        "persistence_error",
        f"{resp.request.method} {resp.request.url.path} -> {resp.status_code}",
        error_code=str(resp.status_code),
        error_message=detail,
    )
    if resp.status_code == 409:
        raise UniqueViolation(detail, status_code=409)
    if on_write and resp.status_code in (404, 422):
        raise ReferentialViolation(detail, status_code=resp.status_code)
    raise PersistenceError(detail, status_code=resp.status_code)


async def _request(method: str, path: str, *, on_write: bool = False, **kwargs: Any) -> httpx.Response:
    headers = {"Authorization": f"Bearer {await _get_token()}", "Accept": "application/json"}
    headers.update(kwargs.pop("headers", {}))
    try:
        async with httpx.AsyncClient(http2=True, timeout=15) as client:
            resp = await client.request(method, f"{_BASE_URL}{path}", headers=headers, **kwargs)
    except httpx.HTTPError as exc:
        raise PersistenceError(f"Records backend unreachable: {exc}") from exc
    if method == "GET" and resp.status_code == 404:
        return resp
    _raise_for_status(resp, on_write=on_write)
    return resp


def _to_appointment(resource: dict[str, Any]) -> Appointment:
    subject = resource.get("subject", {})
    timezone = next(
        (ext.get("valueString") for ext in resource.get("extension", []) if ext.get("url") == _TZ_EXTENSION),
        None,
    )
    return Appointment(
        id=resource.get("id"),
        patient_id=subject.get("reference", "").replace("Patient/", ""),
        patient_name=subject.get("display"),
        start_time=resource.get("start"),
        end_time=resource.get("end"),
        status=_FROM_FHIR.get(resource.get("status", "booked"), AppointmentStatus.scheduled),
        reason=resource.get("description"),
        notes=resource.get("comment"),
        timezone=timezone,
    )


def _to_resource(data: AppointmentCreate) -> dict[str, Any]:
    resource: dict[str, Any] = {
        "resourceType": "Appointment",
        "status": _TO_FHIR[data.status],
        "start": data.start_time.isoformat(),
        "end": data.end_time.isoformat(),
        "subject": {"reference": f"Patient/{data.patient_id}"},
    }
    if data.reason:
        resource["description"] = data.reason
    if data.notes:
        resource["comment"] = data.notes
    if data.timezone:
        resource["extension"] = [{"url": _TZ_EXTENSION, "valueString": data.timezone}]
    return resource


async def fetch_appointments(
    date_iso: str | None = None,
    patient_id: str | None = None,
    status: AppointmentStatus | None = None,
) -> list[Appointment]:
    """Return appointments matching the filters, ordered by start."""
    params: dict[str, str] = {"_sort": "date"}
    if date_iso:
        params["date"] = date_iso
    if patient_id:
        params["patient"] = patient_id
    if status:
        params["status"] = _TO_FHIR[status]

    resp = await _request("GET", "/Appointment", params=params)
    if resp.status_code == 404:
        return []
    bundle = resp.json()
    return [_to_appointment(entry["resource"]) for entry in bundle.get("entry", [])]


async def fetch_appointment(appt_id: str) -> Appointment | None:
    """Fetch appointment details by ID."""
    resp = await _request("GET", f"/Appointment/{appt_id}")
    if resp.status_code == 404:
        return None
    return _to_appointment(resp.json())


async def create_appointment(data: AppointmentCreate) -> Appointment:
    resp = await _request("POST", "/Appointment", on_write=True, json=_to_resource(data))
    return _to_appointment(resp.json())


async def patch_appointment(appt_id: str, changes: dict[str, Any]) -> Appointment:
    """Apply a JSON-patch to an appointment and return the stored result."""
    patch_body = []
    for field, value in changes.items():
        if field == "status":
            patch_body.append({"op": "replace", "path": "/status", "value": _TO_FHIR[AppointmentStatus(value)]})
        elif field == "start_time":
            patch_body.append({"op": "replace", "path": "/start", "value": value.isoformat()})
        elif field == "end_time":
            patch_body.append({"op": "replace", "path": "/end", "value": value.isoformat()})
        elif field == "timezone":
            patch_body.append({"op": "add", "path": "/extension", "value": [{"url": _TZ_EXTENSION, "valueString": value}]})
    resp = await _request(
        "PATCH",
        f"/Appointment/{appt_id}",
        on_write=True,
        headers={"Content-Type": "application/json-patch+json"},
        json=patch_body,
    )
    return _to_appointment(resp.json())


class RecordsAppointmentRepository:
    """AppointmentRepository backed by the records backend."""

    async def get_appointments(
        self,
        date: date | None = None,
        patient_id: str | None = None,
        status: AppointmentStatus | None = None,
    ) -> list[Appointment]:
        return await fetch_appointments(date.isoformat() if date else None, patient_id, status)

    async def get_appointment(self, appointment_id: str) -> Appointment | None:
        return await fetch_appointment(appointment_id)

    async def insert_appointment(self, data: AppointmentCreate) -> Appointment:
        return await create_appointment(data)

    async def update_appointment(self, appointment_id: str, changes: dict[str, Any]) -> Appointment:
        return await patch_appointment(appointment_id, changes)
