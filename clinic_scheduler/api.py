import os
from datetime import date as Date
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .availability import check_slot_availability, local_day_window, resolve_availability
from .booking import BookingGuard
from .client import RecordsAppointmentRepository
from .clock import SystemClock
from .conflicts import make_interval
from .errors import (
    AppointmentNotFound,
    InvalidInterval,
    InvalidSlotConfiguration,
    InvalidStatusTransition,
    InvalidTimezone,
    PersistenceError,
    RateLimited,
    ReferentialViolation,
    SchedulingConflict,
    SchedulerError,
)
from .log import get_structured_logger, log_scheduling_event
from .models import (
    Appointment,
    AppointmentCreate,
    AppointmentReschedule,
    AppointmentStatus,
    ConflictSummary,
    SlotCheckRequest,
    SlotCheckResponse,
    SlotsResponse,
    StatusUpdate,
    TimezoneOption,
)
from .ratelimit import AdmissionController, api_limiter, client_identifier, create_limiter, rejection_headers
from .repository import AppointmentRepository, InMemoryAppointmentRepository, fetch_candidates
from .timezones import SUPPORTED_TIMEZONES, get_zone, timezone_info

API_KEY = os.getenv("SCHEDULER_API_KEY", "")
DEFAULT_TIMEZONE = os.getenv("DEFAULT_TIMEZONE", "America/New_York")
# HTTPBearer scheme so Swagger-UI can attach the Authorization header globally
auth_scheme = HTTPBearer(auto_error=False)

logger = get_structured_logger("clinic_scheduler.api")

app = FastAPI(title="Clinic Scheduler Service")

_offline_repository = InMemoryAppointmentRepository()
clock = SystemClock()


def verify_api_key(credentials: HTTPAuthorizationCredentials = Depends(auth_scheme)):
    """Validate Bearer token provided via Authorization header"""
    if credentials is None or credentials.scheme.lower() != "bearer" or credentials.credentials != API_KEY:
        raise HTTPException(status_code=401, detail="Invalid API key")


def get_repository() -> AppointmentRepository:
    # OFFLINE_MODE keeps everything in process memory
    if os.getenv("OFFLINE_MODE", "0") == "1":
        return _offline_repository
    return RecordsAppointmentRepository()


def get_guard(repository: AppointmentRepository = Depends(get_repository)) -> BookingGuard:
    return BookingGuard(repository, clock=clock)


def get_api_limiter() -> AdmissionController:
    return api_limiter


def get_create_limiter() -> AdmissionController:
    return create_limiter


def _admit(limiter: AdmissionController, request: Request) -> None:
    client_id = client_identifier(request.headers)
    try:
        decision = limiter.hit(client_id)
    except RateLimited as exc:
        raise HTTPException(status_code=429, detail=exc.to_dict(), headers=rejection_headers(exc))
    # create_rate_limit runs after rate_limit, so its quota is the one reported
    request.state.rate_decision = decision


def rate_limit(request: Request, limiter: AdmissionController = Depends(get_api_limiter)):
    _admit(limiter, request)


def create_rate_limit(request: Request, limiter: AdmissionController = Depends(get_create_limiter)):
    _admit(limiter, request)


@app.middleware("http")
async def quota_headers(request: Request, call_next):
    """Attach X-RateLimit-* to every admitted request, error replies included."""
    response = await call_next(request)
    decision = getattr(request.state, "rate_decision", None)
    if decision is not None:
        for name, value in decision.headers().items():
            if name not in response.headers:
                response.headers[name] = value
    return response


def _http_error(exc: SchedulerError) -> HTTPException:
    if isinstance(exc, (InvalidTimezone, InvalidSlotConfiguration, InvalidInterval)):
        return HTTPException(status_code=400, detail=exc.to_dict())
    if isinstance(exc, SchedulingConflict):
        return HTTPException(status_code=409, detail=exc.to_dict())
    if isinstance(exc, InvalidStatusTransition):
        return HTTPException(status_code=409, detail=exc.to_dict())
    if isinstance(exc, (AppointmentNotFound, ReferentialViolation)):
        return HTTPException(status_code=404, detail=exc.to_dict())
    if isinstance(exc, PersistenceError):
        log_scheduling_event(logger, "persistence_error", str(exc), error_code=exc.code)
        return HTTPException(status_code=502, detail=exc.to_dict())
    return HTTPException(status_code=500, detail=exc.to_dict())


# rate limit first so bad keys are counted too
protected = [Depends(rate_limit), Depends(verify_api_key)]


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/timezones", dependencies=protected, response_model=list[TimezoneOption])
async def list_timezones():
    return list(SUPPORTED_TIMEZONES)


# Slot endpoints -------------------------------------------------------------

@app.get("/slots", dependencies=protected, response_model=SlotsResponse)
async def list_slots(
    date: Optional[str] = Query(None, description="YYYY-MM-DD, local to timezone; defaults to today there"),
    timezone: str = Query(DEFAULT_TIMEZONE),
    start_hour: int = Query(8, ge=0, le=23),
    end_hour: int = Query(17, ge=1, le=24),
    slot_duration: int = Query(30, ge=15, le=120, description="minutes"),
    provider_id: Optional[str] = Query(None, description="reserved for multi-provider scheduling"),
    repository: AppointmentRepository = Depends(get_repository),
):
    """Generate the day's slot grid and split it into free and booked slots."""
    try:
        day = Date.fromisoformat(date) if date else clock.now().astimezone(get_zone(timezone)).date()
    except ValueError:
        raise HTTPException(status_code=400, detail={"error": "invalid_parameters", "message": "Invalid date format"})
    except SchedulerError as exc:
        raise _http_error(exc)

    try:
        window = local_day_window(day, timezone)
        existing = await fetch_candidates(repository, window)
        result = resolve_availability(day, timezone, existing, start_hour, end_hour, slot_duration)
    except SchedulerError as exc:
        raise _http_error(exc)

    log_scheduling_event(
        logger,
        "slots_resolved",
        f"{len(result.available)}/{len(result.grid)} slots free on {day.isoformat()} {timezone}",
    )
    return SlotsResponse(
        date=day.isoformat(),
        timezone=timezone,
        timezone_info=timezone_info(timezone),
        total_slots=len(result.grid),
        available_slots=len(result.available),
        booked_slots=len(result.booked),
        slots=result.listing(),
        parameters={**result.parameters, "provider_id": provider_id},
    )


@app.post("/slots/check", dependencies=protected, response_model=SlotCheckResponse)
async def check_slot(req: SlotCheckRequest, repository: AppointmentRepository = Depends(get_repository)):
    """Advisory availability check for one interval."""
    display_tz = req.timezone or DEFAULT_TIMEZONE
    try:
        proposed = make_interval(req.start_time, req.end_time, req.timezone)
        existing = await fetch_candidates(repository, proposed)
        check = check_slot_availability(proposed, existing, exclude_id=req.exclude_appointment_id)
    except SchedulerError as exc:
        raise _http_error(exc)

    log_scheduling_event(logger, "slot_checked", appointment_id=req.exclude_appointment_id, status=str(check.available))
    return SlotCheckResponse(
        available=check.available,
        conflicts=[ConflictSummary.from_appointment(appt, DEFAULT_TIMEZONE) for appt in check.conflicts],
        timezone=display_tz,
    )


# Appointment endpoints ------------------------------------------------------

@app.get("/appointments", dependencies=protected, response_model=list[Appointment])
async def list_appointments(
    date: Optional[str] = Query(None, description="YYYY-MM-DD (UTC date of start)"),
    patient_id: Optional[str] = Query(None),
    status: Optional[AppointmentStatus] = Query(None),
    repository: AppointmentRepository = Depends(get_repository),
):
    try:
        day = Date.fromisoformat(date) if date else None
    except ValueError:
        raise HTTPException(status_code=400, detail={"error": "invalid_parameters", "message": "Invalid date format"})
    try:
        return await repository.get_appointments(date=day, patient_id=patient_id, status=status)
    except SchedulerError as exc:
        raise _http_error(exc)


@app.get("/appointments/{appointment_id}", dependencies=protected, response_model=Appointment)
async def get_appointment(appointment_id: str, repository: AppointmentRepository = Depends(get_repository)):
    try:
        appt = await repository.get_appointment(appointment_id)
    except SchedulerError as exc:
        raise _http_error(exc)
    if not appt:
        raise HTTPException(status_code=404, detail="Appointment not found")
    return appt


@app.post(
    "/appointments",
    dependencies=protected + [Depends(create_rate_limit)],
    response_model=Appointment,
    status_code=201,
)
async def create_appointment(req: AppointmentCreate, guard: BookingGuard = Depends(get_guard)):
    """Book an appointment; 409 when it overlaps a live one."""
    try:
        return await guard.create(req)
    except SchedulerError as exc:
        raise _http_error(exc)


@app.put("/appointments/{appointment_id}/reschedule", dependencies=protected, response_model=Appointment)
async def reschedule_appointment(
    appointment_id: str,
    req: AppointmentReschedule,
    guard: BookingGuard = Depends(get_guard),
):
    try:
        return await guard.reschedule(appointment_id, req)
    except SchedulerError as exc:
        raise _http_error(exc)


@app.patch("/appointments/{appointment_id}/status", dependencies=protected, response_model=Appointment)
async def update_status(appointment_id: str, req: StatusUpdate, guard: BookingGuard = Depends(get_guard)):
    try:
        return await guard.change_status(appointment_id, req.status)
    except SchedulerError as exc:
        raise _http_error(exc)
