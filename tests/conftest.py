import itertools
from datetime import datetime, timezone

import pytest

from clinic_scheduler.clock import FixedClock
from clinic_scheduler.models import Appointment, AppointmentStatus
from clinic_scheduler.repository import InMemoryAppointmentRepository

_ids = itertools.count(1)


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def make_appointment(start: datetime, end: datetime, status=AppointmentStatus.scheduled, **fields) -> Appointment:
    fields.setdefault("id", f"appt-{next(_ids)}")
    fields.setdefault("patient_id", "patient-1")
    return Appointment(start_time=start, end_time=end, status=status, **fields)


@pytest.fixture
def clock():
    return FixedClock(utc(2024, 11, 30, 12, 0))


@pytest.fixture
def existing_appointment():
    return make_appointment(utc(2024, 12, 1, 10, 0), utc(2024, 12, 1, 10, 30), id="existing", patient_name="Jane Roe")


@pytest.fixture
def repository(existing_appointment):
    return InMemoryAppointmentRepository([existing_appointment])
