from datetime import datetime

import pytest
from fastapi.testclient import TestClient

from clinic_scheduler import api
from clinic_scheduler.ratelimit import AdmissionController
from clinic_scheduler.repository import InMemoryAppointmentRepository
from conftest import make_appointment, utc

AUTH = {"Authorization": "Bearer test-key"}


def parse(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


@pytest.fixture
def store():
    return InMemoryAppointmentRepository(
        [
            # 9:00-9:30 EST on Monday Dec 2
            make_appointment(utc(2024, 12, 2, 14, 0), utc(2024, 12, 2, 14, 30), id="morning", patient_name=" Jane Roe ", reason="Check-up"),
        ]
    )


@pytest.fixture
def client(store, clock, monkeypatch):
    monkeypatch.setattr(api, "API_KEY", "test-key")
    monkeypatch.setattr(api, "clock", clock)
    general = AdmissionController(max_requests=100, window_seconds=60, clock=clock)
    creates = AdmissionController(max_requests=2, window_seconds=60, clock=clock)
    api.app.dependency_overrides[api.get_repository] = lambda: store
    api.app.dependency_overrides[api.get_api_limiter] = lambda: general
    api.app.dependency_overrides[api.get_create_limiter] = lambda: creates
    yield TestClient(api.app)
    api.app.dependency_overrides.clear()


def test_health_needs_no_auth(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_requires_api_key(client):
    assert client.get("/slots").status_code == 401
    assert client.get("/slots", headers={"Authorization": "Bearer wrong"}).status_code == 401


def test_slots(client):
    resp = client.get("/slots", params={"date": "2024-12-02", "timezone": "America/New_York"}, headers=AUTH)
    assert resp.status_code == 200
    body = resp.json()
    assert body["total_slots"] == 18
    assert body["available_slots"] == 17
    assert body["booked_slots"] == 1
    assert body["timezone_info"]["abbreviation"] == "EST/EDT"
    assert len(body["slots"]["all"]) == 17
    assert len(body["slots"]["by_period"]["morning"]) == 7
    assert len(body["slots"]["by_period"]["afternoon"]) == 10
    assert body["slots"]["by_period"]["evening"] == []
    assert "9:00 AM" not in [slot["display"] for slot in body["slots"]["all"]]
    assert parse(body["slots"]["all"][0]["start"]) == utc(2024, 12, 2, 13, 0)
    assert body["parameters"]["slot_duration"] == 30
    assert resp.headers["X-RateLimit-Limit"] == "100"
    assert resp.headers["X-RateLimit-Remaining"] == "99"


def test_slots_default_date_is_today_in_zone(client):
    # clock is 2024-11-30T12:00Z, 7:00 AM in New York
    body = client.get("/slots", headers=AUTH).json()
    assert body["date"] == "2024-11-30"
    assert body["timezone"] == "America/New_York"


@pytest.mark.parametrize(
    "params,status_code",
    [
        ({"date": "2024-12-02", "timezone": "Mars/Base"}, 400),
        ({"date": "2024-12-02", "timezone": "Europe/London"}, 400),
        ({"date": "2024-12-02", "start_hour": 12, "end_hour": 9}, 400),
        ({"date": "2024-12-02", "start_hour": 8, "end_hour": 9, "slot_duration": 90}, 400),
        ({"date": "12/02/2024"}, 400),
        ({"date": "2024-12-02", "slot_duration": 10}, 422),
        ({"date": "2024-12-02", "end_hour": 25}, 422),
    ],
)
def test_slots_rejects_bad_parameters(client, params, status_code):
    assert client.get("/slots", params=params, headers=AUTH).status_code == status_code


def test_slot_check(client):
    resp = client.post(
        "/slots/check",
        json={"start_time": "2024-12-02T14:15:00Z", "end_time": "2024-12-02T14:45:00Z"},
        headers=AUTH,
    )
    body = resp.json()
    assert body["available"] is False
    assert body["conflicts"][0]["id"] == "morning"
    assert body["conflicts"][0]["patient_name"] == "Jane Roe"
    assert body["conflicts"][0]["timezone"] == "America/New_York"

    free = client.post(
        "/slots/check",
        json={"start_time": "2024-12-02T09:30:00", "end_time": "2024-12-02T10:00:00", "timezone": "America/New_York"},
        headers=AUTH,
    ).json()
    assert free == {"available": True, "conflicts": [], "timezone": "America/New_York"}

    itself = client.post(
        "/slots/check",
        json={"start_time": "2024-12-02T14:15:00Z", "end_time": "2024-12-02T14:45:00Z", "exclude_appointment_id": "morning"},
        headers=AUTH,
    ).json()
    assert itself["available"] is True


def test_slot_check_rejects_inverted_interval(client):
    resp = client.post(
        "/slots/check",
        json={"start_time": "2024-12-02T15:00:00Z", "end_time": "2024-12-02T14:00:00Z"},
        headers=AUTH,
    )
    assert resp.status_code == 400
    assert resp.json()["detail"]["error"] == "invalid_interval"


def test_create_and_conflict(client, store):
    resp = client.post(
        "/appointments",
        json={"patient_id": "p-9", "start_time": "2024-12-02T14:30:00Z", "end_time": "2024-12-02T15:00:00Z", "reason": "Follow-up"},
        headers=AUTH,
    )
    assert resp.status_code == 201
    created = resp.json()
    assert created["status"] == "scheduled"
    assert parse(created["start_time"]) == utc(2024, 12, 2, 14, 30)

    clash = client.post(
        "/appointments",
        json={"patient_id": "p-10", "start_time": "2024-12-02T14:45:00Z", "end_time": "2024-12-02T15:15:00Z"},
        headers=AUTH,
    )
    assert clash.status_code == 409
    detail = clash.json()["detail"]
    assert detail["error"] == "scheduling_conflict"
    assert [c["id"] for c in detail["conflicts"]] == [created["id"]]


def test_create_validates_body(client):
    resp = client.post(
        "/appointments",
        json={"patient_id": "p-9", "start_time": "2024-12-02T15:00:00Z", "end_time": "2024-12-02T14:00:00Z"},
        headers=AUTH,
    )
    assert resp.status_code == 422


def test_create_is_rate_limited(client):
    for hour in (18, 19):
        ok = client.post(
            "/appointments",
            json={"patient_id": "p-1", "start_time": f"2024-12-03T{hour}:00:00Z", "end_time": f"2024-12-03T{hour}:30:00Z"},
            headers={**AUTH, "X-Forwarded-For": "203.0.113.9"},
        )
        assert ok.status_code == 201

    limited = client.post(
        "/appointments",
        json={"patient_id": "p-1", "start_time": "2024-12-03T20:00:00Z", "end_time": "2024-12-03T20:30:00Z"},
        headers={**AUTH, "X-Forwarded-For": "203.0.113.9"},
    )
    assert limited.status_code == 429
    assert limited.headers["Retry-After"] == "60"
    assert limited.json()["detail"]["retry_after"] == 60

    other_client = client.post(
        "/appointments",
        json={"patient_id": "p-1", "start_time": "2024-12-03T20:00:00Z", "end_time": "2024-12-03T20:30:00Z"},
        headers={**AUTH, "X-Forwarded-For": "198.51.100.1"},
    )
    assert other_client.status_code == 201


def test_list_and_get(client):
    listed = client.get("/appointments", params={"date": "2024-12-02"}, headers=AUTH).json()
    assert [appt["id"] for appt in listed] == ["morning"]
    assert client.get("/appointments", params={"status": "cancelled"}, headers=AUTH).json() == []
    assert client.get("/appointments/morning", headers=AUTH).json()["reason"] == "Check-up"
    assert client.get("/appointments/unknown", headers=AUTH).status_code == 404


def test_status_and_reschedule(client):
    moved = client.put(
        "/appointments/morning/reschedule",
        json={"start_time": "2024-12-02T10:00:00", "end_time": "2024-12-02T10:30:00", "timezone": "America/New_York"},
        headers=AUTH,
    )
    assert moved.status_code == 200
    assert parse(moved.json()["start_time"]) == utc(2024, 12, 2, 15, 0)

    done = client.patch("/appointments/morning/status", json={"status": "completed"}, headers=AUTH)
    assert done.json()["status"] == "completed"

    reopened = client.patch("/appointments/morning/status", json={"status": "scheduled"}, headers=AUTH)
    assert reopened.status_code == 409
    assert client.patch("/appointments/ghost/status", json={"status": "cancelled"}, headers=AUTH).status_code == 404


def test_timezones(client):
    values = [tz["value"] for tz in client.get("/timezones", headers=AUTH).json()]
    assert "America/Phoenix" in values
    assert len(values) == 7


def test_bad_keys_count_against_the_quota(client, clock):
    strict = AdmissionController(max_requests=3, window_seconds=60, clock=clock)
    api.app.dependency_overrides[api.get_api_limiter] = lambda: strict
    headers = {"Authorization": "Bearer wrong", "X-Forwarded-For": "203.0.113.66"}

    codes = [client.get("/slots", headers=headers).status_code for _ in range(5)]
    assert codes == [401, 401, 401, 429, 429]
    assert strict.store.get("203.0.113.66").count == 5


def test_error_replies_carry_quota_headers(client):
    clash = client.post(
        "/appointments",
        json={"patient_id": "p-10", "start_time": "2024-12-02T14:15:00Z", "end_time": "2024-12-02T14:45:00Z"},
        headers=AUTH,
    )
    assert clash.status_code == 409
    # the create limiter (2 per window) is the one reported
    assert clash.headers["X-RateLimit-Limit"] == "2"
    assert clash.headers["X-RateLimit-Remaining"] == "1"

    missing = client.get("/appointments/unknown", headers=AUTH)
    assert missing.status_code == 404
    assert missing.headers["X-RateLimit-Limit"] == "100"
    assert "X-RateLimit-Reset" in missing.headers
