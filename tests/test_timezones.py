from datetime import datetime, timedelta

import pytest
from pydantic import ValidationError

from clinic_scheduler.errors import InvalidTimezone
from clinic_scheduler.models import LocalWallClock
from clinic_scheduler import timezones as tz
from conftest import utc

NY = "America/New_York"


def wall(*args) -> LocalWallClock:
    return LocalWallClock.from_datetime(datetime(*args))


def test_to_instant_uses_offset_for_that_date():
    assert tz.to_instant(wall(2024, 1, 15, 9, 0), NY) == utc(2024, 1, 15, 14, 0)
    assert tz.to_instant(wall(2024, 7, 15, 9, 0), NY) == utc(2024, 7, 15, 13, 0)


@pytest.mark.parametrize("zone", [z.value for z in tz.SUPPORTED_TIMEZONES] + ["Asia/Kolkata", "UTC"])
def test_round_trip(zone):
    local = wall(2024, 7, 4, 9, 30, 15)
    assert tz.to_local(tz.to_instant(local, zone), zone) == local


def test_spring_forward_gap_shifts_forward():
    local = wall(2024, 3, 10, 2, 30)
    assert tz.is_nonexistent(local, NY)
    instant = tz.to_instant(local, NY)
    assert instant == utc(2024, 3, 10, 7, 30)
    assert tz.to_local(instant, NY) == wall(2024, 3, 10, 3, 30)


def test_fall_back_resolves_to_earlier_instant():
    local = wall(2024, 11, 3, 1, 30)
    assert tz.is_ambiguous(local, NY)
    assert not tz.is_nonexistent(local, NY)
    # 01:30 EDT, not 01:30 EST an hour later
    assert tz.to_instant(local, NY) == utc(2024, 11, 3, 5, 30)


def test_ordinary_time_is_neither_ambiguous_nor_missing():
    local = wall(2024, 11, 3, 9, 0)
    assert not tz.is_ambiguous(local, NY)
    assert not tz.is_nonexistent(local, NY)
    assert not tz.is_ambiguous(wall(2024, 3, 10, 2, 30), NY)


def test_phoenix_has_no_transitions():
    assert not tz.is_nonexistent(wall(2024, 3, 10, 2, 30), "America/Phoenix")
    assert tz.to_instant(wall(2024, 7, 1, 9, 0), "America/Phoenix") == utc(2024, 7, 1, 16, 0)


@pytest.mark.parametrize("name", ["Mars/Olympus_Mons", "", "America"])
def test_unknown_timezone(name):
    with pytest.raises(InvalidTimezone):
        tz.get_zone(name)
    with pytest.raises(InvalidTimezone):
        tz.to_instant(wall(2024, 1, 1, 9, 0), name)


def test_to_local_rejects_naive():
    with pytest.raises(ValueError):
        tz.to_local(datetime(2024, 1, 1, 9, 0), NY)


def test_format_instant():
    assert tz.format_instant(utc(2024, 12, 1, 15, 0), NY) == "Dec 1, 2024 10:00 AM"
    assert tz.format_instant(utc(2024, 12, 1, 15, 0), "America/Los_Angeles", "%H:%M") == "07:00"


def test_format_appointment_time():
    text = tz.format_appointment_time(utc(2024, 12, 1, 10, 0), utc(2024, 12, 1, 10, 30), NY)
    assert text == "Dec 1, 2024 • 5:00 AM - 5:30 AM (EST/EDT)"
    bare = tz.format_appointment_time(utc(2024, 12, 1, 10, 0), utc(2024, 12, 1, 10, 30), "Europe/Paris", show_timezone=False)
    assert bare == "Dec 1, 2024 • 11:00 AM - 11:30 AM"


def test_timezone_offset():
    assert tz.timezone_offset(NY, utc(2024, 12, 1)) == "-05:00"
    assert tz.timezone_offset(NY, utc(2024, 7, 1)) == "-04:00"
    assert tz.timezone_offset("Asia/Kolkata", utc(2024, 7, 1)) == "+05:30"


def test_convert_interval_reads_naive_bounds_in_source_zone():
    start, end = tz.convert_interval(datetime(2024, 12, 1, 9, 0), datetime(2024, 12, 1, 9, 30), NY, "America/Los_Angeles")
    assert (start.hour, end.hour, end.minute) == (6, 6, 30)
    assert start.utcoffset() == timedelta(hours=-8)
    assert start == utc(2024, 12, 1, 14, 0)


def test_durations():
    assert tz.calculate_duration(utc(2024, 1, 1, 9, 0), utc(2024, 1, 1, 10, 30)) == 90
    assert tz.format_duration(45) == "45m"
    assert tz.format_duration(60) == "1h"
    assert tz.format_duration(90) == "1h 30m"


def test_timezone_info():
    assert tz.timezone_info(NY).abbreviation == "EST/EDT"
    assert tz.timezone_info("Europe/Paris") is None


@pytest.mark.parametrize("year,month,day", [(2024, 2, 30), (2023, 2, 29), (2024, 4, 31)])
def test_wall_clock_rejects_impossible_dates(year, month, day):
    with pytest.raises(ValidationError):
        LocalWallClock(year=year, month=month, day=day, hour=9)


def test_wall_clock_accepts_leap_day():
    assert tz.to_instant(LocalWallClock(year=2024, month=2, day=29, hour=9), NY) == utc(2024, 2, 29, 14, 0)
