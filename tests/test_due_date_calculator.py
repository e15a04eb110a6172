"""
Tests for SLA due date calculation
"""
from datetime import date, datetime, timedelta, timezone

import pytest

from helpdesk.sla.domain import BusinessHoursConfig, DueDateCalculator, resolve_timezone


UTC = timezone.utc
OFFICE_HOURS = BusinessHoursConfig()


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=UTC)


def due(created_at, minutes, config=OFFICE_HOURS, tz="UTC", enabled=True):
    return DueDateCalculator.calculate_due_date(created_at, minutes, enabled, config, tz)


def test_calendar_time_when_business_hours_disabled():
    created = utc(2024, 1, 19, 16, 0)  # Friday

    assert due(created, 240, enabled=False) == utc(2024, 1, 19, 20, 0)


def test_missing_config_falls_back_to_calendar_time():
    created = utc(2024, 1, 20, 12, 0)  # Saturday

    assert due(created, 90, config=None) == created + timedelta(minutes=90)


def test_same_day_within_business_hours():
    assert due(utc(2024, 1, 15, 10, 0), 120) == utc(2024, 1, 15, 12, 0)


def test_target_exactly_fills_the_day():
    assert due(utc(2024, 1, 15, 16, 0), 120) == utc(2024, 1, 15, 18, 0)


def test_spans_the_weekend():
    """Friday 16:00 + 4h -> 2h on Friday, 2h on Monday"""
    assert due(utc(2024, 1, 19, 16, 0), 240) == utc(2024, 1, 22, 10, 0)


def test_created_before_opening_snaps_to_opening():
    assert due(utc(2024, 1, 15, 6, 30), 60) == utc(2024, 1, 15, 9, 0)


def test_created_after_closing_starts_next_business_day():
    assert due(utc(2024, 1, 15, 19, 0), 60) == utc(2024, 1, 16, 9, 0)


def test_created_on_weekend_starts_monday():
    assert due(utc(2024, 1, 20, 11, 0), 30) == utc(2024, 1, 22, 8, 30)


def test_multi_day_target():
    """25 business hours from Monday 08:00 end on Wednesday 13:00"""
    assert due(utc(2024, 1, 15, 8, 0), 25 * 60) == utc(2024, 1, 17, 13, 0)


def test_holidays_are_skipped():
    config = BusinessHoursConfig(holidays=(date(2024, 1, 16),))

    assert due(utc(2024, 1, 15, 17, 0), 120, config=config) == utc(2024, 1, 17, 9, 0)


def test_custom_workdays_and_hours():
    """Sunday-Thursday, 09:00-17:00"""
    config = BusinessHoursConfig(workdays=frozenset({0, 1, 2, 3, 4}), start_time="09:00", end_time="17:00")

    # Thursday 16:00 + 2h -> 1h Thursday, Friday and Saturday off, 1h Sunday
    assert due(utc(2024, 1, 18, 16, 0), 120, config=config) == utc(2024, 1, 21, 10, 0)


def test_business_hours_in_organization_timezone():
    """New York in January is UTC-5; 15:00 local + 4h ends Tuesday 09:00 local"""
    result = due(utc(2024, 1, 15, 20, 0), 240, tz="America/New_York")

    assert result == utc(2024, 1, 16, 14, 0)
    assert result.tzinfo is not None


def test_windows_timezone_names_are_mapped():
    result = due(utc(2024, 1, 15, 20, 0), 240, tz="Eastern Standard Time")

    assert result == utc(2024, 1, 16, 14, 0)


def test_daylight_saving_change_uses_local_wall_clock():
    """US clocks spring forward on 2024-03-10; Monday 08:30 EDT is 12:30 UTC"""
    result = due(utc(2024, 3, 8, 22, 30), 60, tz="America/New_York")  # Friday 17:30 EST

    assert result == utc(2024, 3, 11, 12, 30)


def test_unknown_timezone_falls_back_to_utc():
    assert resolve_timezone("Mars/Olympus_Mons") == UTC
    assert due(utc(2024, 1, 15, 10, 0), 120, tz="Mars/Olympus_Mons") == utc(2024, 1, 15, 12, 0)


def test_single_digit_opening_hour_is_honored():
    config = BusinessHoursConfig.parse({"startTime": "9:00", "endTime": "17:00"})

    # Monday 08:00 snaps to 09:00, not the 08:00 default
    assert due(utc(2024, 1, 15, 8, 0), 60, config=config) == utc(2024, 1, 15, 10, 0)


def test_opening_time_with_offset_does_not_raise():
    config = BusinessHoursConfig.parse({"startTime": "09:00+05:00", "endTime": "17:00"})

    # Start falls back to 08:00; the end of day stays 17:00
    assert due(utc(2024, 1, 15, 10, 0), 60, config=config) == utc(2024, 1, 15, 11, 0)
    assert due(utc(2024, 1, 15, 16, 30), 60, config=config) == utc(2024, 1, 16, 8, 30)


def test_naive_input_is_treated_as_utc_and_stays_naive():
    result = due(datetime(2024, 1, 19, 16, 0), 240)

    assert result == datetime(2024, 1, 22, 10, 0)
    assert result.tzinfo is None


def test_schedule_without_workdays_falls_back_to_calendar_time():
    """No business day within the iteration bound -> calendar arithmetic"""
    config = BusinessHoursConfig(workdays=frozenset())
    created = utc(2024, 1, 15, 10, 0)

    assert due(created, 120, config=config) == created + timedelta(minutes=120)


def test_all_holidays_for_a_year_falls_back_to_calendar_time():
    start = date(2024, 1, 15)
    config = BusinessHoursConfig(holidays=tuple(start + timedelta(days=i) for i in range(400)))
    created = utc(2024, 1, 15, 10, 0)

    assert due(created, 60, config=config) == created + timedelta(minutes=60)


@pytest.mark.parametrize("created", [
    utc(2024, 1, 15, 10, 0),
    utc(2024, 1, 19, 17, 59),
    utc(2024, 1, 21, 3, 0),
])
def test_due_date_never_precedes_creation(created):
    assert due(created, 1) > created
