"""
test_timeslots.py
=================
Clock-time helpers: parsing, formatting and slot generation.
"""

import datetime

import pytest

from clinic_scheduler.errors import ValidationError
from clinic_scheduler.timeslots import (
    combine, format_display_time, format_time, generate_slots, overlaps,
    parse_date, parse_time, sequential_slot_time,
)


def test_parse_and_format_round_trip_minutes():
    """
    ✅ Test "HH:MM" parsing into minutes and back.
    """
    assert parse_time("00:00") == 0
    assert parse_time("09:30") == 570
    assert parse_time("23:59") == 1439
    assert format_time(570) == "09:30"


@pytest.mark.parametrize("value", ["9:30", "24:00", "12:60", "noon", "", None])
def test_parse_time_rejects_bad_input(value):
    """
    ✅ Test malformed times are rejected with a validation error.
    """
    with pytest.raises(ValidationError):
        parse_time(value)


def test_display_time_uses_twelve_hour_clock():
    """
    ✅ Test 12-hour display formatting around noon and midnight.
    """
    assert format_display_time(0) == "12:00 AM"
    assert format_display_time(9 * 60) == "9:00 AM"
    assert format_display_time(12 * 60) == "12:00 PM"
    assert format_display_time(14 * 60 + 30) == "2:30 PM"


def test_parse_date_accepts_date_datetime_and_iso_string():
    """
    ✅ Test date coercion and rejection of garbage.
    """
    day = datetime.date(2025, 1, 6)
    assert parse_date(day) == day
    assert parse_date(datetime.datetime(2025, 1, 6, 10, 0)) == day
    assert parse_date("2025-01-06") == day
    with pytest.raises(ValidationError):
        parse_date("06/01/2025")


def test_generate_slots_skips_break_and_partial_last_slot():
    """
    ✅ Test 09:00-17:00 with a 13:00-14:00 break in 30-minute slots.
    Expected: 09:00..12:30 and 14:00..16:30, nothing inside the break.
    """
    slots = [format_time(m) for m in generate_slots("09:00", "17:00", 30, "13:00", "14:00")]
    assert slots[0] == "09:00"
    assert slots[-1] == "16:30"
    assert "12:30" in slots
    assert "13:00" not in slots and "13:30" not in slots
    assert "14:00" in slots
    assert len(slots) == 14


def test_generate_slots_drops_slot_running_past_end():
    """
    ✅ Test a 45-minute slot that would overrun the end of the day is dropped.
    """
    slots = [format_time(m) for m in generate_slots("09:00", "10:30", 45)]
    assert slots == ["09:00", "09:45"]


def test_generate_slots_rejects_non_positive_duration():
    with pytest.raises(ValidationError):
        generate_slots("09:00", "10:00", 0)


def test_overlaps_ignores_missing_or_empty_break():
    assert overlaps(60, 90, 80, 100)
    assert not overlaps(60, 90, 90, 100)
    assert not overlaps(60, 90, None, None)
    assert not overlaps(60, 90, 100, 100)


def test_sequential_slot_time_and_combine():
    """
    ✅ Test queue position n maps to start + (n - 1) * duration.
    """
    assert sequential_slot_time("09:00", 1, 15) == "09:00"
    assert sequential_slot_time("09:00", 5, 15) == "10:00"
    with pytest.raises(ValidationError):
        sequential_slot_time("09:00", 0, 15)
    assert combine(datetime.date(2025, 1, 6), "14:30") == datetime.datetime(2025, 1, 6, 14, 30)
