"""
timeslots.py
============
Clock-time helpers shared by the availability resolver and the validator.
Times are "HH:MM" strings on the wire and minutes-since-midnight internally.
"""

import datetime
import re
from typing import List, Optional

from .errors import ValidationError

_TIME_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def parse_time(value: str) -> int:
    """Parse "HH:MM" into minutes since midnight."""
    if not isinstance(value, str) or not _TIME_RE.match(value):
        raise ValidationError(f"Invalid time '{value}'. Use HH:MM (24-hour)")
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


def format_time(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def format_display_time(minutes: int) -> str:
    """12-hour clock, e.g. 870 -> '2:30 PM'."""
    hours, mins = divmod(minutes, 60)
    period = "PM" if hours >= 12 else "AM"
    display_hours = hours - 12 if hours > 12 else (12 if hours == 0 else hours)
    return f"{display_hours}:{mins:02d} {period}"


def parse_date(value) -> datetime.date:
    """Accept a date, a datetime or an ISO "YYYY-MM-DD" string."""
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    try:
        return datetime.date.fromisoformat(str(value))
    except ValueError:
        raise ValidationError(f"Invalid date '{value}'. Use YYYY-MM-DD")


def overlaps(start: int, end: int, other_start: Optional[int], other_end: Optional[int]) -> bool:
    """True when [start, end) intersects [other_start, other_end)."""
    if other_start is None or other_end is None or other_start >= other_end:
        return False
    return start < other_end and end > other_start


def generate_slots(
    start: str,
    end: str,
    slot_duration: int,
    break_start: Optional[str] = None,
    break_end: Optional[str] = None,
) -> List[int]:
    """
    Slot start times (minutes) at slot_duration increments across working hours.
    A slot overlapping the break, or running past the end of the day, is dropped.
    """
    if slot_duration <= 0:
        raise ValidationError("Slot duration must be a positive number of minutes")

    day_start, day_end = parse_time(start), parse_time(end)
    b_start = parse_time(break_start) if break_start else None
    b_end = parse_time(break_end) if break_end else None

    slots = []
    current = day_start
    while current < day_end:
        slot_end = current + slot_duration
        if slot_end <= day_end and not overlaps(current, slot_end, b_start, b_end):
            slots.append(current)
        current = slot_end
    return slots


def sequential_slot_time(session_start: str, queue_number: int, slot_duration: int) -> str:
    """Slot time for the n-th queue position: start + (n - 1) * duration."""
    if queue_number < 1:
        raise ValidationError("Queue number starts at 1")
    return format_time(parse_time(session_start) + (queue_number - 1) * slot_duration)


def combine(day: datetime.date, hhmm: str) -> datetime.datetime:
    minutes = parse_time(hhmm)
    return datetime.datetime.combine(day, datetime.time(minutes // 60, minutes % 60))
