"""
availability.py
===============
Availability Resolver: turns a doctor's Schedule for a day (or the doctor's
default hours when no Schedule exists) into bookable sessions and slots.

 - No Schedule       -> doctor defaults, every session open
 - is_available=False -> no slots, leave reason surfaced
 - is_available=True  -> the Schedule's hours, break and session windows

Session capacity counts active bookings inside the session's clock range.
The next slot handed out in a session is derived from the next queue number:
session_start + (n - 1) * slot_duration.
"""

import datetime
import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from . import config
from .errors import NoScheduleError, NotFoundError
from .models import Doctor, Schedule, SessionType
from .repository import BookingRepository, DirectoryRepository, ScheduleRepository
from .timeslots import (
    format_display_time, format_time, generate_slots, parse_time,
    sequential_slot_time,
)

logger = logging.getLogger(__name__)

SESSION_NAMES = {
    SessionType.morning: "Morning Session",
    SessionType.afternoon: "Afternoon Session",
    SessionType.evening: "Evening Session",
}


# ---------------------------------------------------------------------------
# RESULT TYPES
# ---------------------------------------------------------------------------

@dataclass
class SessionWindow:
    session_type: SessionType
    start: str
    end: str
    enabled: bool
    max_patients: int


@dataclass
class DayPlan:
    """Effective working day for one doctor, before bookings are considered."""
    doctor_id: int
    day: datetime.date
    source: str  # "schedule" or "defaults"
    is_available: bool
    leave_reason: str
    start: str
    end: str
    break_start: Optional[str]
    break_end: Optional[str]
    slot_duration: int
    sessions: List[SessionWindow] = field(default_factory=list)

    def session(self, session_type) -> Optional[SessionWindow]:
        for window in self.sessions:
            if window.session_type == session_type:
                return window
        return None

    def session_for_time(self, hhmm: str) -> Optional[SessionWindow]:
        minutes = parse_time(hhmm)
        for window in self.sessions:
            if parse_time(window.start) <= minutes < parse_time(window.end):
                return window
        return None

    def slot_times(self) -> List[int]:
        """Every clock slot of the day, evening window included when enabled."""
        slots = generate_slots(self.start, self.end, self.slot_duration, self.break_start, self.break_end)
        evening = self.session(SessionType.evening)
        if evening and evening.enabled:
            slots += [s for s in generate_slots(evening.start, evening.end, self.slot_duration) if s not in slots]
        return sorted(slots)


@dataclass
class SlotInfo:
    time: str
    display_time: str
    session_type: Optional[SessionType]
    is_booked: bool


@dataclass
class SessionAvailability:
    session_type: SessionType
    name: str
    start: str
    end: str
    enabled: bool
    capacity: int
    booked: int
    remaining: int
    cutoff_time: str
    cutoff_passed: bool
    next_queue_number: int
    next_slot_time: Optional[str]
    bookable: bool
    closed_reason: Optional[str] = None


@dataclass
class DayAvailability:
    doctor_id: int
    doctor_name: str
    date: datetime.date
    is_available: bool
    source: str
    leave_reason: str = ""
    working_hours: Optional[dict] = None
    break_time: Optional[dict] = None
    slot_duration: Optional[int] = None
    sessions: List[SessionAvailability] = field(default_factory=list)
    slots: List[SlotInfo] = field(default_factory=list)

    def session(self, session_type) -> Optional[SessionAvailability]:
        for s in self.sessions:
            if s.session_type == session_type:
                return s
        return None


# ---------------------------------------------------------------------------
# RESOLVER
# ---------------------------------------------------------------------------

class AvailabilityResolver:
    """Read-only view of what a doctor can still take on a given day."""

    def __init__(
        self,
        directory: DirectoryRepository,
        schedules: ScheduleRepository,
        bookings: BookingRepository,
        clock: Callable[[], datetime.datetime] = None,
    ):
        self.directory = directory
        self.schedules = schedules
        self.bookings = bookings
        self.clock = clock or datetime.datetime.now

    # -- day plan -----------------------------------------------------------

    def day_plan(self, doctor: Doctor, day: datetime.date) -> DayPlan:
        schedule = self.schedules.get(doctor.id, day)
        if schedule is None:
            return self._plan_from_defaults(doctor, day)
        return self._plan_from_schedule(doctor, schedule)

    def _plan_from_defaults(self, doctor: Doctor, day: datetime.date) -> DayPlan:
        if not doctor.default_start_time or not doctor.default_end_time:
            raise NoScheduleError(f"Doctor has no schedule for {day.isoformat()}")

        break_start = doctor.default_break_start or config.DEFAULT_BREAK_START
        break_end = doctor.default_break_end or config.DEFAULT_BREAK_END
        capacity = doctor.default_max_patients or config.DEFAULT_SESSION_CAPACITY
        start, end = doctor.default_start_time, doctor.default_end_time

        morning_end, afternoon_start = _split_points(start, end, break_start, break_end)
        sessions = [
            SessionWindow(SessionType.morning, start, morning_end, True, capacity),
            SessionWindow(SessionType.afternoon, afternoon_start, end, True, capacity),
        ]
        return DayPlan(
            doctor_id=doctor.id,
            day=day,
            source="defaults",
            is_available=True,
            leave_reason="",
            start=start,
            end=end,
            break_start=break_start,
            break_end=break_end,
            slot_duration=doctor.default_slot_duration or config.DEFAULT_SLOT_DURATION,
            sessions=_usable(sessions),
        )

    def _plan_from_schedule(self, doctor: Doctor, schedule: Schedule) -> DayPlan:
        default_capacity = doctor.default_max_patients or config.DEFAULT_SESSION_CAPACITY
        morning_end, afternoon_start = _split_points(
            schedule.start_time, schedule.end_time, schedule.break_start, schedule.break_end
        )
        sessions = [
            SessionWindow(
                SessionType.morning,
                schedule.morning_start or schedule.start_time,
                schedule.morning_end or morning_end,
                bool(schedule.morning_available),
                schedule.morning_max_patients or default_capacity,
            ),
            SessionWindow(
                SessionType.afternoon,
                schedule.afternoon_start or afternoon_start,
                schedule.afternoon_end or schedule.end_time,
                bool(schedule.afternoon_available),
                schedule.afternoon_max_patients or default_capacity,
            ),
            SessionWindow(
                SessionType.evening,
                schedule.evening_start or config.DEFAULT_EVENING_START,
                schedule.evening_end or config.DEFAULT_EVENING_END,
                bool(schedule.evening_available),
                schedule.evening_max_patients or default_capacity,
            ),
        ]
        return DayPlan(
            doctor_id=doctor.id,
            day=schedule.date,
            source="schedule",
            is_available=bool(schedule.is_available),
            leave_reason=schedule.leave_reason or "",
            start=schedule.start_time,
            end=schedule.end_time,
            break_start=schedule.break_start,
            break_end=schedule.break_end,
            slot_duration=schedule.slot_duration or config.DEFAULT_SLOT_DURATION,
            sessions=_usable(sessions),
        )

    # -- session capacity ---------------------------------------------------

    def next_slot(self, plan: DayPlan, window: SessionWindow, exclude_id: int = None):
        """
        (queue_number, time) for the next booking in a session: the lowest
        queue number whose clock slot no active booking holds.
        """
        taken = self.bookings.taken_times(plan.doctor_id, plan.day, exclude_id=exclude_id)
        number = 1
        slot = sequential_slot_time(window.start, number, plan.slot_duration)
        while slot in taken:
            number += 1
            slot = sequential_slot_time(window.start, number, plan.slot_duration)
        return number, slot

    def cutoff_passed(self, day: datetime.date, window: SessionWindow) -> bool:
        now = self.clock()
        if day < now.date():
            return True
        if day > now.date():
            return False
        cutoff = parse_time(window.start) - config.BOOKING_CUTOFF_MINUTES
        return now.hour * 60 + now.minute >= cutoff

    def session_status(self, plan: DayPlan, window: SessionWindow, exclude_id: int = None) -> SessionAvailability:
        booked = self.bookings.count_active_between(
            plan.doctor_id, plan.day, window.start, window.end, exclude_id=exclude_id
        )
        number, slot = self.next_slot(plan, window, exclude_id=exclude_id)
        slot_start = parse_time(window.start) + (number - 1) * plan.slot_duration
        fits = slot_start + plan.slot_duration <= parse_time(window.end)
        cutoff_passed = self.cutoff_passed(plan.day, window)

        closed_reason = None
        if not plan.is_available:
            closed_reason = "doctor_unavailable"
        elif not window.enabled:
            closed_reason = "session_disabled"
        elif cutoff_passed:
            closed_reason = "cutoff"
        elif booked >= window.max_patients or not fits:
            closed_reason = "full"

        return SessionAvailability(
            session_type=window.session_type,
            name=SESSION_NAMES[window.session_type],
            start=window.start,
            end=window.end,
            enabled=window.enabled,
            capacity=window.max_patients,
            booked=booked,
            remaining=max(window.max_patients - booked, 0),
            cutoff_time=format_time(max(parse_time(window.start) - config.BOOKING_CUTOFF_MINUTES, 0)),
            cutoff_passed=cutoff_passed,
            next_queue_number=number,
            next_slot_time=slot if fits else None,
            bookable=closed_reason is None,
            closed_reason=closed_reason,
        )

    # -- public views -------------------------------------------------------

    def resolve(self, doctor_id: int, day: datetime.date) -> DayAvailability:
        """Ordered sessions and slots for one doctor on one day."""
        doctor = self.directory.get_doctor(doctor_id)
        if doctor is None:
            raise NotFoundError("Doctor not found")
        plan = self.day_plan(doctor, day)
        return self._availability(doctor, plan)

    def _availability(self, doctor: Doctor, plan: DayPlan) -> DayAvailability:
        result = DayAvailability(
            doctor_id=doctor.id,
            doctor_name=doctor.name,
            date=plan.day,
            is_available=plan.is_available,
            source=plan.source,
            leave_reason=plan.leave_reason,
        )
        if not plan.is_available:
            logger.info(f"🛑 Doctor {doctor.id} unavailable on {plan.day}: {plan.leave_reason or 'no reason'}")
            return result

        result.working_hours = {"start": plan.start, "end": plan.end}
        if plan.break_start and plan.break_end:
            result.break_time = {"start": plan.break_start, "end": plan.break_end}
        result.slot_duration = plan.slot_duration
        result.sessions = [self.session_status(plan, w) for w in plan.sessions]

        taken = self.bookings.taken_times(doctor.id, plan.day)
        for minutes in plan.slot_times():
            hhmm = format_time(minutes)
            window = plan.session_for_time(hhmm)
            result.slots.append(
                SlotInfo(
                    time=hhmm,
                    display_time=format_display_time(minutes),
                    session_type=window.session_type if window else None,
                    is_booked=hhmm in taken,
                )
            )
        return result

    def department_view(self, department_id: int, day: datetime.date) -> List[DayAvailability]:
        """Availability of every active doctor in a department."""
        department = self.directory.get_department(department_id)
        if department is None:
            raise NotFoundError("Department not found")

        views = []
        for doctor in self.directory.department_doctors(department_id):
            try:
                views.append(self._availability(doctor, self.day_plan(doctor, day)))
            except NoScheduleError:
                views.append(
                    DayAvailability(
                        doctor_id=doctor.id,
                        doctor_name=doctor.name,
                        date=day,
                        is_available=False,
                        source="none",
                        leave_reason="No schedule",
                    )
                )
        return views


# ---------------------------------------------------------------------------
# HELPERS
# ---------------------------------------------------------------------------

def _split_points(start: str, end: str, break_start: Optional[str], break_end: Optional[str]):
    """Where morning ends and afternoon begins: the break, or a noon-ish split."""
    if break_start and break_end and parse_time(break_start) < parse_time(break_end):
        return break_start, break_end
    split = config.DEFAULT_BREAK_START
    clamped = min(max(parse_time(split), parse_time(start)), parse_time(end))
    return format_time(clamped), format_time(clamped)


def _usable(sessions: List[SessionWindow]) -> List[SessionWindow]:
    """Drop windows with no length (e.g. a day that ends before the break)."""
    return [s for s in sessions if parse_time(s.start) < parse_time(s.end)]
