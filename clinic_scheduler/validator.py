"""
validator.py
============
Conflict & Eligibility Validator.

Runs right before token allocation and never writes: a rejected request
burns no token and creates no record. Checks, in order:
 1. the doctor is available that day and the session is open
 2. the subject holds no active booking with this doctor that day
 3. the subject holds no active booking in this department that day
 4. the same-day booking window has not closed
 5. the session (or the requested clock slot) still has room
"""

import datetime
import logging
from dataclasses import dataclass
from typing import Optional

from .availability import AvailabilityResolver, DayPlan, SessionWindow
from .errors import (
    BookingWindowClosedError, DepartmentConflictError, DoctorConflictError,
    DoctorUnavailableError, SessionFullError, SlotConflictError, ValidationError,
)
from .models import Doctor, SessionType
from .repository import BookingRepository, Subject
from .timeslots import parse_time

logger = logging.getLogger(__name__)


@dataclass
class BookingRequest:
    subject: Subject
    doctor: Doctor
    department: str
    day: datetime.date
    session: Optional[SessionType] = None
    time_slot: Optional[str] = None


@dataclass
class ValidatedSlot:
    """What the Validator approved: the plan, the session and the clock slot."""
    plan: DayPlan
    window: SessionWindow
    queue_number: int
    time_slot: str


class BookingValidator:
    def __init__(self, resolver: AvailabilityResolver, bookings: BookingRepository):
        self.resolver = resolver
        self.bookings = bookings

    def validate(self, request: BookingRequest, exclude_id: int = None) -> ValidatedSlot:
        """
        Raise a typed error for the first violated rule, or return the slot
        the booking should occupy. exclude_id skips the booking being moved.
        """
        if request.session is None and request.time_slot is None:
            raise ValidationError("Either a session or a time slot is required")

        logger.debug(
            f"🔍 Validating booking for patient {request.subject.patient_id} with doctor "
            f"{request.doctor.id} on {request.day}"
        )

        plan = self.resolver.day_plan(request.doctor, request.day)
        if not plan.is_available:
            reason = plan.leave_reason or "Not specified"
            raise DoctorUnavailableError(
                f"Doctor is not available on {request.day.isoformat()}. Reason: {reason}"
            )

        window = self._window(plan, request)

        if self.bookings.active_for_subject_doctor(
            request.subject, request.doctor.id, request.day, exclude_id=exclude_id
        ):
            raise DoctorConflictError()

        if self.bookings.active_for_subject_department(
            request.subject, request.department, request.day, exclude_id=exclude_id
        ):
            raise DepartmentConflictError()

        status = self.resolver.session_status(plan, window, exclude_id=exclude_id)
        if status.cutoff_passed:
            raise BookingWindowClosedError(
                f"{window.session_type.value.capitalize()} session booking has closed. "
                f"Booking closes at {status.cutoff_time}"
            )

        if status.booked >= window.max_patients:
            raise SessionFullError(
                f"{window.session_type.value.capitalize()} session is fully booked"
            )

        if request.time_slot is not None:
            taken = self.bookings.taken_times(request.doctor.id, request.day, exclude_id=exclude_id)
            if request.time_slot in taken:
                raise SlotConflictError()
            # Queue position follows the clock slot inside the session
            position = (parse_time(request.time_slot) - parse_time(window.start)) // plan.slot_duration + 1
            return ValidatedSlot(plan, window, position, request.time_slot)

        if status.next_slot_time is None:
            raise SessionFullError(
                f"No time left in the {window.session_type.value} session"
            )
        return ValidatedSlot(plan, window, status.next_queue_number, status.next_slot_time)

    def _window(self, plan: DayPlan, request: BookingRequest) -> SessionWindow:
        if request.time_slot is not None:
            minutes = parse_time(request.time_slot)
            if minutes not in plan.slot_times():
                raise ValidationError(
                    f"Appointment time must be a {plan.slot_duration}-minute slot between "
                    f"{plan.start} and {plan.end}, outside the break"
                )
            window = plan.session_for_time(request.time_slot)
            if window is None:
                raise ValidationError("Selected time is outside every session")
            if request.session is not None and window.session_type != SessionType(request.session):
                raise ValidationError(
                    f"Time {request.time_slot} is not in the {SessionType(request.session).value} session"
                )
        else:
            window = plan.session(request.session)
            if window is None:
                raise DoctorUnavailableError(
                    f"Doctor has no {SessionType(request.session).value} session on {plan.day.isoformat()}"
                )

        if not window.enabled:
            raise DoctorUnavailableError(
                f"Doctor is not available for the {window.session_type.value} session "
                f"on {plan.day.isoformat()}"
            )
        return window
