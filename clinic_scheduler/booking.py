"""
booking.py
==========
Booking creation and rescheduling.

Request path: resolve doctor/subject -> Validator -> Token Allocator -> insert.
The insert is guarded by partial unique indexes on the active slot and the
active token. A session booking that loses the race is validated again and
takes the next free slot; an explicit clock slot that loses surfaces as
SlotConflictError.
"""

import datetime
import logging
from typing import Callable, List

from sqlalchemy.exc import IntegrityError

from . import config
from .errors import InvalidTransitionError, NotFoundError, SlotConflictError, ValidationError
from .lifecycle import BookingLifecycle
from .models import Actor, Booking, BookingStatus, Doctor, PaymentStatus, SessionType
from .repository import BookingRepository, DirectoryRepository, Subject
from .timeslots import parse_date
from .tokens import TokenAllocator
from .validator import BookingRequest, BookingValidator, ValidatedSlot

logger = logging.getLogger(__name__)

RESCHEDULABLE = (BookingStatus.booked, BookingStatus.in_queue, BookingStatus.cancelled)


class BookingService:
    def __init__(
        self,
        directory: DirectoryRepository,
        bookings: BookingRepository,
        validator: BookingValidator,
        allocator: TokenAllocator,
        lifecycle: BookingLifecycle,
        clock: Callable[[], datetime.datetime] = None,
        max_attempts: int = None,
    ):
        self.directory = directory
        self.bookings = bookings
        self.validator = validator
        self.allocator = allocator
        self.lifecycle = lifecycle
        self.clock = clock or datetime.datetime.now
        self.max_attempts = max_attempts or config.BOOKING_MAX_ATTEMPTS

    # -- lookups ------------------------------------------------------------

    def get(self, booking_id: int) -> Booking:
        return self.lifecycle.get(booking_id)

    def doctor_queue(self, doctor_id: int, day: datetime.date) -> List[Booking]:
        """Every booking a doctor has on a day, in slot order."""
        if self.directory.get_doctor(doctor_id) is None:
            raise NotFoundError("Doctor not found")
        return self.bookings.for_doctor_day(doctor_id, day)

    def _doctor(self, doctor_id: int, department_id: int = None) -> Doctor:
        doctor = self.directory.get_doctor(doctor_id)
        if doctor is None or not doctor.is_active:
            raise NotFoundError("Doctor not found")
        if department_id is not None and doctor.department_id != department_id:
            raise ValidationError("Doctor does not work in the selected department")
        return doctor

    def _bookable_day(self, value) -> datetime.date:
        day = parse_date(value)
        if day < self.clock().date():
            raise ValidationError("Cannot book an appointment in the past")
        return day

    def _estimated_wait(self, doctor_id: int, day: datetime.date, slot: ValidatedSlot, exclude_id: int = None) -> int:
        ahead = self.bookings.count_active_between(
            doctor_id, day, slot.window.start, slot.time_slot, exclude_id=exclude_id
        )
        return ahead * slot.plan.slot_duration

    # -- create -------------------------------------------------------------

    def create(
        self,
        patient_id: int,
        doctor_id: int,
        day,
        session: SessionType = None,
        time_slot: str = None,
        dependent_id: int = None,
        department_id: int = None,
        symptoms: str = None,
        actor: Actor = Actor.patient,
        payment_status: PaymentStatus = PaymentStatus.pending,
    ) -> Booking:
        patient = self.directory.get_patient(patient_id)
        if patient is None:
            raise NotFoundError("Patient not found")
        subject_name = patient.name
        if dependent_id is not None:
            dependent = self.directory.get_dependent(dependent_id, patient_id)
            if dependent is None:
                raise NotFoundError("Family member not found")
            subject_name = dependent.name

        doctor = self._doctor(doctor_id, department_id)
        day = self._bookable_day(day)

        request = BookingRequest(
            subject=Subject(patient_id, dependent_id),
            doctor=doctor,
            department=doctor.department.name,
            day=day,
            session=SessionType(session) if session else None,
            time_slot=time_slot,
        )

        # An explicit clock slot gets one try. A session booking that loses
        # the slot race is validated again and takes the next free slot, or
        # fails on capacity once the session has filled.
        attempts = 1 if time_slot is not None else self.max_attempts
        token = None
        for attempt in range(1, attempts + 1):
            slot = self.validator.validate(request)
            if token is None or self.bookings.active_with_token(day, token) is not None:
                token = self.allocator.allocate(day)

            booking = Booking(
                patient_id=patient_id,
                dependent_id=dependent_id,
                patient_name=subject_name,
                doctor_id=doctor.id,
                department=request.department,
                booking_date=day,
                time_slot=slot.time_slot,
                session_type=slot.window.session_type,
                queue_number=slot.queue_number,
                token_number=token,
                status=BookingStatus.booked,
                payment_status=PaymentStatus(payment_status),
                symptoms=symptoms,
                estimated_wait_minutes=self._estimated_wait(doctor.id, day, slot),
                created_by=Actor(actor),
                status_changed_at=self.clock(),
            )
            try:
                booking = self.bookings.add(booking)
                break
            except IntegrityError:
                logger.warning(
                    f"⚠️ Lost race for doctor {doctor.id} {day} {slot.time_slot} "
                    f"(attempt {attempt}/{attempts})"
                )
        else:
            raise SlotConflictError()

        logger.info(
            f"✅ Booked {booking.token_number} for {subject_name} with Dr. {doctor.name} "
            f"on {day} at {booking.time_slot} ({booking.session_type.value})"
        )
        return booking

    # -- reschedule ---------------------------------------------------------

    def reschedule(
        self,
        booking_id: int,
        day,
        session: SessionType = None,
        time_slot: str = None,
        doctor_id: int = None,
        actor: Actor = Actor.patient,
        reason: str = None,
    ) -> Booking:
        """
        Move a booking to a new date/time (and optionally doctor). A cancelled
        booking is revived to booked; booked or in_queue bookings are moved in
        place and end up booked. A new token is issued when the date changes
        or the booking is revived.
        """
        booking = self.get(booking_id)
        if booking.status not in RESCHEDULABLE:
            raise InvalidTransitionError(f"Cannot reschedule a {booking.status.value} appointment")

        doctor = self._doctor(doctor_id or booking.doctor_id)
        day = self._bookable_day(day)
        revive = booking.status == BookingStatus.cancelled

        request = BookingRequest(
            subject=Subject(booking.patient_id, booking.dependent_id),
            doctor=doctor,
            department=doctor.department.name,
            day=day,
            session=SessionType(session) if session else None,
            time_slot=time_slot,
        )
        slot = self.validator.validate(request, exclude_id=booking.id)

        token = booking.token_number
        if revive or day != booking.booking_date:
            token = self.allocator.allocate(day)

        wait = self._estimated_wait(doctor.id, day, slot, exclude_id=booking.id)
        now = self.clock()
        booking.doctor_id = doctor.id
        booking.department = request.department
        booking.booking_date = day
        booking.time_slot = slot.time_slot
        booking.session_type = slot.window.session_type
        booking.queue_number = slot.queue_number
        booking.token_number = token
        booking.status = BookingStatus.booked
        booking.status_changed_at = now
        booking.consultation_started_at = None
        booking.estimated_wait_minutes = wait
        booking.rescheduled_at = now
        booking.rescheduled_by = Actor(actor)
        booking.reschedule_reason = reason
        if revive:
            booking.cancellation_reason = None
            booking.cancelled_by = None
            booking.cancelled_at = None

        try:
            booking = self.bookings.save(booking)
        except IntegrityError:
            logger.warning(f"⚠️ Lost race rescheduling booking {booking_id}")
            raise SlotConflictError()

        logger.info(
            f"🔁 Booking {booking.id} {'revived' if revive else 'moved'} to {day} "
            f"{booking.time_slot} with token {booking.token_number}"
        )
        return booking
