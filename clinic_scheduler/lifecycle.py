"""
lifecycle.py
============
Booking status state machine.

    booked ──► in_queue ──► consulted
      │           │
      └──► missed ◄┘
    booked / in_queue ──► cancelled | referred

consulted, missed, cancelled and referred are terminal. The reschedule flow
(booking.py) is the one place a cancelled booking may come back to booked.
"""

import datetime
import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from . import config
from .errors import InvalidTransitionError, NotFoundError, SchedulingError
from .models import ACTIVE_STATUSES, Actor, Booking, BookingStatus, PaymentStatus
from .repository import BookingRepository
from .timeslots import combine, parse_time

logger = logging.getLogger(__name__)

TRANSITIONS = {
    BookingStatus.booked: {
        BookingStatus.in_queue,
        BookingStatus.missed,
        BookingStatus.cancelled,
        BookingStatus.referred,
    },
    BookingStatus.in_queue: {
        BookingStatus.consulted,
        BookingStatus.missed,
        BookingStatus.cancelled,
        BookingStatus.referred,
    },
}


def can_transition(current: BookingStatus, target: BookingStatus) -> bool:
    return BookingStatus(target) in TRANSITIONS.get(BookingStatus(current), set())


@dataclass
class CancelResult:
    booking: Booking
    refund_eligible: bool = False


@dataclass
class BulkCancelReport:
    """Outcome of cancelling many bookings, one record at a time."""
    cancelled_ids: List[int] = field(default_factory=list)
    failed_ids: List[int] = field(default_factory=list)
    skipped: int = 0

    @property
    def cancelled(self) -> int:
        return len(self.cancelled_ids)

    @property
    def failed(self) -> int:
        return len(self.failed_ids)

    def merge(self, other: "BulkCancelReport"):
        self.cancelled_ids += other.cancelled_ids
        self.failed_ids += other.failed_ids
        self.skipped += other.skipped


class BookingLifecycle:
    def __init__(self, bookings: BookingRepository, clock: Callable[[], datetime.datetime] = None):
        self.bookings = bookings
        self.clock = clock or datetime.datetime.now

    def get(self, booking_id: int) -> Booking:
        booking = self.bookings.get(booking_id)
        if booking is None:
            raise NotFoundError("Appointment not found")
        return booking

    # -- single booking -----------------------------------------------------

    def transition(
        self,
        booking: Booking,
        target: BookingStatus,
        actor: Actor,
        reason: str = None,
        referred_to: str = None,
    ) -> Booking:
        """Move a booking along the state machine, stamping the transition."""
        target = BookingStatus(target)
        if target == BookingStatus.cancelled:
            return self.cancel(booking, actor, reason).booking

        if not can_transition(booking.status, target):
            raise InvalidTransitionError(
                f"Cannot move a {booking.status.value} appointment to {target.value}"
            )

        now = self.clock()
        booking.status = target
        booking.status_changed_at = now
        if target == BookingStatus.in_queue:
            booking.consultation_started_at = now
        elif target == BookingStatus.consulted:
            booking.consultation_completed_at = now
        elif target == BookingStatus.referred:
            booking.referred_to = referred_to

        self.bookings.save(booking)
        logger.info(f"🔁 Booking {booking.id} ({booking.token_number}) -> {target.value} by {Actor(actor).value}")
        return booking

    def cancel(self, booking: Booking, actor: Actor, reason: str = None) -> CancelResult:
        """
        Cancel one booking. Patients must give notice; a paid patient
        cancellation before the consultation starts is flagged for refund.
        """
        actor = Actor(actor)
        if not can_transition(booking.status, BookingStatus.cancelled):
            raise InvalidTransitionError(f"Cannot cancel a {booking.status.value} appointment")

        now = self.clock()
        refund_eligible = False
        if actor == Actor.patient:
            starts_at = combine(booking.booking_date, booking.time_slot)
            if starts_at - now <= datetime.timedelta(minutes=config.PATIENT_CANCEL_NOTICE_MINUTES):
                hours = config.PATIENT_CANCEL_NOTICE_MINUTES / 60
                raise InvalidTransitionError(
                    f"Cancellations are only allowed up to {hours:g} hours before the appointment"
                )
            refund_eligible = (
                booking.payment_status == PaymentStatus.paid
                and booking.status == BookingStatus.booked
            )

        self.apply_cancellation(booking, actor, reason or f"Cancelled by {actor.value}", now)
        if refund_eligible:
            booking.refund_status = "eligible"
            booking.refund_requested_at = now
        self.bookings.save(booking)
        logger.info(f"🚫 Booking {booking.id} ({booking.token_number}) cancelled by {actor.value}")
        return CancelResult(booking=booking, refund_eligible=refund_eligible)

    @staticmethod
    def apply_cancellation(booking: Booking, actor: Actor, reason: str, now: datetime.datetime):
        booking.status = BookingStatus.cancelled
        booking.cancellation_reason = reason
        booking.cancelled_by = Actor(actor)
        booking.cancelled_at = now
        booking.status_changed_at = now

    # -- bulk ---------------------------------------------------------------

    def cancel_many(self, bookings: Iterable[Booking], actor: Actor, reason: str) -> BulkCancelReport:
        """
        System-side cancellation of many bookings. Only active bookings are
        touched, so re-running is harmless. One record failing is logged and
        counted; the rest carry on.
        """
        report = BulkCancelReport()
        for booking in bookings:
            if booking.status not in ACTIVE_STATUSES:
                report.skipped += 1
                continue
            booking_id = booking.id
            try:
                self.apply_cancellation(booking, actor, reason, self.clock())
                self.bookings.save(booking)
                report.cancelled_ids.append(booking_id)
            except (SQLAlchemyError, SchedulingError) as e:
                self.bookings.db.rollback()
                logger.error(f"❌ Could not cancel booking {booking_id}: {e}")
                report.failed_ids.append(booking_id)
        return report

    def expire_stale(self, resolver, now: Optional[datetime.datetime] = None) -> BulkCancelReport:
        """
        No-show sweep: active bookings from earlier days, and today's active
        bookings whose session has already ended, are cancelled by the system.
        """
        now = now or self.clock()
        today = now.date()
        report = self.cancel_many(
            self.bookings.active_before(today), Actor.system, config.NO_SHOW_CANCELLATION_REASON
        )

        minute_of_day = now.hour * 60 + now.minute
        ended = []
        for booking in self.bookings.active_on(today):
            if minute_of_day >= self._session_end(resolver, booking):
                ended.append(booking)
        report.merge(self.cancel_many(ended, Actor.system, config.NO_SHOW_CANCELLATION_REASON))

        logger.info(
            f"✅ Stale booking sweep done: cancelled {report.cancelled}, failed {report.failed}"
        )
        return report

    @staticmethod
    def _session_end(resolver, booking: Booking) -> int:
        try:
            plan = resolver.day_plan(booking.doctor, booking.booking_date)
            window = plan.session(booking.session_type)
        except SchedulingError:
            window = None
        if window is None:
            # No plan to consult; the slot itself is the last chance
            return parse_time(booking.time_slot) + config.DEFAULT_SLOT_DURATION
        return parse_time(window.end)
