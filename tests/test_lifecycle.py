"""
test_lifecycle.py
=================
Booking status state machine, cancellation rules and the no-show sweep.
"""

import datetime

import pytest

from clinic_scheduler.errors import InvalidTransitionError, NotFoundError
from clinic_scheduler.lifecycle import TRANSITIONS, can_transition
from clinic_scheduler.models import Actor, BookingStatus, PaymentStatus, SessionType
from conftest import TODAY, TOMORROW


@pytest.fixture
def booking(engine, clinic):
    return engine.booking_service.create(
        clinic["patients"][0].id, clinic["doctors"][0].id, TOMORROW, session=SessionType.morning
    )


def test_transition_table():
    assert can_transition(BookingStatus.booked, BookingStatus.in_queue)
    assert can_transition(BookingStatus.in_queue, BookingStatus.consulted)
    assert can_transition(BookingStatus.booked, BookingStatus.missed)
    assert not can_transition(BookingStatus.booked, BookingStatus.consulted)
    for terminal in (BookingStatus.consulted, BookingStatus.missed, BookingStatus.cancelled, BookingStatus.referred):
        assert terminal not in TRANSITIONS
        assert not can_transition(terminal, BookingStatus.booked)


def test_consultation_flow_stamps_times(engine, clock, booking):
    """
    ✅ Test booked -> in_queue -> consulted records when each step happened.
    """
    clock.set(TOMORROW, "09:02")
    engine.lifecycle.transition(booking, BookingStatus.in_queue, Actor.doctor)
    assert booking.consultation_started_at == clock.now

    clock.set(TOMORROW, "09:20")
    engine.lifecycle.transition(booking, BookingStatus.consulted, Actor.doctor)
    assert booking.status == BookingStatus.consulted
    assert booking.consultation_completed_at == clock.now
    assert booking.status_changed_at == clock.now


def test_referral_records_destination(engine, booking):
    engine.lifecycle.transition(booking, BookingStatus.referred, Actor.doctor, referred_to="Cardiology")
    assert booking.status == BookingStatus.referred
    assert booking.referred_to == "Cardiology"


def test_terminal_status_cannot_move(engine, booking):
    """
    ✅ Test a missed booking can be neither consulted nor cancelled.
    """
    engine.lifecycle.transition(booking, BookingStatus.missed, Actor.receptionist)

    with pytest.raises(InvalidTransitionError):
        engine.lifecycle.transition(booking, BookingStatus.consulted, Actor.doctor)
    with pytest.raises(InvalidTransitionError):
        engine.lifecycle.cancel(booking, Actor.receptionist)


def test_staff_cancellation_records_actor_and_reason(engine, booking):
    result = engine.lifecycle.cancel(booking, Actor.receptionist, "Patient phoned in")

    assert result.refund_eligible is False
    assert booking.status == BookingStatus.cancelled
    assert booking.cancelled_by == Actor.receptionist
    assert booking.cancellation_reason == "Patient phoned in"
    assert booking.cancelled_at is not None


def test_patient_cancellation_needs_notice(engine, clock, clinic):
    """
    ✅ Test patients cannot cancel within two hours of the appointment,
    while staff still can.
    """
    booking = engine.booking_service.create(
        clinic["patients"][0].id, clinic["doctors"][0].id, TODAY, session=SessionType.afternoon
    )
    clock.set(TODAY, "12:30")

    with pytest.raises(InvalidTransitionError) as exc:
        engine.lifecycle.cancel(booking, Actor.patient)
    assert "2 hours" in exc.value.message
    assert booking.status == BookingStatus.booked

    engine.lifecycle.cancel(booking, Actor.doctor, "Emergency")
    assert booking.status == BookingStatus.cancelled


def test_paid_patient_cancellation_is_refund_eligible(engine, clinic):
    booking = engine.booking_service.create(
        clinic["patients"][0].id, clinic["doctors"][0].id, TOMORROW,
        session=SessionType.morning, payment_status=PaymentStatus.paid,
    )
    result = engine.lifecycle.cancel(booking, Actor.patient)

    assert result.refund_eligible is True
    assert booking.refund_status == "eligible"
    assert booking.payment_status == PaymentStatus.paid
    assert booking.cancellation_reason == "Cancelled by patient"


def test_unknown_booking(engine):
    with pytest.raises(NotFoundError):
        engine.lifecycle.get(12345)


def test_sweep_cancels_ended_sessions_and_past_days(engine, clock, clinic):
    """
    ✅ Test the no-show sweep.
    Expected: today's morning booking is cancelled once the morning has
    ended, the afternoon one waits, and a booking from a past day goes too.
    """
    doctor = clinic["doctors"][0]
    p1, p2, p3 = clinic["patients"]
    morning = engine.booking_service.create(p1.id, doctor.id, TODAY, session=SessionType.morning)
    afternoon = engine.booking_service.create(p2.id, clinic["doctors"][1].id, TODAY, session=SessionType.afternoon)
    tomorrow = engine.booking_service.create(p3.id, doctor.id, TOMORROW, session=SessionType.morning)

    report = engine.expire_stale_bookings(datetime.datetime.combine(TODAY, datetime.time(13, 5)))
    assert report.cancelled_ids == [morning.id]
    assert morning.cancelled_by == Actor.system
    assert morning.cancellation_reason.startswith("No-show")
    assert afternoon.status == BookingStatus.booked

    day_after = TOMORROW + datetime.timedelta(days=1)
    report = engine.expire_stale_bookings(datetime.datetime.combine(day_after, datetime.time(0, 5)))
    assert sorted(report.cancelled_ids) == sorted([afternoon.id, tomorrow.id])


def test_sweep_leaves_finished_consultations(engine, clinic):
    booking = engine.booking_service.create(
        clinic["patients"][0].id, clinic["doctors"][0].id, TODAY, session=SessionType.morning
    )
    engine.lifecycle.transition(booking, BookingStatus.in_queue, Actor.doctor)
    engine.lifecycle.transition(booking, BookingStatus.consulted, Actor.doctor)

    report = engine.expire_stale_bookings(datetime.datetime.combine(TODAY, datetime.time(18, 0)))
    assert report.cancelled == 0
    assert booking.status == BookingStatus.consulted
