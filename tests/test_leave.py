"""
test_leave.py
=============
Leave workflow and the cancellation cascade that runs on approval.
Tests cover:
 - full-day approval blocks the day and cancels every active booking
 - re-approval is a no-op for already cancelled bookings and counters
 - half-day leave only touches its session
 - per-booking failures are counted, the rest of the cascade carries on
 - submit / cancel / reject rules and listing
"""

import datetime
import logging

import pytest
from sqlalchemy.exc import SQLAlchemyError

from clinic_scheduler.errors import (
    InvalidTransitionError, LeaveOverlapError, NotFoundError, PermissionDeniedError, ValidationError,
)
from clinic_scheduler.models import (
    Actor, BookingStatus, LeaveStatus, LeaveType, PaymentStatus, SessionType,
)
from conftest import TODAY, TOMORROW, YESTERDAY


def _book_many(engine, factory, doctor, count, session=SessionType.morning, **kwargs):
    bookings = []
    for i in range(count):
        patient = factory.patient(f"Patient {i}")
        bookings.append(engine.booking_service.create(patient.id, doctor.id, TOMORROW, session=session, **kwargs))
    return bookings


def test_full_day_leave_cancels_every_active_booking(engine, factory, clinic):
    """
    ✅ Test a doctor with 5 bookings on T gets full-day leave approved.
    Expected: Schedule(T) unavailable, all 5 cancelled by the system with
    reason "doctor unavailable", payment fields untouched.
    """
    doctor = clinic["doctors"][0]
    bookings = _book_many(engine, factory, doctor, 3) + _book_many(
        engine, factory, doctor, 2, session=SessionType.afternoon, payment_status=PaymentStatus.paid
    )

    leave = engine.leave_service.submit(doctor.id, LeaveType.full_day, TOMORROW, reason="Family event")
    leave, report = engine.leave_service.approve(leave.id, comment="ok")

    assert leave.status == LeaveStatus.approved
    assert report.dates == [TOMORROW]
    assert report.cancelled == 5 and report.failed == 0

    schedule = engine.schedules.get(doctor.id, TOMORROW)
    assert schedule.is_available is False
    assert schedule.leave_reason == "Family event"

    for booking in bookings:
        booking = engine.bookings.get(booking.id)
        assert booking.status == BookingStatus.cancelled
        assert booking.cancellation_reason == "doctor unavailable"
        assert booking.cancelled_by == Actor.system
        assert booking.refund_status is None
    assert engine.bookings.get(bookings[-1].id).payment_status == PaymentStatus.paid
    assert engine.bookings.active_for_doctor(doctor.id, TOMORROW) == []


def test_reapproval_is_idempotent(engine, factory, clinic):
    """
    ✅ Test re-approving an approved leave changes nothing already cancelled
    and issues no tokens.
    """
    doctor = clinic["doctors"][0]
    bookings = _book_many(engine, factory, doctor, 2)
    leave = engine.leave_service.submit(doctor.id, LeaveType.full_day, TOMORROW)
    engine.leave_service.approve(leave.id)

    first_cancelled_at = engine.bookings.get(bookings[0].id).cancelled_at
    issued = engine.allocator.issued(TOMORROW)

    _, report = engine.leave_service.approve(leave.id)

    assert report.cancelled == 0 and report.failed == 0
    assert engine.bookings.get(bookings[0].id).cancelled_at == first_cancelled_at
    assert engine.allocator.issued(TOMORROW) == issued


def test_terminal_bookings_are_left_alone(engine, factory, clinic):
    doctor = clinic["doctors"][0]
    done, waiting = _book_many(engine, factory, doctor, 2)
    engine.lifecycle.transition(done, BookingStatus.in_queue, Actor.doctor)
    engine.lifecycle.transition(done, BookingStatus.consulted, Actor.doctor)

    leave = engine.leave_service.submit(doctor.id, LeaveType.full_day, TOMORROW)
    _, report = engine.leave_service.approve(leave.id)

    assert report.cancelled_ids == [waiting.id]
    assert engine.bookings.get(done.id).status == BookingStatus.consulted


def test_half_day_leave_only_touches_its_session(engine, factory, clinic):
    """
    ✅ Test morning half-day leave: morning bookings cancelled, afternoon kept,
    the day itself stays available.
    """
    doctor = clinic["doctors"][0]
    morning = _book_many(engine, factory, doctor, 2)
    afternoon = engine.booking_service.create(
        factory.patient("Late Patient").id, doctor.id, TOMORROW, session=SessionType.afternoon
    )

    leave = engine.leave_service.submit(
        doctor.id, LeaveType.half_day, TOMORROW, session=SessionType.morning, reason="Training"
    )
    _, report = engine.leave_service.approve(leave.id)

    assert sorted(report.cancelled_ids) == sorted(b.id for b in morning)
    assert engine.bookings.get(afternoon.id).status == BookingStatus.booked

    schedule = engine.schedules.get(doctor.id, TOMORROW)
    assert schedule.is_available is True
    assert schedule.morning_available is False
    assert schedule.afternoon_available is True


def test_multi_day_leave_blocks_each_day(engine, clinic):
    doctor = clinic["doctors"][0]
    end = TOMORROW + datetime.timedelta(days=2)
    leave = engine.leave_service.submit(doctor.id, LeaveType.full_day, TOMORROW, end)
    _, report = engine.leave_service.approve(leave.id)

    assert len(report.dates) == 3
    for day in report.dates:
        assert engine.schedules.get(doctor.id, day).is_available is False


def test_one_failing_booking_does_not_stop_the_cascade(engine, factory, clinic, monkeypatch, caplog):
    """
    ✅ Test a storage failure on one booking is logged and counted while
    the others are still cancelled. The failed booking is reported by the id
    read before the rollback, without reloading the expired row.
    """
    doctor = clinic["doctors"][0]
    first, broken, last = _book_many(engine, factory, doctor, 3)
    broken_id = broken.id
    db = engine.bookings.db
    real_save = engine.bookings.save
    real_rollback = db.rollback

    def flaky_save(booking):
        if booking is broken:
            raise SQLAlchemyError("disk I/O error")
        return real_save(booking)

    def rollback_and_detach():
        # An expired, detached row cannot be reloaded
        real_rollback()
        if broken in db:
            db.expunge(broken)

    monkeypatch.setattr(engine.bookings, "save", flaky_save)
    monkeypatch.setattr(db, "rollback", rollback_and_detach)
    leave = engine.leave_service.submit(doctor.id, LeaveType.full_day, TOMORROW)
    with caplog.at_level(logging.ERROR):
        _, report = engine.leave_service.approve(leave.id)

    assert report.failed_ids == [broken_id]
    assert sorted(report.cancelled_ids) == sorted([first.id, last.id])
    assert f"Could not cancel booking {broken_id}" in caplog.text
    assert engine.bookings.get(broken_id).status == BookingStatus.booked

    # Retrying the cascade picks up the leftover
    monkeypatch.setattr(engine.bookings, "save", real_save)
    monkeypatch.setattr(db, "rollback", real_rollback)
    _, retry = engine.leave_service.approve(leave.id)
    assert retry.cancelled_ids == [broken_id]


def test_overlapping_leave_is_rejected(engine, clinic):
    doctor = clinic["doctors"][0]
    engine.leave_service.submit(doctor.id, LeaveType.full_day, TOMORROW, TOMORROW + datetime.timedelta(days=3))

    with pytest.raises(LeaveOverlapError):
        engine.leave_service.submit(doctor.id, LeaveType.full_day, TOMORROW + datetime.timedelta(days=2))


def test_submit_validation(engine, clinic):
    doctor = clinic["doctors"][0]
    with pytest.raises(ValidationError):
        engine.leave_service.submit(doctor.id, LeaveType.full_day, YESTERDAY)
    with pytest.raises(ValidationError):
        engine.leave_service.submit(doctor.id, LeaveType.full_day, TOMORROW, TODAY)
    with pytest.raises(ValidationError):
        engine.leave_service.submit(doctor.id, LeaveType.half_day, TOMORROW)
    with pytest.raises(ValidationError):
        engine.leave_service.submit(
            doctor.id, LeaveType.half_day, TOMORROW, TOMORROW + datetime.timedelta(days=1),
            session=SessionType.morning,
        )


def test_reject_and_cancel_rules(engine, clinic):
    """
    ✅ Test decisions only apply to pending requests and only the requesting
    doctor may withdraw one.
    """
    d1, d2 = clinic["doctors"]
    leave = engine.leave_service.submit(d1.id, LeaveType.full_day, TOMORROW)

    with pytest.raises(PermissionDeniedError):
        engine.leave_service.cancel(leave.id, doctor_id=d2.id)

    rejected = engine.leave_service.reject(leave.id, comment="Short staffed")
    assert rejected.status == LeaveStatus.rejected
    assert rejected.admin_comment == "Short staffed"

    with pytest.raises(InvalidTransitionError):
        engine.leave_service.approve(leave.id)
    with pytest.raises(InvalidTransitionError):
        engine.leave_service.cancel(leave.id, doctor_id=d1.id)

    other = engine.leave_service.submit(d1.id, LeaveType.full_day, TOMORROW)
    withdrawn = engine.leave_service.cancel(other.id, doctor_id=d1.id)
    assert withdrawn.status == LeaveStatus.cancelled
    assert withdrawn.cancelled_by == Actor.doctor


def test_list_filters_by_doctor_and_status(engine, clinic):
    """
    ✅ Test listing leave requests newest first, per doctor and per status.
    """
    d1, d2 = clinic["doctors"]
    early = engine.leave_service.submit(d1.id, LeaveType.full_day, TOMORROW, reason="Conference")
    late = engine.leave_service.submit(d1.id, LeaveType.full_day, TOMORROW + datetime.timedelta(days=10))
    other = engine.leave_service.submit(d2.id, LeaveType.full_day, TOMORROW)
    engine.leave_service.approve(early.id)

    assert [l.id for l in engine.leave_service.list(doctor_id=d1.id)] == [late.id, early.id]
    assert [l.id for l in engine.leave_service.list(status=LeaveStatus.pending)] == [late.id, other.id]
    assert [l.id for l in engine.leave_service.list(doctor_id=d1.id, status="approved")] == [early.id]
    assert len(engine.leave_service.list()) == 3

    with pytest.raises(NotFoundError):
        engine.leave_service.list(doctor_id=999)
