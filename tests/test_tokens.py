"""
test_tokens.py
==============
Token Sequence Allocator and the counter store beneath it.
Tests cover:
 - sequential, zero-padded tokens per day
 - uniqueness across doctors and sessions on the same day
 - range exhaustion without retry
 - collision retry with backoff, and giving up
"""

import pytest

from clinic_scheduler.errors import TokenAllocationError, TokenRangeExhaustedError
from clinic_scheduler.models import Booking, BookingStatus, SessionType
from clinic_scheduler.repository import CounterStore
from clinic_scheduler.tokens import TokenAllocator, format_token
from conftest import TOMORROW, TODAY


def _occupy_token(db, doctor, patient, token, time_slot):
    """Insert an active booking holding `token` without going through the allocator."""
    booking = Booking(
        patient_id=patient.id,
        doctor_id=doctor.id,
        department="General Medicine",
        booking_date=TOMORROW,
        time_slot=time_slot,
        session_type=SessionType.morning,
        queue_number=1,
        token_number=token,
        status=BookingStatus.booked,
    )
    db.add(booking)
    db.commit()
    return booking


def test_format_token_is_zero_padded():
    assert format_token(1) == "T001"
    assert format_token(42) == "T042"
    assert format_token(999) == "T999"


def test_counter_store_creates_then_increments(db_session):
    """
    ✅ Test the counter row is created on first use and increments after.
    """
    counters = CounterStore(db_session)
    key = counters.key_for(TOMORROW)

    assert key == f"token_{TOMORROW.isoformat()}"
    assert counters.key_for(TOMORROW, SessionType.evening).endswith("_evening")
    assert counters.peek(key) == 0
    assert [counters.increment(key) for _ in range(3)] == [1, 2, 3]
    assert counters.peek(key) == 3


def test_tokens_are_sequential_and_unique_across_doctors(engine, factory, clinic):
    """
    ✅ Test one daily sequence is shared by every doctor and session.
    Expected: T001..T006 in booking order, no duplicates.
    """
    d1 = clinic["doctors"][0]
    d2 = factory.doctor(factory.department("Cardiology"), "Dr. Clara")
    tokens = []
    for patient in clinic["patients"]:
        tokens.append(engine.booking_service.create(patient.id, d1.id, TOMORROW, session=SessionType.morning).token_number)
    for patient in clinic["patients"]:
        tokens.append(engine.booking_service.create(patient.id, d2.id, TOMORROW, session=SessionType.afternoon).token_number)

    assert tokens == ["T001", "T002", "T003", "T004", "T005", "T006"]
    assert len(set(tokens)) == len(tokens)


def test_each_day_has_its_own_sequence(engine):
    assert engine.allocator.allocate(TODAY) == "T001"
    assert engine.allocator.allocate(TOMORROW) == "T001"
    assert engine.allocator.allocate(TOMORROW) == "T002"
    assert engine.allocator.issued(TOMORROW) == 2


def test_range_exhausted_is_not_retried(engine):
    """
    ✅ Test the daily maximum: the next request fails with a capacity error
    and nothing sleeps.
    """
    sleeps = []
    allocator = TokenAllocator(engine.counters, engine.bookings, max_per_day=2, sleep=sleeps.append)

    allocator.allocate(TOMORROW)
    allocator.allocate(TOMORROW)
    with pytest.raises(TokenRangeExhaustedError):
        allocator.allocate(TOMORROW)
    assert sleeps == []


def test_collision_retries_with_backoff(engine, db_session, clinic):
    """
    ✅ Test a number already held by an active booking is skipped.
    Expected: T001 collides, T002 is issued after one backoff.
    """
    _occupy_token(db_session, clinic["doctors"][0], clinic["patients"][0], "T001", "09:00")
    sleeps = []
    allocator = TokenAllocator(engine.counters, engine.bookings, backoff=0.05, sleep=sleeps.append)

    assert allocator.allocate(TOMORROW) == "T002"
    assert sleeps == [0.05]


def test_cancelled_token_does_not_collide(engine, db_session, clinic):
    booking = _occupy_token(db_session, clinic["doctors"][0], clinic["patients"][0], "T001", "09:00")
    booking.status = BookingStatus.cancelled
    db_session.commit()

    assert engine.allocator.allocate(TOMORROW) == "T001"


def test_gives_up_after_max_attempts(engine, db_session, clinic):
    """
    ✅ Test every attempt colliding ends in a retryable allocation error.
    """
    doctor = clinic["doctors"][0]
    _occupy_token(db_session, doctor, clinic["patients"][0], "T001", "09:00")
    _occupy_token(db_session, doctor, clinic["patients"][1], "T002", "09:30")
    sleeps = []
    allocator = TokenAllocator(engine.counters, engine.bookings, max_attempts=2, backoff=0.1, sleep=sleeps.append)

    with pytest.raises(TokenAllocationError) as exc:
        allocator.allocate(TOMORROW)
    assert exc.value.status_code == 503
    assert sleeps == [0.1]
