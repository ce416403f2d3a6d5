"""
repository.py
=============
Database access for the scheduling engine.

Each repository wraps one SQLAlchemy session and is passed explicitly into
the components that need it, so every query the engine runs lives here.
"""

import datetime
import logging
from typing import List, NamedTuple, Optional

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from .errors import StoreUnavailableError
from .models import (
    ACTIVE_STATUSES, Booking, Counter, Department, Dependent, Doctor,
    LeaveRequest, LeaveStatus, Patient, RequestStatus, Schedule, ScheduleRequest,
    SessionType,
)

logger = logging.getLogger(__name__)


class Subject(NamedTuple):
    """Who a booking is for: the patient, or one of their dependents."""
    patient_id: int
    dependent_id: Optional[int] = None


def commit(db: Session):
    """Commit, mapping connectivity failures to a retryable error."""
    try:
        db.commit()
    except OperationalError as e:
        db.rollback()
        logger.error(f"❌ Store unavailable during commit: {e}")
        raise StoreUnavailableError()


# ---------------------------------------------------------------------------
# DIRECTORY (departments, doctors, patients)
# ---------------------------------------------------------------------------

class DirectoryRepository:
    """Read access to departments, doctors and booking subjects."""

    def __init__(self, db: Session):
        self.db = db

    def get_department(self, department_id: int) -> Optional[Department]:
        return self.db.get(Department, department_id)

    def get_doctor(self, doctor_id: int) -> Optional[Doctor]:
        return self.db.get(Doctor, doctor_id)

    def get_patient(self, patient_id: int) -> Optional[Patient]:
        return self.db.get(Patient, patient_id)

    def get_dependent(self, dependent_id: int, patient_id: int) -> Optional[Dependent]:
        return (
            self.db.query(Dependent)
            .filter(
                Dependent.id == dependent_id,
                Dependent.patient_id == patient_id,
                Dependent.is_active.is_(True),
            )
            .first()
        )

    def department_doctors(self, department_id: int) -> List[Doctor]:
        """Active doctors of a department in identifier order."""
        return (
            self.db.query(Doctor)
            .filter(Doctor.department_id == department_id, Doctor.is_active.is_(True))
            .order_by(Doctor.id.asc())
            .all()
        )


# ---------------------------------------------------------------------------
# SCHEDULES
# ---------------------------------------------------------------------------

class ScheduleRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, doctor_id: int, day: datetime.date) -> Optional[Schedule]:
        return (
            self.db.query(Schedule)
            .filter(Schedule.doctor_id == doctor_id, Schedule.date == day)
            .first()
        )

    def list_range(self, doctor_id: int, start: datetime.date, end: datetime.date) -> List[Schedule]:
        return (
            self.db.query(Schedule)
            .filter(Schedule.doctor_id == doctor_id, Schedule.date >= start, Schedule.date <= end)
            .order_by(Schedule.date.asc())
            .all()
        )

    def save(self, schedule: Schedule) -> Schedule:
        """Insert or update. A concurrent insert for the same day is merged."""
        self.db.add(schedule)
        try:
            commit(self.db)
        except IntegrityError:
            self.db.rollback()
            existing = self.get(schedule.doctor_id, schedule.date)
            if existing is None:
                raise
            for column in Schedule.__table__.columns.keys():
                if column not in ("id", "created_at"):
                    setattr(existing, column, getattr(schedule, column))
            commit(self.db)
            schedule = existing
        self.db.refresh(schedule)
        return schedule


# ---------------------------------------------------------------------------
# BOOKINGS
# ---------------------------------------------------------------------------

class BookingRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, booking_id: int) -> Optional[Booking]:
        return self.db.get(Booking, booking_id)

    def _active(self):
        return self.db.query(Booking).filter(Booking.status.in_(ACTIVE_STATUSES))

    @staticmethod
    def _subject_filter(query, subject: Subject):
        query = query.filter(Booking.patient_id == subject.patient_id)
        if subject.dependent_id is None:
            return query.filter(Booking.dependent_id.is_(None))
        return query.filter(Booking.dependent_id == subject.dependent_id)

    def active_for_subject_doctor(
        self, subject: Subject, doctor_id: int, day: datetime.date, exclude_id: int = None
    ) -> Optional[Booking]:
        query = self._subject_filter(self._active(), subject).filter(
            Booking.doctor_id == doctor_id, Booking.booking_date == day
        )
        if exclude_id is not None:
            query = query.filter(Booking.id != exclude_id)
        return query.first()

    def active_for_subject_department(
        self, subject: Subject, department: str, day: datetime.date, exclude_id: int = None
    ) -> Optional[Booking]:
        query = self._subject_filter(self._active(), subject).filter(
            Booking.department == department, Booking.booking_date == day
        )
        if exclude_id is not None:
            query = query.filter(Booking.id != exclude_id)
        return query.first()

    def count_active_between(
        self, doctor_id: int, day: datetime.date, start: str, end: str, exclude_id: int = None
    ) -> int:
        """Active bookings whose time falls in [start, end). HH:MM sorts lexically."""
        query = self.db.query(func.count(Booking.id)).filter(
            Booking.doctor_id == doctor_id,
            Booking.booking_date == day,
            Booking.status.in_(ACTIVE_STATUSES),
            Booking.time_slot >= start,
            Booking.time_slot < end,
        )
        if exclude_id is not None:
            query = query.filter(Booking.id != exclude_id)
        return query.scalar() or 0

    def count_active_for_session(self, doctor_id: int, day: datetime.date, session: SessionType) -> int:
        return (
            self.db.query(func.count(Booking.id))
            .filter(
                Booking.doctor_id == doctor_id,
                Booking.booking_date == day,
                Booking.session_type == session,
                Booking.status.in_(ACTIVE_STATUSES),
            )
            .scalar()
            or 0
        )

    def taken_times(self, doctor_id: int, day: datetime.date, exclude_id: int = None) -> set:
        query = self.db.query(Booking.time_slot).filter(
            Booking.doctor_id == doctor_id,
            Booking.booking_date == day,
            Booking.status.in_(ACTIVE_STATUSES),
        )
        if exclude_id is not None:
            query = query.filter(Booking.id != exclude_id)
        return {row[0] for row in query.all()}

    def active_with_token(self, day: datetime.date, token_number: str) -> Optional[Booking]:
        return (
            self._active()
            .filter(Booking.booking_date == day, Booking.token_number == token_number)
            .first()
        )

    def active_for_doctor(
        self, doctor_id: int, start: datetime.date, end: datetime.date = None
    ) -> List[Booking]:
        end = end or start
        return (
            self._active()
            .filter(
                Booking.doctor_id == doctor_id,
                Booking.booking_date >= start,
                Booking.booking_date <= end,
            )
            .order_by(Booking.booking_date.asc(), Booking.time_slot.asc())
            .all()
        )

    def for_doctor_day(self, doctor_id: int, day: datetime.date) -> List[Booking]:
        return (
            self.db.query(Booking)
            .filter(Booking.doctor_id == doctor_id, Booking.booking_date == day)
            .order_by(Booking.time_slot.asc(), Booking.created_at.asc())
            .all()
        )

    def active_before(self, day: datetime.date) -> List[Booking]:
        return self._active().filter(Booking.booking_date < day).all()

    def active_on(self, day: datetime.date) -> List[Booking]:
        return self._active().filter(Booking.booking_date == day).all()

    def add(self, booking: Booking) -> Booking:
        """
        Persist a new booking. A unique-index violation means a concurrent
        writer took the same slot or token; IntegrityError propagates.
        """
        self.db.add(booking)
        try:
            commit(self.db)
        except IntegrityError:
            self.db.rollback()
            raise
        self.db.refresh(booking)
        return booking

    def save(self, booking: Booking) -> Booking:
        try:
            commit(self.db)
        except IntegrityError:
            self.db.rollback()
            raise
        self.db.refresh(booking)
        return booking


# ---------------------------------------------------------------------------
# COUNTER STORE
# ---------------------------------------------------------------------------

class CounterStore:
    """
    Durable atomic counters. increment() is the only writer path: the UPDATE
    takes the row lock, the read happens inside the same transaction.
    """

    def __init__(self, db: Session):
        self.db = db

    @staticmethod
    def key_for(day: datetime.date, session: SessionType = None) -> str:
        key = f"token_{day.isoformat()}"
        if session is not None:
            key = f"{key}_{SessionType(session).value}"
        return key

    def increment(self, key: str) -> int:
        for _ in range(3):
            try:
                result = self.db.execute(
                    update(Counter)
                    .where(Counter.key == key)
                    .values(value=Counter.value + 1, updated_at=datetime.datetime.utcnow())
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount:
                    value = self.db.query(Counter.value).filter(Counter.key == key).scalar()
                    commit(self.db)
                    return value

                self.db.add(Counter(key=key, value=1))
                commit(self.db)
                return 1
            except IntegrityError:
                # Another writer created the row first; increment that one
                self.db.rollback()
            except OperationalError as e:
                self.db.rollback()
                logger.error(f"❌ Counter store unavailable for {key}: {e}")
                raise StoreUnavailableError()
        raise StoreUnavailableError(f"Could not increment counter {key}")

    def peek(self, key: str) -> int:
        return self.db.query(Counter.value).filter(Counter.key == key).scalar() or 0


# ---------------------------------------------------------------------------
# APPROVAL WORKFLOWS
# ---------------------------------------------------------------------------

class LeaveRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, leave_id: int) -> Optional[LeaveRequest]:
        return self.db.get(LeaveRequest, leave_id)

    def overlapping(self, doctor_id: int, start: datetime.date, end: datetime.date) -> Optional[LeaveRequest]:
        return (
            self.db.query(LeaveRequest)
            .filter(
                LeaveRequest.doctor_id == doctor_id,
                LeaveRequest.status.in_((LeaveStatus.pending, LeaveStatus.approved)),
                LeaveRequest.start_date <= end,
                LeaveRequest.end_date >= start,
            )
            .first()
        )

    def list(self, doctor_id: int = None, status: LeaveStatus = None) -> List[LeaveRequest]:
        query = self.db.query(LeaveRequest)
        if doctor_id is not None:
            query = query.filter(LeaveRequest.doctor_id == doctor_id)
        if status is not None:
            query = query.filter(LeaveRequest.status == status)
        return query.order_by(LeaveRequest.start_date.desc(), LeaveRequest.id.desc()).all()

    def save(self, leave: LeaveRequest) -> LeaveRequest:
        self.db.add(leave)
        commit(self.db)
        self.db.refresh(leave)
        return leave


class ScheduleRequestRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, request_id: int) -> Optional[ScheduleRequest]:
        return self.db.get(ScheduleRequest, request_id)

    def list(self, doctor_id: int = None, status: RequestStatus = None) -> List[ScheduleRequest]:
        """Oldest first, so the review queue reads in arrival order."""
        query = self.db.query(ScheduleRequest)
        if doctor_id is not None:
            query = query.filter(ScheduleRequest.doctor_id == doctor_id)
        if status is not None:
            query = query.filter(ScheduleRequest.status == status)
        return query.order_by(ScheduleRequest.created_at.asc(), ScheduleRequest.id.asc()).all()

    def save(self, request: ScheduleRequest) -> ScheduleRequest:
        self.db.add(request)
        commit(self.db)
        self.db.refresh(request)
        return request
