"""
models.py
=========
SQLAlchemy ORM models for the clinic scheduling engine.
Contains tables for:
 - Department, Doctor
 - Patient, Dependent (family member booked as the subject)
 - Schedule (one per doctor per day)
 - Booking (the queue "token")
 - Counter (atomic per-day token sequence)
 - LeaveRequest, ScheduleRequest (approval workflows)
"""

import datetime
import enum

from sqlalchemy import (
    JSON, Boolean, Column, Date, DateTime, Enum, ForeignKey, Index, Integer,
    String, Text, UniqueConstraint, text,
)
from sqlalchemy.orm import declarative_base, relationship

# SQLAlchemy Base class
Base = declarative_base()


def utcnow():
    return datetime.datetime.utcnow()


# ---------------------------------------------------------------------------
# ENUM DEFINITIONS
# ---------------------------------------------------------------------------

class BookingStatus(str, enum.Enum):
    """Booking lifecycle states."""
    booked = "booked"
    in_queue = "in_queue"
    consulted = "consulted"
    missed = "missed"
    cancelled = "cancelled"
    referred = "referred"


ACTIVE_STATUSES = (BookingStatus.booked, BookingStatus.in_queue)


class SessionType(str, enum.Enum):
    """Named sub-windows of a working day."""
    morning = "morning"
    afternoon = "afternoon"
    evening = "evening"


class Actor(str, enum.Enum):
    """Who performed a booking action."""
    patient = "patient"
    doctor = "doctor"
    receptionist = "receptionist"
    admin = "admin"
    system = "system"


class PaymentStatus(str, enum.Enum):
    pending = "pending"
    paid = "paid"
    failed = "failed"
    refunded = "refunded"


class LeaveType(str, enum.Enum):
    full_day = "full_day"
    half_day = "half_day"


class LeaveStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    cancelled = "cancelled"


class ScheduleRequestType(str, enum.Enum):
    cancel = "cancel"
    reschedule = "reschedule"


class RequestStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


# Raw SQL predicate for partial unique indexes. Enum columns store member names.
_ACTIVE_SQL = "status IN ('booked', 'in_queue')"


# ---------------------------------------------------------------------------
# TABLE DEFINITIONS
# ---------------------------------------------------------------------------

class Department(Base):
    """Clinic department, e.g. Cardiology or ENT."""
    __tablename__ = "departments"

    id = Column(Integer, primary_key=True)
    name = Column(String(100), nullable=False, unique=True)
    is_active = Column(Boolean, default=True, nullable=False)

    doctors = relationship("Doctor", back_populates="department", order_by="Doctor.id")


class Doctor(Base):
    """Doctor profile with the default day used when no Schedule row exists."""
    __tablename__ = "doctors"

    id = Column(Integer, primary_key=True)
    name = Column(String(100), nullable=False)
    department_id = Column(Integer, ForeignKey("departments.id"), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    # Defaults may be null: such a doctor is only bookable on scheduled days
    default_start_time = Column(String(5), nullable=True)
    default_end_time = Column(String(5), nullable=True)
    default_break_start = Column(String(5), nullable=True)
    default_break_end = Column(String(5), nullable=True)
    default_slot_duration = Column(Integer, nullable=True)
    default_max_patients = Column(Integer, nullable=True)

    pushover_user = Column(String, nullable=True)

    department = relationship("Department", back_populates="doctors")


class Patient(Base):
    """Registered patient (identity is owned by the external auth service)."""
    __tablename__ = "patients"

    id = Column(Integer, primary_key=True)
    name = Column(String(100), nullable=False)
    email = Column(String(100), nullable=True)
    phone = Column(String(20), nullable=True)
    created_at = Column(DateTime, default=utcnow)

    dependents = relationship("Dependent", back_populates="patient")


class Dependent(Base):
    """Family member a patient books on behalf of."""
    __tablename__ = "dependents"

    id = Column(Integer, primary_key=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False)
    name = Column(String(100), nullable=False)
    relation = Column(String(50), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    patient = relationship("Patient", back_populates="dependents")


class Schedule(Base):
    """Per-doctor per-day availability record."""
    __tablename__ = "schedules"
    __table_args__ = (UniqueConstraint("doctor_id", "date", name="uq_schedule_doctor_date"),)

    id = Column(Integer, primary_key=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False, index=True)
    date = Column(Date, nullable=False, index=True)
    is_available = Column(Boolean, default=True, nullable=False)

    start_time = Column(String(5), nullable=False, default="09:00")
    end_time = Column(String(5), nullable=False, default="17:00")
    break_start = Column(String(5), nullable=True, default="13:00")
    break_end = Column(String(5), nullable=True, default="14:00")
    slot_duration = Column(Integer, nullable=False, default=30)

    morning_available = Column(Boolean, default=True, nullable=False)
    morning_start = Column(String(5), nullable=True)
    morning_end = Column(String(5), nullable=True)
    morning_max_patients = Column(Integer, nullable=True)

    afternoon_available = Column(Boolean, default=True, nullable=False)
    afternoon_start = Column(String(5), nullable=True)
    afternoon_end = Column(String(5), nullable=True)
    afternoon_max_patients = Column(Integer, nullable=True)

    evening_available = Column(Boolean, default=False, nullable=False)
    evening_start = Column(String(5), nullable=True)
    evening_end = Column(String(5), nullable=True)
    evening_max_patients = Column(Integer, nullable=True)

    leave_reason = Column(String, default="", nullable=False)
    notes = Column(Text, default="", nullable=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    doctor = relationship("Doctor")


class Booking(Base):
    """Queue token held by a patient (or dependent) for one doctor on one day."""
    __tablename__ = "bookings"
    __table_args__ = (
        # Storage backstop: the losing concurrent writer fails fast
        Index(
            "uq_booking_active_slot", "doctor_id", "booking_date", "time_slot",
            unique=True,
            sqlite_where=text(_ACTIVE_SQL),
            postgresql_where=text(_ACTIVE_SQL),
        ),
        Index(
            "uq_booking_active_token", "booking_date", "token_number",
            unique=True,
            sqlite_where=text(_ACTIVE_SQL),
            postgresql_where=text(_ACTIVE_SQL),
        ),
        Index("ix_booking_doctor_date_status", "doctor_id", "booking_date", "status"),
        Index("ix_booking_subject_date", "patient_id", "dependent_id", "booking_date"),
    )

    id = Column(Integer, primary_key=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False)
    dependent_id = Column(Integer, ForeignKey("dependents.id"), nullable=True)
    patient_name = Column(String(100), nullable=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False)
    department = Column(String(100), nullable=False)

    booking_date = Column(Date, nullable=False)
    time_slot = Column(String(5), nullable=False)
    session_type = Column(Enum(SessionType), nullable=False)
    queue_number = Column(Integer, nullable=False, default=1)
    token_number = Column(String(10), nullable=False)
    status = Column(Enum(BookingStatus), default=BookingStatus.booked, nullable=False)
    payment_status = Column(Enum(PaymentStatus), default=PaymentStatus.pending, nullable=False)

    symptoms = Column(Text, nullable=True)
    estimated_wait_minutes = Column(Integer, nullable=True)
    created_by = Column(Enum(Actor), default=Actor.patient, nullable=False)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    status_changed_at = Column(DateTime, default=utcnow)
    consultation_started_at = Column(DateTime, nullable=True)
    consultation_completed_at = Column(DateTime, nullable=True)

    cancellation_reason = Column(String, nullable=True)
    cancelled_by = Column(Enum(Actor), nullable=True)
    cancelled_at = Column(DateTime, nullable=True)

    refund_status = Column(String(20), nullable=True)
    refund_requested_at = Column(DateTime, nullable=True)

    reschedule_reason = Column(String, nullable=True)
    rescheduled_by = Column(Enum(Actor), nullable=True)
    rescheduled_at = Column(DateTime, nullable=True)
    referred_to = Column(String, nullable=True)

    # Relationships
    patient = relationship("Patient")
    dependent = relationship("Dependent")
    doctor = relationship("Doctor")

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES


class Counter(Base):
    """Durable integer sequence keyed by a scope string."""
    __tablename__ = "counters"

    key = Column(String(64), primary_key=True)
    value = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class LeaveRequest(Base):
    """Doctor leave awaiting (or past) admin decision."""
    __tablename__ = "leave_requests"

    id = Column(Integer, primary_key=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False, index=True)
    leave_type = Column(Enum(LeaveType), default=LeaveType.full_day, nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    session = Column(Enum(SessionType), nullable=True)
    reason = Column(String, default="", nullable=False)
    status = Column(Enum(LeaveStatus), default=LeaveStatus.pending, nullable=False)
    admin_comment = Column(String, default="", nullable=False)

    created_at = Column(DateTime, default=utcnow)
    decided_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    cancelled_by = Column(Enum(Actor), nullable=True)

    doctor = relationship("Doctor")


class ScheduleRequest(Base):
    """Doctor's request to cancel or reschedule a day, approved like leave."""
    __tablename__ = "schedule_requests"

    id = Column(Integer, primary_key=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False, index=True)
    type = Column(Enum(ScheduleRequestType), nullable=False)
    date = Column(Date, nullable=False)
    reason = Column(String, nullable=False)
    new_schedule = Column(JSON, nullable=True)
    status = Column(Enum(RequestStatus), default=RequestStatus.pending, nullable=False)
    admin_comment = Column(String, default="", nullable=False)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    doctor = relationship("Doctor")
