"""
schemas.py
==========
Pydantic models used for validating incoming requests and
structuring outgoing API responses.
"""

import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .models import (
    Actor, BookingStatus, LeaveStatus, LeaveType, PaymentStatus, RequestStatus,
    ScheduleRequestType, SessionType,
)

TIME_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"
NULLABLE_SCHEDULE_FIELDS = {
    "break_start", "break_end",
    "morning_start", "morning_end", "morning_max_patients",
    "afternoon_start", "afternoon_end", "afternoon_max_patients",
    "evening_start", "evening_end", "evening_max_patients",
}


def _time_field():
    return Field(default=None, pattern=TIME_PATTERN)


# ---------------------------------------------------------------------------
# BOOKINGS
# ---------------------------------------------------------------------------

class BookingCreate(BaseModel):
    """Request body for a new booking. Give a session, a clock slot, or both."""
    patient_id: int
    doctor_id: int
    booking_date: datetime.date
    session_type: Optional[SessionType] = None
    time_slot: Optional[str] = _time_field()
    dependent_id: Optional[int] = None
    department_id: Optional[int] = None
    symptoms: Optional[str] = Field(default=None, max_length=1000)
    payment_status: PaymentStatus = PaymentStatus.pending

    @model_validator(mode="after")
    def session_or_time(self):
        if self.session_type is None and self.time_slot is None:
            raise ValueError("Either session_type or time_slot is required")
        return self


class BookingResponse(BaseModel):
    id: int
    token_number: str
    patient_id: int
    dependent_id: Optional[int] = None
    patient_name: Optional[str] = None
    doctor_id: int
    department: str
    booking_date: datetime.date
    time_slot: str
    session_type: SessionType
    queue_number: int
    status: BookingStatus
    payment_status: PaymentStatus
    estimated_wait_minutes: Optional[int] = None
    symptoms: Optional[str] = None
    cancellation_reason: Optional[str] = None
    cancelled_by: Optional[Actor] = None
    cancelled_at: Optional[datetime.datetime] = None
    refund_status: Optional[str] = None
    referred_to: Optional[str] = None
    created_at: Optional[datetime.datetime] = None

    class Config:
        from_attributes = True


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class CancelResponse(BaseModel):
    booking: BookingResponse
    refund_eligible: bool


class RescheduleRequest(BaseModel):
    booking_date: datetime.date
    session_type: Optional[SessionType] = None
    time_slot: Optional[str] = _time_field()
    doctor_id: Optional[int] = None
    reason: Optional[str] = Field(default=None, max_length=500)

    @model_validator(mode="after")
    def session_or_time(self):
        if self.session_type is None and self.time_slot is None:
            raise ValueError("Either session_type or time_slot is required")
        return self


class StatusUpdate(BaseModel):
    status: BookingStatus
    reason: Optional[str] = None
    referred_to: Optional[str] = None

    @model_validator(mode="after")
    def referral_target(self):
        if self.status == BookingStatus.referred and not self.referred_to:
            raise ValueError("referred_to is required when referring a patient")
        return self


# ---------------------------------------------------------------------------
# AVAILABILITY
# ---------------------------------------------------------------------------

class SlotOut(BaseModel):
    time: str
    display_time: str
    session_type: Optional[SessionType] = None
    is_booked: bool

    class Config:
        from_attributes = True


class SessionOut(BaseModel):
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
    next_slot_time: Optional[str] = None
    bookable: bool
    closed_reason: Optional[str] = None

    class Config:
        from_attributes = True


class DayAvailabilityOut(BaseModel):
    doctor_id: int
    doctor_name: str
    date: datetime.date
    is_available: bool
    source: str
    leave_reason: str = ""
    working_hours: Optional[Dict[str, str]] = None
    break_time: Optional[Dict[str, str]] = None
    slot_duration: Optional[int] = None
    sessions: List[SessionOut] = []
    slots: List[SlotOut] = []

    class Config:
        from_attributes = True


class DepartmentAvailabilityOut(BaseModel):
    department_id: int
    date: datetime.date
    doctors: List[DayAvailabilityOut]


class DoctorLoadOut(BaseModel):
    doctor_id: int
    doctor_name: str
    load: int
    capacity: int
    next_slot_time: Optional[str] = None

    class Config:
        from_attributes = True


class AssignmentOut(BaseModel):
    department_id: int
    department: str
    date: datetime.date
    session: SessionType
    doctor: DoctorLoadOut
    alternatives: List[DoctorLoadOut] = []

    class Config:
        from_attributes = True


# ---------------------------------------------------------------------------
# LEAVE & CASCADE
# ---------------------------------------------------------------------------

class LeaveCreate(BaseModel):
    doctor_id: int
    leave_type: LeaveType = LeaveType.full_day
    start_date: datetime.date
    end_date: Optional[datetime.date] = None
    session: Optional[SessionType] = None
    reason: str = Field(default="", max_length=500)


class Decision(BaseModel):
    """Admin decision body shared by leave and schedule requests."""
    comment: str = Field(default="", max_length=500)


class LeaveOut(BaseModel):
    id: int
    doctor_id: int
    leave_type: LeaveType
    start_date: datetime.date
    end_date: datetime.date
    session: Optional[SessionType] = None
    reason: str
    status: LeaveStatus
    admin_comment: str = ""
    decided_at: Optional[datetime.datetime] = None

    class Config:
        from_attributes = True


class CascadeReportOut(BaseModel):
    dates: List[datetime.date] = []
    cancelled: int
    failed: int
    skipped: int
    cancelled_ids: List[int] = []

    class Config:
        from_attributes = True


class LeaveDecisionOut(BaseModel):
    leave: LeaveOut
    cascade: Optional[CascadeReportOut] = None


# ---------------------------------------------------------------------------
# SCHEDULES
# ---------------------------------------------------------------------------

class ScheduleUpdate(BaseModel):
    """Partial schedule edit; only the fields sent are changed."""
    is_available: Optional[bool] = None
    start_time: Optional[str] = _time_field()
    end_time: Optional[str] = _time_field()
    break_start: Optional[str] = _time_field()
    break_end: Optional[str] = _time_field()
    slot_duration: Optional[int] = Field(default=None, gt=0, le=240)
    morning_available: Optional[bool] = None
    morning_start: Optional[str] = _time_field()
    morning_end: Optional[str] = _time_field()
    morning_max_patients: Optional[int] = Field(default=None, ge=1)
    afternoon_available: Optional[bool] = None
    afternoon_start: Optional[str] = _time_field()
    afternoon_end: Optional[str] = _time_field()
    afternoon_max_patients: Optional[int] = Field(default=None, ge=1)
    evening_available: Optional[bool] = None
    evening_start: Optional[str] = _time_field()
    evening_end: Optional[str] = _time_field()
    evening_max_patients: Optional[int] = Field(default=None, ge=1)
    leave_reason: Optional[str] = None
    notes: Optional[str] = None

    def changes(self) -> Dict[str, Any]:
        # An explicit null clears a nullable column and is ignored elsewhere
        sent = self.model_dump(exclude_unset=True)
        return {k: v for k, v in sent.items() if v is not None or k in NULLABLE_SCHEDULE_FIELDS}


class ScheduleOut(BaseModel):
    id: int
    doctor_id: int
    date: datetime.date
    is_available: bool
    start_time: str
    end_time: str
    break_start: Optional[str] = None
    break_end: Optional[str] = None
    slot_duration: int
    morning_available: bool
    afternoon_available: bool
    evening_available: bool
    leave_reason: str = ""
    notes: str = ""

    class Config:
        from_attributes = True


class ScheduleSaveOut(BaseModel):
    schedule: ScheduleOut
    cancelled_bookings: int = 0


class BulkScheduleUpdate(BaseModel):
    start_date: datetime.date
    end_date: datetime.date
    weekdays: Optional[List[int]] = None
    changes: ScheduleUpdate

    @field_validator("weekdays")
    @classmethod
    def valid_weekdays(cls, v):
        if v is not None and any(d < 0 or d > 6 for d in v):
            raise ValueError("Weekdays run from 0 (Monday) to 6 (Sunday)")
        return v


class BulkScheduleOut(BaseModel):
    updated: int
    cancelled_bookings: int
    schedules: List[ScheduleOut]


class GenerateSchedules(BaseModel):
    days: int = Field(default=30, ge=1, le=365)
    start_date: Optional[datetime.date] = None


class DefaultHoursUpdate(BaseModel):
    start_time: Optional[str] = _time_field()
    end_time: Optional[str] = _time_field()
    break_start: Optional[str] = _time_field()
    break_end: Optional[str] = _time_field()
    slot_duration: Optional[int] = Field(default=None, gt=0, le=240)
    max_patients: Optional[int] = Field(default=None, ge=1)


class DoctorOut(BaseModel):
    id: int
    name: str
    department_id: int
    is_active: bool
    default_start_time: Optional[str] = None
    default_end_time: Optional[str] = None
    default_break_start: Optional[str] = None
    default_break_end: Optional[str] = None
    default_slot_duration: Optional[int] = None
    default_max_patients: Optional[int] = None

    class Config:
        from_attributes = True


class ScheduleRequestCreate(BaseModel):
    doctor_id: int
    type: ScheduleRequestType
    date: datetime.date
    reason: str = Field(min_length=1, max_length=500)
    new_schedule: Optional[ScheduleUpdate] = None


class ScheduleRequestOut(BaseModel):
    id: int
    doctor_id: int
    type: ScheduleRequestType
    date: datetime.date
    reason: str
    new_schedule: Optional[Dict[str, Any]] = None
    status: RequestStatus
    admin_comment: str = ""

    class Config:
        from_attributes = True


class ScheduleRequestDecisionOut(BaseModel):
    request: ScheduleRequestOut
    cancelled_bookings: int = 0


# ---------------------------------------------------------------------------
# ADMIN
# ---------------------------------------------------------------------------

class SweepOut(BaseModel):
    cancelled: int
    failed: int
    skipped: int
    cancelled_ids: List[int] = []

    class Config:
        from_attributes = True
