"""
api.py
======
REST endpoints for the scheduling engine.

The caller's role arrives in the X-Actor-Role header (set by the upstream
auth layer) and is checked against the capability table before any engine
call. Booking events are pushed to doctors after the response is sent.
"""

import datetime
import logging
from collections import defaultdict
from typing import Callable, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Header, Query
from sqlalchemy.orm import Session

from . import config, notifications
from .db import get_db
from .engine import SchedulingEngine
from .models import Actor, Booking, LeaveStatus, RequestStatus, SessionType
from .policies import Operation, parse_role, require_capability
from .schemas import (
    AssignmentOut, BookingCreate, BookingResponse, BulkScheduleOut,
    BulkScheduleUpdate, CancelRequest, CancelResponse, CascadeReportOut, DayAvailabilityOut,
    Decision, DefaultHoursUpdate, DepartmentAvailabilityOut, DoctorOut,
    GenerateSchedules, LeaveCreate, LeaveDecisionOut, LeaveOut,
    RescheduleRequest, ScheduleOut, ScheduleRequestCreate,
    ScheduleRequestDecisionOut, ScheduleRequestOut, ScheduleSaveOut,
    ScheduleUpdate, StatusUpdate, SweepOut,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Scheduling"])


# ---------------------------------------------------------------------------
# DEPENDENCIES
# ---------------------------------------------------------------------------

def get_clock() -> Callable[[], datetime.datetime]:
    return datetime.datetime.now


def get_engine(db: Session = Depends(get_db), clock=Depends(get_clock)) -> SchedulingEngine:
    return SchedulingEngine(db, clock=clock)


def capability(operation: Operation):
    """Dependency that resolves the caller's role and checks it may run `operation`."""

    def check(x_actor_role: Optional[str] = Header(default=None)) -> Actor:
        return require_capability(parse_role(x_actor_role), operation)

    return check


def _notify_booking(background_tasks: BackgroundTasks, event: str, booking: Booking):
    background_tasks.add_task(
        notifications.publish,
        booking.doctor_id,
        notifications.booking_event(event, booking),
        booking.doctor.pushover_user if booking.doctor else None,
    )


def _notify_cascade(background_tasks: BackgroundTasks, engine: SchedulingEngine, booking_ids: List[int], reason: str):
    by_doctor = defaultdict(list)
    for booking_id in booking_ids:
        booking = engine.bookings.get(booking_id)
        if booking is not None:
            by_doctor[booking.doctor_id].append(booking_id)
    for doctor_id, ids in by_doctor.items():
        doctor = engine.directory.get_doctor(doctor_id)
        background_tasks.add_task(
            notifications.publish,
            doctor_id,
            notifications.cascade_event(doctor_id, ids, reason),
            doctor.pushover_user if doctor else None,
        )


# ---------------------------------------------------------------------------
# BOOKINGS
# ---------------------------------------------------------------------------

@router.post("/bookings", response_model=BookingResponse, status_code=201)
def create_booking(
    req: BookingCreate,
    background_tasks: BackgroundTasks,
    role: Actor = Depends(capability(Operation.create_booking)),
    engine: SchedulingEngine = Depends(get_engine),
):
    """
    Book a token with a doctor.

    - Checks availability, per-subject conflicts, cutoff and capacity
    - Issues the next token for the day
    - Returns token, time slot, status and estimated wait
    """
    booking = engine.booking_service.create(
        patient_id=req.patient_id,
        doctor_id=req.doctor_id,
        day=req.booking_date,
        session=req.session_type,
        time_slot=req.time_slot,
        dependent_id=req.dependent_id,
        department_id=req.department_id,
        symptoms=req.symptoms,
        actor=role,
        payment_status=req.payment_status,
    )
    _notify_booking(background_tasks, "booking_created", booking)
    return booking


@router.get("/bookings/{booking_id}", response_model=BookingResponse)
def get_booking(
    booking_id: int,
    _role: Actor = Depends(capability(Operation.view_booking)),
    engine: SchedulingEngine = Depends(get_engine),
):
    return engine.booking_service.get(booking_id)


@router.post("/bookings/{booking_id}/cancel", response_model=CancelResponse)
def cancel_booking(
    booking_id: int,
    background_tasks: BackgroundTasks,
    req: Optional[CancelRequest] = None,
    role: Actor = Depends(capability(Operation.cancel_booking)),
    engine: SchedulingEngine = Depends(get_engine),
):
    booking = engine.lifecycle.get(booking_id)
    result = engine.lifecycle.cancel(booking, role, req.reason if req else None)
    _notify_booking(background_tasks, "booking_cancelled", result.booking)
    return CancelResponse(
        booking=BookingResponse.model_validate(result.booking),
        refund_eligible=result.refund_eligible,
    )


@router.post("/bookings/{booking_id}/reschedule", response_model=BookingResponse)
def reschedule_booking(
    booking_id: int,
    req: RescheduleRequest,
    background_tasks: BackgroundTasks,
    role: Actor = Depends(capability(Operation.reschedule_booking)),
    engine: SchedulingEngine = Depends(get_engine),
):
    booking = engine.booking_service.reschedule(
        booking_id,
        day=req.booking_date,
        session=req.session_type,
        time_slot=req.time_slot,
        doctor_id=req.doctor_id,
        actor=role,
        reason=req.reason,
    )
    _notify_booking(background_tasks, "booking_rescheduled", booking)
    return booking


@router.patch("/bookings/{booking_id}/status", response_model=BookingResponse)
def update_booking_status(
    booking_id: int,
    req: StatusUpdate,
    background_tasks: BackgroundTasks,
    role: Actor = Depends(capability(Operation.update_booking_status)),
    engine: SchedulingEngine = Depends(get_engine),
):
    booking = engine.lifecycle.get(booking_id)
    booking = engine.lifecycle.transition(
        booking, req.status, role, reason=req.reason, referred_to=req.referred_to
    )
    _notify_booking(background_tasks, "booking_status_changed", booking)
    return booking


@router.get("/doctor/{doctor_id}/bookings", response_model=List[BookingResponse])
def doctor_bookings(
    doctor_id: int,
    day: datetime.date = Query(..., alias="date"),
    _role: Actor = Depends(capability(Operation.view_doctor_queue)),
    engine: SchedulingEngine = Depends(get_engine),
):
    """All bookings a doctor has on a day (doctor dashboard)."""
    return engine.booking_service.doctor_queue(doctor_id, day)


# ---------------------------------------------------------------------------
# AVAILABILITY & AUTO-ASSIGN
# ---------------------------------------------------------------------------

@router.get("/doctors/{doctor_id}/availability/{day}", response_model=DayAvailabilityOut)
def doctor_availability(
    doctor_id: int,
    day: datetime.date,
    _role: Actor = Depends(capability(Operation.view_availability)),
    engine: SchedulingEngine = Depends(get_engine),
):
    return DayAvailabilityOut.model_validate(engine.resolver.resolve(doctor_id, day))


@router.get("/departments/{department_id}/availability/{day}", response_model=DepartmentAvailabilityOut)
def department_availability(
    department_id: int,
    day: datetime.date,
    _role: Actor = Depends(capability(Operation.view_availability)),
    engine: SchedulingEngine = Depends(get_engine),
):
    views = engine.resolver.department_view(department_id, day)
    return DepartmentAvailabilityOut(
        department_id=department_id,
        date=day,
        doctors=[DayAvailabilityOut.model_validate(v) for v in views],
    )


@router.get("/departments/{department_id}/auto-assign", response_model=AssignmentOut)
def auto_assign(
    department_id: int,
    day: datetime.date = Query(..., alias="date"),
    session: SessionType = Query(...),
    _role: Actor = Depends(capability(Operation.auto_assign)),
    engine: SchedulingEngine = Depends(get_engine),
):
    """Least-loaded doctor with the session still open, plus alternatives."""
    return AssignmentOut.model_validate(engine.assigner.assign(department_id, day, session))


# ---------------------------------------------------------------------------
# LEAVE
# ---------------------------------------------------------------------------

@router.get("/leave-requests", response_model=List[LeaveOut])
def list_leave_requests(
    doctor_id: Optional[int] = Query(default=None),
    status: Optional[LeaveStatus] = Query(default=None),
    role: Actor = Depends(capability(Operation.view_leave_requests)),
    x_actor_id: Optional[int] = Header(default=None),
    engine: SchedulingEngine = Depends(get_engine),
):
    """Leave requests, newest first. A doctor only sees their own."""
    if role == Actor.doctor and x_actor_id is not None:
        doctor_id = x_actor_id
    return engine.leave_service.list(doctor_id=doctor_id, status=status)


@router.post("/leave-requests", response_model=LeaveOut, status_code=201)
def submit_leave(
    req: LeaveCreate,
    _role: Actor = Depends(capability(Operation.submit_leave)),
    engine: SchedulingEngine = Depends(get_engine),
):
    return engine.leave_service.submit(
        doctor_id=req.doctor_id,
        leave_type=req.leave_type,
        start_date=req.start_date,
        end_date=req.end_date,
        session=req.session,
        reason=req.reason,
    )


@router.post("/leave-requests/{leave_id}/approve", response_model=LeaveDecisionOut)
def approve_leave(
    leave_id: int,
    background_tasks: BackgroundTasks,
    req: Optional[Decision] = None,
    _role: Actor = Depends(capability(Operation.decide_leave)),
    engine: SchedulingEngine = Depends(get_engine),
):
    """Approve leave and cancel the bookings it strands."""
    leave, report = engine.leave_service.approve(leave_id, req.comment if req else "")
    _notify_cascade(background_tasks, engine, report.cancelled_ids, config.LEAVE_CANCELLATION_REASON)
    return LeaveDecisionOut(
        leave=LeaveOut.model_validate(leave), cascade=CascadeReportOut.model_validate(report)
    )


@router.post("/leave-requests/{leave_id}/reject", response_model=LeaveDecisionOut)
def reject_leave(
    leave_id: int,
    req: Optional[Decision] = None,
    _role: Actor = Depends(capability(Operation.decide_leave)),
    engine: SchedulingEngine = Depends(get_engine),
):
    leave = engine.leave_service.reject(leave_id, req.comment if req else "")
    return LeaveDecisionOut(leave=LeaveOut.model_validate(leave))


@router.post("/leave-requests/{leave_id}/cancel", response_model=LeaveOut)
def cancel_leave(
    leave_id: int,
    role: Actor = Depends(capability(Operation.cancel_leave)),
    x_actor_id: Optional[int] = Header(default=None),
    engine: SchedulingEngine = Depends(get_engine),
):
    doctor_id = x_actor_id if role == Actor.doctor else None
    return engine.leave_service.cancel(leave_id, doctor_id=doctor_id)


# ---------------------------------------------------------------------------
# SCHEDULES
# ---------------------------------------------------------------------------

@router.get("/doctors/{doctor_id}/schedules", response_model=List[ScheduleOut])
def list_schedules(
    doctor_id: int,
    start: datetime.date = Query(...),
    end: Optional[datetime.date] = Query(default=None),
    _role: Actor = Depends(capability(Operation.view_schedules)),
    engine: SchedulingEngine = Depends(get_engine),
):
    """Stored schedules for a date range (admin calendar)."""
    return engine.schedule_service.list_range(doctor_id, start, end)


@router.put("/doctors/{doctor_id}/schedules/{day}", response_model=ScheduleSaveOut)
def upsert_schedule(
    doctor_id: int,
    day: datetime.date,
    req: ScheduleUpdate,
    background_tasks: BackgroundTasks,
    _role: Actor = Depends(capability(Operation.edit_schedule)),
    engine: SchedulingEngine = Depends(get_engine),
):
    schedule, report = engine.schedule_service.upsert(doctor_id, day, req.changes())
    cancelled = 0
    if report is not None:
        cancelled = report.cancelled
        _notify_cascade(background_tasks, engine, report.cancelled_ids, config.LEAVE_CANCELLATION_REASON)
    return ScheduleSaveOut(schedule=ScheduleOut.model_validate(schedule), cancelled_bookings=cancelled)


@router.post("/doctors/{doctor_id}/schedules/bulk", response_model=BulkScheduleOut)
def bulk_schedules(
    doctor_id: int,
    req: BulkScheduleUpdate,
    background_tasks: BackgroundTasks,
    _role: Actor = Depends(capability(Operation.edit_schedule)),
    engine: SchedulingEngine = Depends(get_engine),
):
    saved, reports = engine.schedule_service.bulk_upsert(
        doctor_id, req.start_date, req.end_date, req.changes.changes(), weekdays=req.weekdays
    )
    cancelled_ids = [i for r in reports for i in r.cancelled_ids]
    _notify_cascade(background_tasks, engine, cancelled_ids, config.LEAVE_CANCELLATION_REASON)
    return BulkScheduleOut(
        updated=len(saved),
        cancelled_bookings=len(cancelled_ids),
        schedules=[ScheduleOut.model_validate(s) for s in saved],
    )


@router.post("/doctors/{doctor_id}/schedules/generate", response_model=List[ScheduleOut], status_code=201)
def generate_schedules(
    doctor_id: int,
    req: Optional[GenerateSchedules] = None,
    _role: Actor = Depends(capability(Operation.edit_schedule)),
    engine: SchedulingEngine = Depends(get_engine),
):
    """Pre-generate default schedules, skipping days that already have one."""
    req = req or GenerateSchedules()
    return engine.schedule_service.generate_defaults(doctor_id, days=req.days, start=req.start_date)


@router.put("/doctors/{doctor_id}/default-hours", response_model=DoctorOut)
def update_default_hours(
    doctor_id: int,
    req: DefaultHoursUpdate,
    _role: Actor = Depends(capability(Operation.edit_default_hours)),
    engine: SchedulingEngine = Depends(get_engine),
):
    return engine.schedule_service.update_default_hours(doctor_id, req.model_dump(exclude_none=True))


# ---------------------------------------------------------------------------
# SCHEDULE CHANGE REQUESTS
# ---------------------------------------------------------------------------

@router.get("/schedule-requests", response_model=List[ScheduleRequestOut])
def list_schedule_requests(
    status: Optional[RequestStatus] = Query(default=None),
    doctor_id: Optional[int] = Query(default=None),
    role: Actor = Depends(capability(Operation.view_schedule_requests)),
    x_actor_id: Optional[int] = Header(default=None),
    engine: SchedulingEngine = Depends(get_engine),
):
    """Review queue: pass status=pending for the requests still awaiting a decision."""
    if role == Actor.doctor and x_actor_id is not None:
        doctor_id = x_actor_id
    return engine.schedule_requests.list(status=status, doctor_id=doctor_id)


@router.post("/schedule-requests", response_model=ScheduleRequestOut, status_code=201)
def submit_schedule_request(
    req: ScheduleRequestCreate,
    _role: Actor = Depends(capability(Operation.submit_schedule_request)),
    engine: SchedulingEngine = Depends(get_engine),
):
    return engine.schedule_requests.submit(
        doctor_id=req.doctor_id,
        request_type=req.type,
        day=req.date,
        reason=req.reason,
        new_schedule=req.new_schedule.changes() if req.new_schedule else None,
    )


@router.post("/schedule-requests/{request_id}/approve", response_model=ScheduleRequestDecisionOut)
def approve_schedule_request(
    request_id: int,
    background_tasks: BackgroundTasks,
    req: Optional[Decision] = None,
    _role: Actor = Depends(capability(Operation.decide_schedule_request)),
    engine: SchedulingEngine = Depends(get_engine),
):
    request, report = engine.schedule_requests.approve(request_id, req.comment if req else "")
    cancelled = 0
    if report is not None:
        cancelled = report.cancelled
        _notify_cascade(background_tasks, engine, report.cancelled_ids, config.LEAVE_CANCELLATION_REASON)
    return ScheduleRequestDecisionOut(
        request=ScheduleRequestOut.model_validate(request), cancelled_bookings=cancelled
    )


@router.post("/schedule-requests/{request_id}/reject", response_model=ScheduleRequestDecisionOut)
def reject_schedule_request(
    request_id: int,
    req: Optional[Decision] = None,
    _role: Actor = Depends(capability(Operation.decide_schedule_request)),
    engine: SchedulingEngine = Depends(get_engine),
):
    request = engine.schedule_requests.reject(request_id, req.comment if req else "")
    return ScheduleRequestDecisionOut(request=ScheduleRequestOut.model_validate(request))


# ---------------------------------------------------------------------------
# ADMIN
# ---------------------------------------------------------------------------

@router.post("/admin/expire-stale-bookings", response_model=SweepOut)
def expire_stale_bookings(
    _role: Actor = Depends(capability(Operation.expire_stale_bookings)),
    engine: SchedulingEngine = Depends(get_engine),
):
    """No-show sweep, called by an external scheduler."""
    report = engine.expire_stale_bookings()
    return SweepOut.model_validate(report)
