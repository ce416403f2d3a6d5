"""
leave.py
========
Doctor leave: the request workflow and the cascade that runs on approval.

Approval flips the covered Schedule days (or one session, for half-day
leave) and cancels every active booking it strands, one record at a time.
The cascade only ever touches active bookings, so it can be re-run for the
same request without side effects. Payment and refund fields are left alone.
"""

import datetime
import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional

from . import config
from .errors import (
    InvalidTransitionError, LeaveOverlapError, NotFoundError,
    PermissionDeniedError, ValidationError,
)
from .lifecycle import BookingLifecycle, BulkCancelReport
from .models import Actor, Doctor, LeaveRequest, LeaveStatus, LeaveType, SessionType
from .repository import BookingRepository, DirectoryRepository, LeaveRepository, ScheduleRepository
from .scheduling import default_schedule

logger = logging.getLogger(__name__)

MAX_LEAVE_DAYS = 60


@dataclass
class CascadeReport:
    dates: List[datetime.date] = field(default_factory=list)
    cancelled_ids: List[int] = field(default_factory=list)
    failed_ids: List[int] = field(default_factory=list)
    skipped: int = 0

    @property
    def cancelled(self) -> int:
        return len(self.cancelled_ids)

    @property
    def failed(self) -> int:
        return len(self.failed_ids)

    def add(self, day: datetime.date, result: BulkCancelReport):
        self.dates.append(day)
        self.cancelled_ids += result.cancelled_ids
        self.failed_ids += result.failed_ids
        self.skipped += result.skipped


def date_range(start: datetime.date, end: datetime.date) -> Iterable[datetime.date]:
    day = start
    while day <= end:
        yield day
        day += datetime.timedelta(days=1)


# ---------------------------------------------------------------------------
# CASCADE
# ---------------------------------------------------------------------------

class LeaveCascadeHandler:
    def __init__(
        self,
        schedules: ScheduleRepository,
        bookings: BookingRepository,
        lifecycle: BookingLifecycle,
    ):
        self.schedules = schedules
        self.bookings = bookings
        self.lifecycle = lifecycle

    def cancel_bookings(
        self,
        doctor_id: int,
        day: datetime.date,
        sessions: Optional[List[SessionType]] = None,
        reason: str = None,
    ) -> BulkCancelReport:
        """Cancel the doctor's active bookings for a day, or only in some sessions."""
        affected = self.bookings.active_for_doctor(doctor_id, day)
        if sessions is not None:
            wanted = {SessionType(s) for s in sessions}
            affected = [b for b in affected if b.session_type in wanted]

        report = self.lifecycle.cancel_many(
            affected, Actor.system, reason or config.LEAVE_CANCELLATION_REASON
        )
        if report.cancelled or report.failed:
            logger.info(
                f"📣 Doctor {doctor_id} on {day}: cancelled {report.cancelled} bookings, "
                f"{report.failed} failed"
            )
        return report

    def block_day(self, doctor: Doctor, day: datetime.date, reason: str) -> BulkCancelReport:
        schedule = self.schedules.get(doctor.id, day) or default_schedule(doctor, day)
        schedule.is_available = False
        schedule.leave_reason = reason or ""
        self.schedules.save(schedule)
        return self.cancel_bookings(doctor.id, day)

    def block_session(self, doctor: Doctor, day: datetime.date, session: SessionType, reason: str) -> BulkCancelReport:
        session = SessionType(session)
        schedule = self.schedules.get(doctor.id, day) or default_schedule(doctor, day)
        setattr(schedule, f"{session.value}_available", False)
        schedule.leave_reason = reason or ""
        self.schedules.save(schedule)
        return self.cancel_bookings(doctor.id, day, sessions=[session])

    def apply(self, leave: LeaveRequest) -> CascadeReport:
        """Run the cascade for an approved leave request."""
        doctor = leave.doctor
        reason = leave.reason or "On leave"
        report = CascadeReport()

        if leave.leave_type == LeaveType.half_day:
            report.add(leave.start_date, self.block_session(doctor, leave.start_date, leave.session, reason))
        else:
            for day in date_range(leave.start_date, leave.end_date):
                report.add(day, self.block_day(doctor, day, reason))

        logger.info(
            f"✅ Leave {leave.id} cascade: {len(report.dates)} days, "
            f"{report.cancelled} cancelled, {report.failed} failed, {report.skipped} skipped"
        )
        return report


# ---------------------------------------------------------------------------
# WORKFLOW
# ---------------------------------------------------------------------------

class LeaveService:
    def __init__(
        self,
        leaves: LeaveRepository,
        directory: DirectoryRepository,
        cascade: LeaveCascadeHandler,
        clock: Callable[[], datetime.datetime] = None,
    ):
        self.leaves = leaves
        self.directory = directory
        self.cascade = cascade
        self.clock = clock or datetime.datetime.now

    def get(self, leave_id: int) -> LeaveRequest:
        leave = self.leaves.get(leave_id)
        if leave is None:
            raise NotFoundError("Leave request not found")
        return leave

    def list(self, doctor_id: int = None, status: LeaveStatus = None) -> List[LeaveRequest]:
        """Leave requests, newest first, optionally for one doctor or one status."""
        if doctor_id is not None and self.directory.get_doctor(doctor_id) is None:
            raise NotFoundError("Doctor not found")
        return self.leaves.list(doctor_id=doctor_id, status=LeaveStatus(status) if status else None)

    def submit(
        self,
        doctor_id: int,
        leave_type: LeaveType,
        start_date: datetime.date,
        end_date: datetime.date = None,
        session: SessionType = None,
        reason: str = "",
    ) -> LeaveRequest:
        if self.directory.get_doctor(doctor_id) is None:
            raise NotFoundError("Doctor not found")

        leave_type = LeaveType(leave_type)
        end_date = end_date or start_date
        if start_date < self.clock().date():
            raise ValidationError("Leave cannot start in the past")
        if end_date < start_date:
            raise ValidationError("End date must be on or after start date")

        if leave_type == LeaveType.half_day:
            if session is None:
                raise ValidationError("Half-day leave needs a session")
            if end_date != start_date:
                raise ValidationError("Half-day leave covers a single date")
            session = SessionType(session)
        else:
            session = None
            if (end_date - start_date).days + 1 > MAX_LEAVE_DAYS:
                raise ValidationError(f"Leave is limited to {MAX_LEAVE_DAYS} days per request")

        if self.leaves.overlapping(doctor_id, start_date, end_date) is not None:
            raise LeaveOverlapError()

        leave = self.leaves.save(
            LeaveRequest(
                doctor_id=doctor_id,
                leave_type=leave_type,
                start_date=start_date,
                end_date=end_date,
                session=session,
                reason=reason or "",
                status=LeaveStatus.pending,
            )
        )
        logger.info(f"📝 Leave request {leave.id} from doctor {doctor_id}: {start_date} to {end_date}")
        return leave

    def cancel(self, leave_id: int, doctor_id: int = None) -> LeaveRequest:
        """The requesting doctor withdraws a leave that is still pending."""
        leave = self.get(leave_id)
        if doctor_id is not None and leave.doctor_id != doctor_id:
            raise PermissionDeniedError("Only the requesting doctor can cancel this leave")
        if leave.status != LeaveStatus.pending:
            raise InvalidTransitionError(f"Only pending leave can be cancelled (status: {leave.status.value})")

        leave.status = LeaveStatus.cancelled
        leave.cancelled_at = self.clock()
        leave.cancelled_by = Actor.doctor
        return self.leaves.save(leave)

    def approve(self, leave_id: int, comment: str = ""):
        """
        Approve and cascade. Approving an already approved request re-runs
        the cascade, which cancels only what is still active.
        """
        leave = self.get(leave_id)
        if leave.status not in (LeaveStatus.pending, LeaveStatus.approved):
            raise InvalidTransitionError(f"Cannot approve a {leave.status.value} leave request")

        if leave.status == LeaveStatus.pending:
            leave.status = LeaveStatus.approved
            leave.decided_at = self.clock()
        if comment:
            leave.admin_comment = comment
        leave = self.leaves.save(leave)

        report = self.cascade.apply(leave)
        return leave, report

    def reject(self, leave_id: int, comment: str = "") -> LeaveRequest:
        leave = self.get(leave_id)
        if leave.status != LeaveStatus.pending:
            raise InvalidTransitionError(f"Cannot reject a {leave.status.value} leave request")
        leave.status = LeaveStatus.rejected
        leave.decided_at = self.clock()
        leave.admin_comment = comment or ""
        leave = self.leaves.save(leave)
        logger.info(f"❌ Leave request {leave.id} rejected")
        return leave
