"""
scheduling.py
=============
Schedule management for doctors and admins.

 - list the stored Schedules for a date range
 - upsert one day (partial changes merge onto the stored row or the defaults)
 - bulk edit a date range
 - pre-generate default Schedules for a new doctor
 - change a doctor's default hours
 - durable schedule change requests (cancel / reschedule a day)

Whenever an edit closes a day or a session, the leave cascade cancels the
bookings it strands.
"""

import datetime
import logging
from typing import Callable, Dict, List, Optional

from . import config
from .errors import InvalidTransitionError, NotFoundError, ValidationError
from .models import (
    Doctor, RequestStatus, Schedule, ScheduleRequest, ScheduleRequestType,
    SessionType,
)
from .repository import (
    DirectoryRepository, ScheduleRepository, ScheduleRequestRepository, commit,
)
from .timeslots import parse_time

logger = logging.getLogger(__name__)

MAX_BULK_DAYS = 90
MAX_GENERATE_DAYS = 365

TIME_FIELDS = (
    "start_time", "end_time", "break_start", "break_end",
    "morning_start", "morning_end",
    "afternoon_start", "afternoon_end",
    "evening_start", "evening_end",
)
EDITABLE_FIELDS = TIME_FIELDS + (
    "is_available", "slot_duration", "leave_reason", "notes",
    "morning_available", "morning_max_patients",
    "afternoon_available", "afternoon_max_patients",
    "evening_available", "evening_max_patients",
)
DEFAULT_HOUR_FIELDS = {
    "start_time": "default_start_time",
    "end_time": "default_end_time",
    "break_start": "default_break_start",
    "break_end": "default_break_end",
    "slot_duration": "default_slot_duration",
    "max_patients": "default_max_patients",
}


def default_schedule(doctor: Doctor, day: datetime.date) -> Schedule:
    """A Schedule row holding the doctor's default working day."""
    capacity = doctor.default_max_patients or config.DEFAULT_SESSION_CAPACITY
    return Schedule(
        doctor_id=doctor.id,
        date=day,
        is_available=True,
        start_time=doctor.default_start_time or config.DEFAULT_WORK_START,
        end_time=doctor.default_end_time or config.DEFAULT_WORK_END,
        break_start=doctor.default_break_start or config.DEFAULT_BREAK_START,
        break_end=doctor.default_break_end or config.DEFAULT_BREAK_END,
        slot_duration=doctor.default_slot_duration or config.DEFAULT_SLOT_DURATION,
        morning_available=True,
        morning_max_patients=capacity,
        afternoon_available=True,
        afternoon_max_patients=capacity,
        evening_available=False,
        evening_max_patients=capacity,
        leave_reason="",
        notes="",
    )


def validate_changes(changes: Dict) -> Dict:
    unknown = set(changes) - set(EDITABLE_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown schedule fields: {', '.join(sorted(unknown))}")
    for name in TIME_FIELDS:
        if changes.get(name) is not None:
            parse_time(changes[name])
    if "slot_duration" in changes and (changes["slot_duration"] or 0) <= 0:
        raise ValidationError("Slot duration must be a positive number of minutes")
    for session in SessionType:
        capacity = changes.get(f"{session.value}_max_patients")
        if capacity is not None and capacity < 1:
            raise ValidationError("Session capacity must be at least 1")
    return changes


def _check_hours(schedule: Schedule):
    if parse_time(schedule.start_time) >= parse_time(schedule.end_time):
        raise ValidationError("Working hours must start before they end")
    if schedule.break_start and schedule.break_end:
        if parse_time(schedule.break_start) >= parse_time(schedule.break_end):
            raise ValidationError("Break must start before it ends")


class ScheduleService:
    def __init__(
        self,
        directory: DirectoryRepository,
        schedules: ScheduleRepository,
        cascade,
        clock: Callable[[], datetime.datetime] = None,
    ):
        self.directory = directory
        self.schedules = schedules
        self.cascade = cascade
        self.clock = clock or datetime.datetime.now

    def get_doctor(self, doctor_id: int) -> Doctor:
        doctor = self.directory.get_doctor(doctor_id)
        if doctor is None:
            raise NotFoundError("Doctor not found")
        return doctor

    def list_range(self, doctor_id: int, start: datetime.date, end: datetime.date = None) -> List[Schedule]:
        """Stored Schedule rows for a date range. Days without a row are not filled in."""
        doctor = self.get_doctor(doctor_id)
        end = end or start
        if end < start:
            raise ValidationError("End date must be on or after start date")
        return self.schedules.list_range(doctor.id, start, end)

    def upsert(self, doctor_id: int, day: datetime.date, changes: Dict):
        """
        Create or update one day. Returns (schedule, cascade report or None);
        the report is present when the edit closed the day or a session.
        """
        doctor = self.get_doctor(doctor_id)
        changes = validate_changes(dict(changes))

        schedule = self.schedules.get(doctor.id, day) or default_schedule(doctor, day)
        was_open = {s: bool(getattr(schedule, f"{s.value}_available")) for s in SessionType}

        for name, value in changes.items():
            setattr(schedule, name, value)
        if schedule.leave_reason is None:
            schedule.leave_reason = ""
        if schedule.notes is None:
            schedule.notes = ""
        try:
            _check_hours(schedule)
        except ValidationError:
            self.schedules.db.rollback()
            raise

        schedule = self.schedules.save(schedule)
        logger.info(f"🗓️ Schedule saved for doctor {doctor.id} on {day} (available={schedule.is_available})")

        if not schedule.is_available:
            return schedule, self.cascade.cancel_bookings(doctor.id, day)

        closed = [
            s for s in SessionType
            if was_open[s] and not getattr(schedule, f"{s.value}_available")
        ]
        if closed:
            return schedule, self.cascade.cancel_bookings(doctor.id, day, sessions=closed)
        return schedule, None

    def bulk_upsert(
        self,
        doctor_id: int,
        start: datetime.date,
        end: datetime.date,
        changes: Dict,
        weekdays: Optional[List[int]] = None,
    ):
        """Apply the same changes to every day in [start, end], optionally only on some weekdays (0=Mon)."""
        if end < start:
            raise ValidationError("End date must be on or after start date")
        if (end - start).days + 1 > MAX_BULK_DAYS:
            raise ValidationError(f"Bulk edits are limited to {MAX_BULK_DAYS} days")

        saved, reports = [], []
        day = start
        while day <= end:
            if weekdays is None or day.weekday() in weekdays:
                schedule, report = self.upsert(doctor_id, day, changes)
                saved.append(schedule)
                if report is not None:
                    reports.append(report)
            day += datetime.timedelta(days=1)
        logger.info(f"✅ Bulk schedule update for doctor {doctor_id}: {len(saved)} days")
        return saved, reports

    def generate_defaults(self, doctor_id: int, days: int = 30, start: datetime.date = None) -> List[Schedule]:
        """Pre-generate default Schedules, leaving days that already have one untouched."""
        if days < 1 or days > MAX_GENERATE_DAYS:
            raise ValidationError(f"Days must be between 1 and {MAX_GENERATE_DAYS}")
        doctor = self.get_doctor(doctor_id)
        start = start or self.clock().date()

        created = []
        for offset in range(days):
            day = start + datetime.timedelta(days=offset)
            if self.schedules.get(doctor.id, day) is not None:
                continue
            created.append(self.schedules.save(default_schedule(doctor, day)))
        logger.info(f"🗓️ Generated {len(created)} default schedules for doctor {doctor.id}")
        return created

    def update_default_hours(self, doctor_id: int, changes: Dict) -> Doctor:
        doctor = self.get_doctor(doctor_id)
        unknown = set(changes) - set(DEFAULT_HOUR_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown default-hour fields: {', '.join(sorted(unknown))}")

        for name in ("start_time", "end_time", "break_start", "break_end"):
            if changes.get(name) is not None:
                parse_time(changes[name])
        if changes.get("slot_duration") is not None and changes["slot_duration"] <= 0:
            raise ValidationError("Slot duration must be a positive number of minutes")
        if changes.get("max_patients") is not None and changes["max_patients"] < 1:
            raise ValidationError("Session capacity must be at least 1")

        for name, value in changes.items():
            setattr(doctor, DEFAULT_HOUR_FIELDS[name], value)

        start = doctor.default_start_time
        end = doctor.default_end_time
        if start and end and parse_time(start) >= parse_time(end):
            self.schedules.db.rollback()
            raise ValidationError("Working hours must start before they end")

        self.schedules.db.add(doctor)
        commit(self.schedules.db)
        self.schedules.db.refresh(doctor)
        logger.info(f"⏰ Default hours updated for doctor {doctor.id}: {start}-{end}")
        return doctor


# ---------------------------------------------------------------------------
# SCHEDULE CHANGE REQUESTS
# ---------------------------------------------------------------------------

class ScheduleRequestService:
    """Doctor asks, admin decides. Same shape as the leave workflow."""

    def __init__(
        self,
        requests: ScheduleRequestRepository,
        schedule_service: ScheduleService,
        clock: Callable[[], datetime.datetime] = None,
    ):
        self.requests = requests
        self.schedule_service = schedule_service
        self.clock = clock or datetime.datetime.now

    def get(self, request_id: int) -> ScheduleRequest:
        request = self.requests.get(request_id)
        if request is None:
            raise NotFoundError("Schedule request not found")
        return request

    def list(self, status: RequestStatus = None, doctor_id: int = None) -> List[ScheduleRequest]:
        return self.requests.list(doctor_id=doctor_id, status=RequestStatus(status) if status else None)

    def submit(
        self,
        doctor_id: int,
        request_type: ScheduleRequestType,
        day: datetime.date,
        reason: str,
        new_schedule: Dict = None,
    ) -> ScheduleRequest:
        self.schedule_service.get_doctor(doctor_id)
        request_type = ScheduleRequestType(request_type)
        if not reason or not reason.strip():
            raise ValidationError("A reason is required")
        if day < self.clock().date():
            raise ValidationError("Cannot change a schedule in the past")
        if request_type == ScheduleRequestType.reschedule:
            if not new_schedule:
                raise ValidationError("A reschedule request needs the proposed schedule")
            validate_changes(dict(new_schedule))

        request = ScheduleRequest(
            doctor_id=doctor_id,
            type=request_type,
            date=day,
            reason=reason.strip(),
            new_schedule=new_schedule if request_type == ScheduleRequestType.reschedule else None,
            status=RequestStatus.pending,
        )
        request = self.requests.save(request)
        logger.info(f"📝 Schedule {request_type.value} request {request.id} from doctor {doctor_id} for {day}")
        return request

    def approve(self, request_id: int, comment: str = ""):
        """Apply the request. Returns (request, cascade report or None)."""
        request = self.get(request_id)
        if request.status != RequestStatus.pending:
            raise InvalidTransitionError(f"Schedule request is already {request.status.value}")

        if request.type == ScheduleRequestType.cancel:
            changes = {"is_available": False, "leave_reason": request.reason}
        else:
            changes = dict(request.new_schedule or {})
        _, report = self.schedule_service.upsert(request.doctor_id, request.date, changes)

        request.status = RequestStatus.approved
        request.admin_comment = comment or ""
        request = self.requests.save(request)
        logger.info(f"✅ Schedule request {request.id} approved")
        return request, report

    def reject(self, request_id: int, comment: str = "") -> ScheduleRequest:
        request = self.get(request_id)
        if request.status != RequestStatus.pending:
            raise InvalidTransitionError(f"Schedule request is already {request.status.value}")
        request.status = RequestStatus.rejected
        request.admin_comment = comment or ""
        request = self.requests.save(request)
        logger.info(f"❌ Schedule request {request.id} rejected")
        return request
