"""
policies.py
===========
Single capability table consulted at the HTTP boundary.
The engine below it does not look at roles, apart from recording who
cancelled a booking and the patient notice window.
"""

import enum

from .errors import PermissionDeniedError
from .models import Actor


class Operation(str, enum.Enum):
    create_booking = "create_booking"
    view_booking = "view_booking"
    cancel_booking = "cancel_booking"
    reschedule_booking = "reschedule_booking"
    update_booking_status = "update_booking_status"
    view_availability = "view_availability"
    auto_assign = "auto_assign"
    view_doctor_queue = "view_doctor_queue"
    view_schedules = "view_schedules"
    view_leave_requests = "view_leave_requests"
    view_schedule_requests = "view_schedule_requests"
    submit_leave = "submit_leave"
    cancel_leave = "cancel_leave"
    decide_leave = "decide_leave"
    edit_schedule = "edit_schedule"
    edit_default_hours = "edit_default_hours"
    submit_schedule_request = "submit_schedule_request"
    decide_schedule_request = "decide_schedule_request"
    expire_stale_bookings = "expire_stale_bookings"


_BOOKING_DESK = {
    Operation.create_booking,
    Operation.view_booking,
    Operation.cancel_booking,
    Operation.reschedule_booking,
    Operation.view_availability,
    Operation.auto_assign,
}

CAPABILITIES = {
    Actor.patient: frozenset(_BOOKING_DESK),
    Actor.receptionist: frozenset(_BOOKING_DESK | {
        Operation.update_booking_status,
        Operation.view_doctor_queue,
        Operation.view_schedules,
    }),
    Actor.doctor: frozenset({
        Operation.view_booking,
        Operation.cancel_booking,
        Operation.update_booking_status,
        Operation.view_availability,
        Operation.view_doctor_queue,
        Operation.view_schedules,
        Operation.view_leave_requests,
        Operation.view_schedule_requests,
        Operation.submit_leave,
        Operation.cancel_leave,
        Operation.edit_schedule,
        Operation.edit_default_hours,
        Operation.submit_schedule_request,
    }),
    Actor.admin: frozenset(Operation),
}


def parse_role(value: str) -> Actor:
    """Map the caller's role header to an Actor. 'system' is never a caller."""
    try:
        role = Actor((value or "").strip().lower())
    except ValueError:
        raise PermissionDeniedError(f"Unknown role '{value}'")
    if role not in CAPABILITIES:
        raise PermissionDeniedError(f"Unknown role '{value}'")
    return role


def allowed(role: Actor, operation: Operation) -> bool:
    return operation in CAPABILITIES.get(role, frozenset())


def require_capability(role: Actor, operation: Operation) -> Actor:
    if not allowed(role, operation):
        raise PermissionDeniedError(
            f"Role '{Actor(role).value}' is not allowed to {Operation(operation).value.replace('_', ' ')}"
        )
    return role
