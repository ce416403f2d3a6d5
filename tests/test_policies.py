"""
test_policies.py
================
Capability table checked at the HTTP boundary.
"""

import pytest

from clinic_scheduler.errors import PermissionDeniedError
from clinic_scheduler.models import Actor
from clinic_scheduler.policies import CAPABILITIES, Operation, allowed, parse_role, require_capability


def test_parse_role():
    assert parse_role("Doctor") == Actor.doctor
    assert parse_role(" admin ") == Actor.admin
    for bad in (None, "", "nurse", "system"):
        with pytest.raises(PermissionDeniedError):
            parse_role(bad)


def test_admin_can_do_everything():
    assert CAPABILITIES[Actor.admin] == frozenset(Operation)


@pytest.mark.parametrize(
    "role, operation, expected",
    [
        (Actor.patient, Operation.create_booking, True),
        (Actor.patient, Operation.update_booking_status, False),
        (Actor.patient, Operation.decide_leave, False),
        (Actor.receptionist, Operation.view_doctor_queue, True),
        (Actor.receptionist, Operation.edit_schedule, False),
        (Actor.receptionist, Operation.view_schedules, True),
        (Actor.receptionist, Operation.view_leave_requests, False),
        (Actor.patient, Operation.view_schedules, False),
        (Actor.doctor, Operation.view_schedule_requests, True),
        (Actor.doctor, Operation.submit_leave, True),
        (Actor.doctor, Operation.create_booking, False),
        (Actor.doctor, Operation.decide_schedule_request, False),
        (Actor.system, Operation.view_booking, False),
    ],
)
def test_capabilities(role, operation, expected):
    assert allowed(role, operation) is expected


def test_require_capability_names_the_operation():
    assert require_capability(Actor.doctor, Operation.edit_schedule) == Actor.doctor
    with pytest.raises(PermissionDeniedError) as exc:
        require_capability(Actor.patient, Operation.expire_stale_bookings)
    assert "expire stale bookings" in exc.value.message
