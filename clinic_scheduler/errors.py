"""
errors.py
=========
Typed errors raised by the scheduling engine.

Every error carries an HTTP status, a stable code and a caller-safe message.
The API layer turns them into JSON responses; nothing here is fatal to the
process.
"""


class SchedulingError(Exception):
    """Base class for all engine errors."""

    status_code = 400
    code = "scheduling_error"
    detail = "Booking request could not be processed"

    def __init__(self, message: str = None):
        self.message = message or self.detail
        super().__init__(self.message)


# ---------------------------------------------------------------------------
# CLIENT ERRORS
# ---------------------------------------------------------------------------

class ValidationError(SchedulingError):
    status_code = 400
    code = "validation_error"
    detail = "Invalid request"


class NotFoundError(SchedulingError):
    status_code = 404
    code = "not_found"
    detail = "Record not found"


class PermissionDeniedError(SchedulingError):
    status_code = 403
    code = "permission_denied"
    detail = "This role is not allowed to perform this operation"


# ---------------------------------------------------------------------------
# CONFLICTS
# ---------------------------------------------------------------------------

class ConflictError(SchedulingError):
    status_code = 409
    code = "conflict"
    detail = "Booking conflicts with an existing appointment"


class DoctorConflictError(ConflictError):
    code = "doctor_conflict"
    detail = "An active appointment with this doctor already exists on this date"


class DepartmentConflictError(ConflictError):
    code = "department_conflict"
    detail = (
        "Cannot book another appointment in the same department on the same date "
        "until the current one is completed or cancelled"
    )


class SlotConflictError(ConflictError):
    code = "slot_conflict"
    detail = "This time slot is no longer available"


class InvalidTransitionError(ConflictError):
    code = "invalid_transition"
    detail = "Appointment cannot move to the requested status"


class LeaveOverlapError(ConflictError):
    code = "leave_overlap"
    detail = "A leave request already exists for this date range"


# ---------------------------------------------------------------------------
# CAPACITY
# ---------------------------------------------------------------------------

class CapacityError(SchedulingError):
    status_code = 409
    code = "capacity"
    detail = "No capacity left"


class SessionFullError(CapacityError):
    code = "session_full"
    detail = "This session is fully booked"


class TokenRangeExhaustedError(CapacityError):
    code = "token_range_exhausted"
    detail = "No more tokens available for this date"


# ---------------------------------------------------------------------------
# AVAILABILITY
# ---------------------------------------------------------------------------

class AvailabilityError(SchedulingError):
    status_code = 409
    code = "availability"
    detail = "Doctor is not available"


class DoctorUnavailableError(AvailabilityError):
    code = "doctor_unavailable"
    detail = "Doctor is not available on this date"


class NoScheduleError(AvailabilityError):
    code = "no_schedule"
    detail = "Doctor has no schedule and no default working hours for this date"


class BookingWindowClosedError(AvailabilityError):
    code = "booking_window_closed"
    detail = "Booking for this session has closed"


# ---------------------------------------------------------------------------
# TRANSIENT
# ---------------------------------------------------------------------------

class TransientError(SchedulingError):
    status_code = 503
    code = "transient"
    detail = "Temporary failure, please retry"


class StoreUnavailableError(TransientError):
    code = "store_unavailable"
    detail = "Storage is temporarily unavailable, please retry"


class TokenAllocationError(TransientError):
    code = "token_allocation_failed"
    detail = "Failed to generate a unique token number. Please try again"
