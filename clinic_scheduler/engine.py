"""
engine.py
=========
Wires the repositories and components onto one database session.
Every component receives its collaborators explicitly; this is the only
place that knows the whole graph.
"""

import datetime
import time
from typing import Callable

from sqlalchemy.orm import Session

from .assigner import AutoAssigner
from .availability import AvailabilityResolver
from .booking import BookingService
from .leave import LeaveCascadeHandler, LeaveService
from .lifecycle import BookingLifecycle, BulkCancelReport
from .repository import (
    BookingRepository, CounterStore, DirectoryRepository, LeaveRepository,
    ScheduleRepository, ScheduleRequestRepository,
)
from .scheduling import ScheduleRequestService, ScheduleService
from .tokens import TokenAllocator
from .validator import BookingValidator


class SchedulingEngine:
    def __init__(
        self,
        db: Session,
        clock: Callable[[], datetime.datetime] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.db = db
        self.clock = clock or datetime.datetime.now

        # Repositories
        self.directory = DirectoryRepository(db)
        self.schedules = ScheduleRepository(db)
        self.bookings = BookingRepository(db)
        self.counters = CounterStore(db)

        # Booking path
        self.resolver = AvailabilityResolver(self.directory, self.schedules, self.bookings, clock=self.clock)
        self.validator = BookingValidator(self.resolver, self.bookings)
        self.allocator = TokenAllocator(self.counters, self.bookings, sleep=sleep)
        self.assigner = AutoAssigner(self.directory, self.bookings, self.resolver)
        self.lifecycle = BookingLifecycle(self.bookings, clock=self.clock)
        self.booking_service = BookingService(
            self.directory, self.bookings, self.validator, self.allocator, self.lifecycle, clock=self.clock
        )

        # Leave & schedule management
        self.cascade = LeaveCascadeHandler(self.schedules, self.bookings, self.lifecycle)
        self.leave_service = LeaveService(LeaveRepository(db), self.directory, self.cascade, clock=self.clock)
        self.schedule_service = ScheduleService(self.directory, self.schedules, self.cascade, clock=self.clock)
        self.schedule_requests = ScheduleRequestService(
            ScheduleRequestRepository(db), self.schedule_service, clock=self.clock
        )

    def expire_stale_bookings(self, now: datetime.datetime = None) -> BulkCancelReport:
        """Cancel past and session-ended active bookings as no-shows."""
        return self.lifecycle.expire_stale(self.resolver, now)
