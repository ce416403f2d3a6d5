"""
assigner.py
===========
Load-Balancing Auto-Assigner.

Advisory and read-only: picks the least-loaded doctor of a department whose
session is still open, with up to three runners-up. The caller books the
chosen doctor through the normal validate -> allocate path.
"""

import datetime
import logging
from dataclasses import dataclass, field
from typing import List

from .availability import AvailabilityResolver
from .errors import DoctorUnavailableError, NoScheduleError, NotFoundError
from .models import Doctor, SessionType
from .repository import BookingRepository, DirectoryRepository

logger = logging.getLogger(__name__)

MAX_ALTERNATIVES = 3


@dataclass
class DoctorLoad:
    doctor_id: int
    doctor_name: str
    load: int
    capacity: int
    next_slot_time: str


@dataclass
class Assignment:
    department_id: int
    department: str
    date: datetime.date
    session: SessionType
    doctor: DoctorLoad
    alternatives: List[DoctorLoad] = field(default_factory=list)


class AutoAssigner:
    def __init__(
        self,
        directory: DirectoryRepository,
        bookings: BookingRepository,
        resolver: AvailabilityResolver,
    ):
        self.directory = directory
        self.bookings = bookings
        self.resolver = resolver

    def candidates(self, department_id: int, day: datetime.date, session: SessionType) -> List[DoctorLoad]:
        """Doctors with the session open, least loaded first, ties by doctor id."""
        session = SessionType(session)
        loads = []
        for doctor in self.directory.department_doctors(department_id):
            status = self._open_session(doctor, day, session)
            if status is None:
                continue
            load = self.bookings.count_active_for_session(doctor.id, day, session)
            loads.append(
                DoctorLoad(
                    doctor_id=doctor.id,
                    doctor_name=doctor.name,
                    load=load,
                    capacity=status.capacity,
                    next_slot_time=status.next_slot_time,
                )
            )
        loads.sort(key=lambda d: (d.load, d.doctor_id))
        return loads

    def assign(self, department_id: int, day: datetime.date, session: SessionType) -> Assignment:
        department = self.directory.get_department(department_id)
        if department is None:
            raise NotFoundError("Department not found")

        ranked = self.candidates(department_id, day, session)
        if not ranked:
            logger.info(f"⏳ No doctor open in {department.name} for {session} on {day}")
            raise DoctorUnavailableError(
                f"No doctor in {department.name} is available for the "
                f"{SessionType(session).value} session on {day.isoformat()}"
            )

        chosen = ranked[0]
        logger.info(f"✅ Auto-assigned Dr. {chosen.doctor_name} (load {chosen.load}) in {department.name}")
        return Assignment(
            department_id=department.id,
            department=department.name,
            date=day,
            session=SessionType(session),
            doctor=chosen,
            alternatives=ranked[1:1 + MAX_ALTERNATIVES],
        )

    def _open_session(self, doctor: Doctor, day: datetime.date, session: SessionType):
        try:
            plan = self.resolver.day_plan(doctor, day)
        except NoScheduleError:
            return None
        window = plan.session(session)
        if window is None:
            return None
        status = self.resolver.session_status(plan, window)
        return status if status.bookable else None
