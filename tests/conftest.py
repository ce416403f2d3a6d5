"""
conftest.py
===========
Shared fixtures for the scheduling engine tests:
 - an isolated in-memory SQLite database per test
 - a fixed, adjustable clock
 - small factories for departments, doctors, patients and schedules
"""

import sys, os
# Ensure the package is discoverable by Python when running from /tests
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

import datetime
import tempfile

# Point the app at a throwaway database before any package module is imported
os.environ.setdefault("CLINIC_DATABASE_URL", f"sqlite:///{tempfile.mkdtemp()}/test_clinic.db")
os.environ.setdefault("CLINIC_SEED_DEMO_DATA", "false")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from clinic_scheduler.engine import SchedulingEngine
from clinic_scheduler.models import Base, Department, Dependent, Doctor, Patient, Schedule

TODAY = datetime.date(2025, 1, 6)  # a Monday
TOMORROW = TODAY + datetime.timedelta(days=1)
YESTERDAY = TODAY - datetime.timedelta(days=1)


class FixedClock:
    """Callable clock the tests can move."""

    def __init__(self, now: datetime.datetime):
        self.now = now

    def __call__(self) -> datetime.datetime:
        return self.now

    def set(self, day: datetime.date, hhmm: str):
        hours, minutes = hhmm.split(":")
        self.now = datetime.datetime.combine(day, datetime.time(int(hours), int(minutes)))


class Factory:
    """Creates committed rows with sensible clinic defaults."""

    def __init__(self, db):
        self.db = db

    def _save(self, obj):
        self.db.add(obj)
        self.db.commit()
        self.db.refresh(obj)
        return obj

    def department(self, name="General Medicine"):
        return self._save(Department(name=name))

    def doctor(self, department, name="Dr. Alice", **overrides):
        fields = dict(
            default_start_time="09:00",
            default_end_time="17:00",
            default_break_start="13:00",
            default_break_end="14:00",
            default_slot_duration=30,
            default_max_patients=20,
        )
        fields.update(overrides)
        return self._save(Doctor(name=name, department_id=department.id, **fields))

    def patient(self, name="John Doe"):
        return self._save(Patient(name=name))

    def dependent(self, patient, name="Jimmy Doe", relation="son"):
        return self._save(Dependent(patient_id=patient.id, name=name, relation=relation))

    def schedule(self, doctor, day, **fields):
        return self._save(Schedule(doctor_id=doctor.id, date=day, **fields))


# --------------------------------------------------------------------------
# FIXTURES
# --------------------------------------------------------------------------

@pytest.fixture
def db_session():
    """
    Fresh in-memory SQLite database with all tables and partial indexes.
    StaticPool keeps the single connection alive for the whole test.
    """
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    Session = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    db = Session()
    try:
        yield db
    finally:
        db.close()
        engine.dispose()


@pytest.fixture
def clock():
    return FixedClock(datetime.datetime.combine(TODAY, datetime.time(7, 0)))


@pytest.fixture
def engine(db_session, clock):
    return SchedulingEngine(db_session, clock=clock, sleep=lambda seconds: None)


@pytest.fixture
def factory(db_session):
    return Factory(db_session)


@pytest.fixture
def clinic(factory):
    """One department, two doctors with default hours, three patients."""
    dept = factory.department("General Medicine")
    return {
        "department": dept,
        "doctors": [factory.doctor(dept, "Dr. Alice"), factory.doctor(dept, "Dr. Bob")],
        "patients": [factory.patient("John Doe"), factory.patient("Jane Roe"), factory.patient("Sam Poe")],
    }
