"""
main.py
========
FastAPI entry point for the Clinic OPD Scheduling service.
It:
 - Initializes the database.
 - Seeds demo departments, doctors and a patient if none exist.
 - Exposes the scheduling REST API (bookings, availability, leave, schedules).
 - Handles WebSocket connections for real-time doctor notifications.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import config
from .api import router as scheduling_router
from .db import SessionLocal, init_db
from .errors import SchedulingError
from .models import Base, Department, Doctor, Patient
from .notifications import register_ws, unregister_ws

# Configure logging
logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

DEMO_DEPARTMENTS = {
    "General Medicine": ["Dr. Alice", "Dr. Bob"],
    "Cardiology": ["Dr. Clara"],
    "Pediatrics": ["Dr. Daniel", "Dr. Emma"],
}


def seed_demo_data():
    """Seed departments and doctors with default hours when the clinic is empty."""
    db = SessionLocal()
    try:
        doctor_count = db.query(Doctor).count()
        if doctor_count:
            logger.info(f"🩻 {doctor_count} doctors already exist in the system.")
            return

        logger.info("🩺 No doctors found. Seeding demo departments and doctors...")
        for dept_name, doctor_names in DEMO_DEPARTMENTS.items():
            department = Department(name=dept_name)
            db.add(department)
            db.flush()
            for name in doctor_names:
                db.add(
                    Doctor(
                        name=name,
                        department_id=department.id,
                        default_start_time=config.DEFAULT_WORK_START,
                        default_end_time=config.DEFAULT_WORK_END,
                        default_break_start=config.DEFAULT_BREAK_START,
                        default_break_end=config.DEFAULT_BREAK_END,
                        default_slot_duration=config.DEFAULT_SLOT_DURATION,
                        default_max_patients=config.DEFAULT_SESSION_CAPACITY,
                    )
                )
        db.add(Patient(name="John Doe", email="john@example.com"))
        db.commit()
        logger.info("✅ Demo data has been seeded.")
    finally:
        db.close()


# ---------------------------------------------------------------------------
# APP LIFESPAN
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables and optionally seed demo data before serving."""
    logger.info("🚀 Starting Clinic Scheduling service...")
    init_db(Base)
    if config.SEED_DEMO_DATA:
        seed_demo_data()
    yield
    logger.info("👋 Clinic Scheduling service shutting down...")


# ---------------------------------------------------------------------------
# APP INITIALIZATION
# ---------------------------------------------------------------------------

app = FastAPI(title="Clinic Scheduling Service", version="1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(scheduling_router)


@app.exception_handler(SchedulingError)
async def scheduling_error_handler(request: Request, exc: SchedulingError):
    """Typed engine errors become a JSON body with a caller-safe message and a stable code."""
    if exc.status_code >= 500:
        logger.warning(f"⚠️ {exc.code} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
    )


# ---------------------------------------------------------------------------
# WEBSOCKET ENDPOINT
# ---------------------------------------------------------------------------

@app.websocket("/ws/doctor/{doctor_id}")
async def websocket_doctor(ws: WebSocket, doctor_id: int):
    """
    WebSocket endpoint for real-time notifications.
    Doctors connect here to receive booking, cancellation and leave events.
    """
    await ws.accept()
    register_ws(doctor_id, ws)
    try:
        while True:
            data = await ws.receive_text()
            await ws.send_text(f"Echo: {data}")
    except WebSocketDisconnect:
        unregister_ws(doctor_id, ws)


# ---------------------------------------------------------------------------
# ROOT ENDPOINT
# ---------------------------------------------------------------------------

@app.get("/")
def root():
    """Basic health check endpoint."""
    return {"message": "Clinic Scheduling service is running!"}
