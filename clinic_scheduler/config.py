"""
config.py
=========
Environment-driven settings for the clinic scheduling engine.
Values are read once at import time; a local .env file is honoured.
"""

import os

from dotenv import load_dotenv

load_dotenv()


def _bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


# ---------------------------------------------------------------------------
# DATABASE
# ---------------------------------------------------------------------------

DB_PATH = os.getenv("CLINIC_DB", "data/clinic.db")
DATABASE_URL = os.getenv("CLINIC_DATABASE_URL", f"sqlite:///{DB_PATH}")

# ---------------------------------------------------------------------------
# DOCTOR DEFAULTS (used when no Schedule row exists for a day)
# ---------------------------------------------------------------------------

DEFAULT_WORK_START = os.getenv("DEFAULT_WORK_START", "09:00")
DEFAULT_WORK_END = os.getenv("DEFAULT_WORK_END", "17:00")
DEFAULT_BREAK_START = os.getenv("DEFAULT_BREAK_START", "13:00")
DEFAULT_BREAK_END = os.getenv("DEFAULT_BREAK_END", "14:00")
DEFAULT_SLOT_DURATION = int(os.getenv("DEFAULT_SLOT_DURATION", "30"))
DEFAULT_SESSION_CAPACITY = int(os.getenv("DEFAULT_SESSION_CAPACITY", "20"))

# Evening clinics are opt-in per Schedule; these are the window defaults.
DEFAULT_EVENING_START = os.getenv("DEFAULT_EVENING_START", "18:00")
DEFAULT_EVENING_END = os.getenv("DEFAULT_EVENING_END", "21:00")

# ---------------------------------------------------------------------------
# BOOKING RULES
# ---------------------------------------------------------------------------

# Same-day bookings close this many minutes before a session starts.
BOOKING_CUTOFF_MINUTES = int(os.getenv("BOOKING_CUTOFF_MINUTES", "60"))

# Patients may cancel up to this many minutes before the appointment.
PATIENT_CANCEL_NOTICE_MINUTES = int(os.getenv("PATIENT_CANCEL_NOTICE_MINUTES", "120"))

LEAVE_CANCELLATION_REASON = "doctor unavailable"
NO_SHOW_CANCELLATION_REASON = "No-show: automatically cancelled after session end"

# ---------------------------------------------------------------------------
# TOKEN ALLOCATION
# ---------------------------------------------------------------------------

TOKEN_PREFIX = os.getenv("TOKEN_PREFIX", "T")
TOKEN_MAX_PER_DAY = int(os.getenv("TOKEN_MAX_PER_DAY", "999"))
TOKEN_MAX_ATTEMPTS = int(os.getenv("TOKEN_MAX_ATTEMPTS", "10"))
TOKEN_RETRY_BACKOFF = float(os.getenv("TOKEN_RETRY_BACKOFF", "0.05"))  # seconds, multiplied by attempt

# Session bookings that lose the slot race to a concurrent writer re-validate this often.
BOOKING_MAX_ATTEMPTS = int(os.getenv("BOOKING_MAX_ATTEMPTS", "5"))

# ---------------------------------------------------------------------------
# APPLICATION
# ---------------------------------------------------------------------------

SEED_DEMO_DATA = _bool("CLINIC_SEED_DEMO_DATA", "true")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:4200").split(",") if o.strip()]
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

PUSHOVER_TOKEN = os.getenv("PUSHOVER_TOKEN")
