"""
notifications.py
=================
Booking events for doctors: WebSocket push to open dashboards and an
optional Pushover message. Delivery is best effort and never affects the
booking that triggered it.
"""

import logging
from typing import Dict, List, Optional

import requests
from fastapi import WebSocket
from fastapi.concurrency import run_in_threadpool

from . import config

logger = logging.getLogger(__name__)

PUSHOVER_URL = "https://api.pushover.net/1/messages.json"

# Registry to store connected WebSocket clients per doctor
connected_doctors: Dict[int, List[WebSocket]] = {}

EVENT_TITLES = {
    "booking_created": "New Appointment",
    "booking_cancelled": "Appointment Cancelled",
    "booking_rescheduled": "Appointment Rescheduled",
    "booking_status_changed": "Appointment Updated",
    "bookings_cancelled": "Appointments Cancelled",
}


def booking_event(event: str, booking) -> dict:
    """Plain payload for a booking event. Safe to use after the DB session closes."""
    return {
        "event": event,
        "booking_id": booking.id,
        "token_number": booking.token_number,
        "doctor_id": booking.doctor_id,
        "booking_date": booking.booking_date.isoformat(),
        "time_slot": booking.time_slot,
        "session_type": booking.session_type.value,
        "status": booking.status.value,
        "patient_name": booking.patient_name,
    }


def cascade_event(doctor_id: int, booking_ids: List[int], reason: str) -> dict:
    return {
        "event": "bookings_cancelled",
        "doctor_id": doctor_id,
        "booking_ids": list(booking_ids),
        "reason": reason,
    }


def describe(payload: dict) -> str:
    if payload["event"] == "bookings_cancelled":
        return f"{len(payload['booking_ids'])} appointment(s) cancelled: {payload['reason']}"
    return (
        f"Token {payload['token_number']} for {payload['patient_name']} on "
        f"{payload['booking_date']} at {payload['time_slot']} ({payload['status']})"
    )


# ---------------------------------------------------------------------------
# Pushover Notification (optional)
# ---------------------------------------------------------------------------

def send_pushover(user_key: Optional[str], title: str, message: str):
    """
    Sends a push notification using the Pushover API.
    Requires PUSHOVER_TOKEN in the environment and a user key on the doctor.
    """
    if not user_key:
        return  # no pushover user configured

    token = config.PUSHOVER_TOKEN
    if not token:
        logger.debug("⚠️ Pushover token not configured, skipping notification.")
        return

    try:
        resp = requests.post(
            PUSHOVER_URL,
            data={"token": token, "user": user_key, "title": title, "message": message},
            timeout=5,
        )
        if resp.status_code != 200:
            logger.warning(f"❌ Pushover error: {resp.text}")
    except requests.RequestException as e:
        logger.warning(f"❌ Pushover send failed: {e}")


# ---------------------------------------------------------------------------
# WebSocket Registry
# ---------------------------------------------------------------------------

def register_ws(doctor_id: int, ws: WebSocket):
    """Register a WebSocket connection for a doctor."""
    connected_doctors.setdefault(doctor_id, []).append(ws)
    logger.info(f"🩺 Doctor {doctor_id} connected via WebSocket ({len(connected_doctors[doctor_id])} active).")


def unregister_ws(doctor_id: int, ws: WebSocket):
    """Unregister a WebSocket connection when disconnected."""
    if doctor_id in connected_doctors:
        connected_doctors[doctor_id] = [w for w in connected_doctors[doctor_id] if w != ws]
        if not connected_doctors[doctor_id]:
            del connected_doctors[doctor_id]
    logger.info(f"❌ Doctor {doctor_id} disconnected. Remaining sockets: {len(connected_doctors.get(doctor_id, []))}")


async def broadcast_to_doctor(doctor_id: int, data: dict):
    """Send a JSON message to all active WebSocket connections for a doctor."""
    for ws in list(connected_doctors.get(doctor_id, [])):
        try:
            await ws.send_json(data)
        except Exception:
            logger.warning(f"⚠️ Failed to send WS message to doctor {doctor_id}")
            unregister_ws(doctor_id, ws)


async def publish(doctor_id: int, payload: dict, pushover_user: Optional[str] = None):
    """Fan one event out to the doctor's sockets and Pushover."""
    await broadcast_to_doctor(doctor_id, payload)
    # requests blocks; keep it off the event loop
    await run_in_threadpool(
        send_pushover,
        pushover_user,
        EVENT_TITLES.get(payload["event"], "Appointment Update"),
        describe(payload),
    )
