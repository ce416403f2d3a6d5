"""
test_notifications.py
=====================
Doctor notifications: WebSocket fan-out and the optional Pushover message.
Tests cover:
 - Pushover runs on a worker thread, not on the event loop
 - a dead socket is dropped without stopping delivery
 - Pushover is skipped without a user key or app token
"""

import asyncio
import threading

from clinic_scheduler import config, notifications


class FakeSocket:
    def __init__(self, fail=False):
        self.fail = fail
        self.sent = []

    async def send_json(self, data):
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(data)


PAYLOAD = {
    "event": "booking_created",
    "booking_id": 1,
    "token_number": "T001",
    "doctor_id": 7,
    "booking_date": "2025-01-07",
    "time_slot": "09:00",
    "session_type": "morning",
    "status": "booked",
    "patient_name": "John Doe",
}


def test_pushover_runs_off_the_event_loop(monkeypatch):
    """
    ✅ Test publish hands the blocking Pushover call to a worker thread.
    """
    calls = []

    def record(user_key, title, message):
        calls.append((threading.get_ident(), user_key, title, message))

    monkeypatch.setattr(notifications, "send_pushover", record)

    loop_thread = {}

    async def run():
        loop_thread["id"] = threading.get_ident()
        await notifications.publish(7, PAYLOAD, pushover_user="u-123")

    asyncio.run(run())

    assert len(calls) == 1
    thread_id, user_key, title, message = calls[0]
    assert thread_id != loop_thread["id"]
    assert user_key == "u-123"
    assert title == "New Appointment"
    assert "T001" in message


def test_dead_socket_is_dropped(monkeypatch):
    monkeypatch.setattr(notifications, "send_pushover", lambda *args: None)
    good, dead = FakeSocket(), FakeSocket(fail=True)
    notifications.register_ws(7, good)
    notifications.register_ws(7, dead)
    try:
        asyncio.run(notifications.publish(7, PAYLOAD))
        assert good.sent == [PAYLOAD]
        assert notifications.connected_doctors[7] == [good]
    finally:
        notifications.unregister_ws(7, good)
    assert 7 not in notifications.connected_doctors


def test_pushover_needs_user_and_token(monkeypatch):
    posted = []
    monkeypatch.setattr(notifications.requests, "post", lambda *args, **kwargs: posted.append(kwargs))

    monkeypatch.setattr(config, "PUSHOVER_TOKEN", None)
    notifications.send_pushover("u-123", "Title", "Body")
    monkeypatch.setattr(config, "PUSHOVER_TOKEN", "app-token")
    notifications.send_pushover(None, "Title", "Body")
    assert posted == []
