from datetime import date

import requests

from lingoclass.config import settings
from lingoclass.services import bookings, notifications


class _Response:
    def __init__(self, status_code=200):
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


def test_notify_without_webhook_is_noop(monkeypatch):
    monkeypatch.setattr(settings, "SLACK_WEBHOOK_URL", None)
    assert notifications.notify("hello") is False


def test_notify_posts_to_webhook(monkeypatch):
    sent = []
    monkeypatch.setattr(settings, "SLACK_WEBHOOK_URL", "https://hooks.slack.test/abc")
    monkeypatch.setattr(requests, "post", lambda url, json, timeout: sent.append((url, json)) or _Response())

    assert notifications.notify("hello") is True
    assert sent == [("https://hooks.slack.test/abc", {"text": "hello"})]


def test_delivery_failure_does_not_break_cancellation(monkeypatch, session, teacher, student):
    def boom(*args, **kwargs):
        raise requests.ConnectionError("down")

    monkeypatch.setattr(settings, "SLACK_WEBHOOK_URL", "https://hooks.slack.test/abc")
    monkeypatch.setattr(requests, "post", boom)

    booking = bookings.create_booking(session, teacher_id=teacher.id, student_id=student.id,
                                      day=date(2030, 3, 4), time_slot="10:00-11:00")
    cancelled = bookings.cancel_booking(session, booking.id, student.id)
    assert cancelled.status.value == "CANCELLED"
    assert notifications.notify("again") is False
