"""Live session reminders: window, recipients and one reminder per enrollment."""
from datetime import datetime

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session

from app.core.database import engine
from app.services import email_sender
from app.services.reminders import send_due_reminders

ADMIN = {"X-Admin-Secret": "test-admin-secret"}
# make_session schedules every session at this time
STARTS = datetime(2030, 1, 10, 18, 0)


@pytest.fixture
def outbox(monkeypatch):
    sent = []

    def fake_send(to, lang, full_name, course_title, session_title, start_at, teams_link, hours_before):
        sent.append({"to": to, "course": course_title, "teams_link": teams_link, "hours": hours_before})
        return True

    monkeypatch.setattr(email_sender, "send_live_reminder", fake_send)
    return sent


def _book(client: TestClient, make_user, place_order, mark_paid, course_id: int, session_id: int, email: str):
    _, headers = make_user(email=email)
    order = place_order(headers, [(course_id, session_id)])
    mark_paid(order["id"])
    client.post("/api/admin/fix-missing-enrollments", headers=ADMIN)
    return client.get(f"/api/admin/orders/{order['id']}/enrollments", headers=ADMIN).json()["enrollments"][0]


def test_reminder_sent_once_an_hour_before(
    client: TestClient, make_course, make_session, make_user, place_order, mark_paid, outbox
):
    course = make_course(type="live", title_en="Excel Live")
    session = make_session(course["id"])
    _book(client, make_user, place_order, mark_paid, course["id"], session["id"], "alice@example.com")
    cancelled = _book(client, make_user, place_order, mark_paid, course["id"], session["id"], "bob@example.com")
    client.post(f"/api/admin/enrollments/{cancelled['id']}/cancel", headers=ADMIN)

    with Session(engine) as db:
        too_early = send_due_reminders(db, now=datetime(2030, 1, 10, 16, 0))
        assert too_early["sessions"] == 0
        assert outbox == []

        stats = send_due_reminders(db, now=datetime(2030, 1, 10, 17, 5))
        assert stats == {"sessions": 1, "sent": 1, "skipped": 0, "failed": 0}
        assert outbox == [
            {"to": "alice@example.com", "course": "Excel Live", "teams_link": "https://teams.example.com/meet/1", "hours": 1}
        ]

        # the next poll still sees the session in its window
        again = send_due_reminders(db, now=datetime(2030, 1, 10, 17, 10))
        assert again == {"sessions": 1, "sent": 0, "skipped": 1, "failed": 0}
        assert len(outbox) == 1


def test_failed_reminder_is_retried(client: TestClient, make_course, make_session, make_user, place_order, mark_paid, monkeypatch):
    course = make_course(type="live")
    session = make_session(course["id"])
    _book(client, make_user, place_order, mark_paid, course["id"], session["id"], "carol@example.com")

    with Session(engine) as db:
        # SMTP is not configured in tests, so the first send fails
        assert send_due_reminders(db, now=datetime(2030, 1, 10, 17, 0))["failed"] == 1
        monkeypatch.setattr(email_sender, "send_live_reminder", lambda *args: True)
        assert send_due_reminders(db, now=datetime(2030, 1, 10, 17, 0))["sent"] == 1


def test_admin_run_reminders(client: TestClient):
    r = client.post("/api/admin/reminders/run", headers=ADMIN)
    assert r.status_code == 200
    assert r.json() == {"sessions": 0, "sent": 0, "skipped": 0, "failed": 0}
    assert client.post("/api/admin/reminders/run").status_code == 403
