"""Enrollment creation, the fulfillment queue, secure links and live sessions."""
from datetime import datetime, timedelta
from decimal import Decimal

from fastapi.testclient import TestClient
from sqlmodel import Session, select

from app.core.config import settings
from app.core.database import engine
from app.models import Enrollment, FulfillmentJob, Order
from app.services import enrollment as enrollment_service
from app.services.fulfillment import backoff_seconds, enqueue, process_due_jobs

ADMIN = {"X-Admin-Secret": "test-admin-secret"}


def _fix(client: TestClient):
    r = client.post("/api/admin/fix-missing-enrollments", headers=ADMIN)
    assert r.status_code == 200, r.text
    return r.json()


def _order_enrollments(client: TestClient, order_id: int):
    r = client.get(f"/api/admin/orders/{order_id}/enrollments", headers=ADMIN)
    assert r.status_code == 200, r.text
    return r.json()


def _paid_order(client, make_user, place_order, mark_paid, items):
    _, headers = make_user()
    order = place_order(headers, items)
    mark_paid(order["id"])
    return order, headers


# --- enrollment creation ------------------------------------------------------------


def test_fix_missing_enrollments_is_idempotent(client: TestClient, make_course, make_user, place_order, mark_paid):
    course = make_course()
    order, _ = _paid_order(client, make_user, place_order, mark_paid, [(course["id"], None)])
    first = _fix(client)
    assert first["orders_fixed"] == 1
    assert first["enrollments_created"] == 1
    second = _fix(client)
    assert second["orders_checked"] == 1
    assert second["orders_fixed"] == 0
    assert second["enrollments_created"] == 0
    assert len(_order_enrollments(client, order["id"])["enrollments"]) == 1


def test_create_enrollments_twice_creates_once(client: TestClient, make_course, make_user, place_order, mark_paid):
    course = make_course()
    order, _ = _paid_order(client, make_user, place_order, mark_paid, [(course["id"], None)])
    with Session(engine) as db:
        row = db.get(Order, order["id"])
        assert enrollment_service.create_enrollments_for_order(db, row) == 1
        assert enrollment_service.create_enrollments_for_order(db, row) == 0
        rows = db.exec(select(Enrollment).where(Enrollment.order_id == order["id"])).all()
        assert [e.status for e in rows] == ["paid"]


def test_unpaid_order_is_not_enrolled(client: TestClient, make_course, make_user, place_order):
    course = make_course()
    _, headers = make_user()
    order = place_order(headers, [(course["id"], None)])
    assert _fix(client)["orders_checked"] == 0
    assert _order_enrollments(client, order["id"])["enrollments"] == []


def test_repurchase_after_cancel_reactivates_enrollment(
    client: TestClient, make_course, make_user, place_order, mark_paid, make_session
):
    course = make_course(type="live")
    session = make_session(course["id"], capacity=3)
    _, headers = make_user()
    first = place_order(headers, [(course["id"], session["id"])])
    mark_paid(first["id"])
    _fix(client)
    old = _order_enrollments(client, first["id"])["enrollments"][0]
    r = client.post(f"/api/admin/enrollments/{old['id']}/cancel", json={"reason": "refunded"}, headers=ADMIN)
    assert r.json()["status"] == "cancelled"

    second = place_order(headers, [(course["id"], session["id"])])
    mark_paid(second["id"])
    assert _fix(client)["enrollments_created"] == 1

    rows = _order_enrollments(client, second["id"])["enrollments"]
    assert [(e["id"], e["status"], e["order_id"]) for e in rows] == [(old["id"], "paid", second["id"])]
    assert _order_enrollments(client, second["id"])["order_status"] == "paid"
    assert client.get(f"/api/courses/{course['id']}").json()["sessions"][0]["seats_taken"] == 1
    assert _fix(client)["enrollments_created"] == 0


def test_cannot_buy_a_course_already_held(client: TestClient, make_course, make_user, place_order, mark_paid):
    course = make_course()
    _, headers = make_user()
    order = place_order(headers, [(course["id"], None)])
    mark_paid(order["id"])
    _fix(client)

    cart = client.post("/api/cart/init", headers=headers).json()
    r = client.post("/api/cart/items", json={"cart_id": cart["id"], "course_id": course["id"]}, headers=headers)
    assert r.status_code == 400
    assert r.json()["error"] == "Already enrolled in this course."

    # a guest cart filled before logging in is refused at checkout
    guest = client.post("/api/cart/init", json={"anonymous_id": "guest-tab"}).json()
    r = client.post(
        "/api/cart/items",
        json={"cart_id": guest["id"], "course_id": course["id"]},
        headers={"X-Anonymous-Id": "guest-tab"},
    )
    assert r.status_code == 201
    r = client.post("/api/orders", json={"cart_id": guest["id"]}, headers={**headers, "X-Anonymous-Id": "guest-tab"})
    assert r.status_code == 400
    assert r.json()["error"] == "Already enrolled in this course."

    merged = client.post("/api/cart/merge", json={"anonymous_id": "guest-tab"}, headers=headers).json()
    assert merged["items"] == []


def test_fix_missing_continues_after_a_failing_order(
    client: TestClient, make_course, make_user, place_order, mark_paid, monkeypatch
):
    course = make_course()
    bad, _ = _paid_order(client, make_user, place_order, mark_paid, [(course["id"], None)])
    good, _ = _paid_order(client, make_user, place_order, mark_paid, [(course["id"], None)])
    real_create = enrollment_service.create_enrollments_for_order

    def flaky(db, order):
        if order.id == bad["id"]:
            raise RuntimeError("storage offline")
        return real_create(db, order)

    monkeypatch.setattr(enrollment_service, "create_enrollments_for_order", flaky)
    result = _fix(client)
    assert result["orders_fixed"] == 1
    assert result["enrollments_created"] == 1
    assert result["failures"] == [{"order_id": bad["id"], "error": "storage offline"}]
    assert len(_order_enrollments(client, good["id"])["enrollments"]) == 1


def test_diagnostics_lists_orders_missing_enrollments(client: TestClient, make_course, make_user, place_order, mark_paid):
    course = make_course()
    order, _ = _paid_order(client, make_user, place_order, mark_paid, [(course["id"], None)])
    j = client.get("/api/admin/enrollment-diagnostics", headers=ADMIN).json()
    assert j["paid_orders"] == 1
    assert j["orders_missing_enrollments"] == [order["id"]]
    _fix(client)
    j = client.get("/api/admin/enrollment-diagnostics", headers=ADMIN).json()
    assert j["orders_missing_enrollments"] == []
    assert j["enrollments_by_status"] == {"paid": 1}


# --- queue --------------------------------------------------------------------------


def test_backoff_doubles_and_caps():
    base = settings.fulfillment_retry_base_seconds
    assert backoff_seconds(1) == base
    assert backoff_seconds(2) == base * 2
    assert backoff_seconds(3) == base * 4
    assert backoff_seconds(50) == settings.fulfillment_retry_max_seconds


def test_enqueue_deduplicates_waiting_jobs(client: TestClient, make_course, make_user, place_order):
    course = make_course()
    _, headers = make_user()
    order = place_order(headers, [(course["id"], None)])
    with Session(engine) as db:
        first = enqueue(db, order["id"])
        db.commit()
        second = enqueue(db, order["id"])
        db.commit()
        assert first.id == second.id
        assert len(db.exec(select(FulfillmentJob)).all()) == 1


def test_failed_job_retried_with_backoff_then_done(client: TestClient, make_course, make_user, place_order, mark_paid):
    course = make_course()
    _, headers = make_user()
    order = place_order(headers, [(course["id"], None)])
    with Session(engine) as db:
        enqueue(db, order["id"])
        db.commit()
        # order is still unpaid, so the attempt fails
        stats = process_due_jobs(db)
        assert stats == {"processed": 1, "done": 0, "retried": 1, "failed": 0}
        job = db.exec(select(FulfillmentJob)).one()
        assert job.status == "pending"
        assert job.attempts == 1
        assert "not paid" in job.last_error
        assert job.next_attempt_at > datetime.utcnow()
        assert process_due_jobs(db)["processed"] == 0
        retry_at = job.next_attempt_at

    mark_paid(order["id"])
    with Session(engine) as db:
        stats = process_due_jobs(db, now=retry_at + timedelta(seconds=1))
        assert stats["done"] == 1
        job = db.exec(select(FulfillmentJob)).one()
        assert job.status == "done"
        assert job.attempts == 2
        assert job.last_error is None
    assert len(_order_enrollments(client, order["id"])["enrollments"]) == 1


def test_job_fails_after_max_attempts(client: TestClient, make_course, make_user, place_order, monkeypatch):
    monkeypatch.setattr(settings, "fulfillment_max_attempts", 1)
    course = make_course()
    _, headers = make_user()
    order = place_order(headers, [(course["id"], None)])
    with Session(engine) as db:
        enqueue(db, order["id"])
        db.commit()
        assert process_due_jobs(db)["failed"] == 1
    jobs = client.get("/api/admin/fulfillment/jobs", params={"status": "failed"}, headers=ADMIN).json()
    assert len(jobs) == 1
    assert jobs[0]["attempts"] == 1


def test_admin_run_drains_due_jobs(client: TestClient, make_course, make_user, place_order, mark_paid):
    course = make_course()
    _, headers = make_user()
    order = place_order(headers, [(course["id"], None)])
    mark_paid(order["id"])
    with Session(engine) as db:
        enqueue(db, order["id"])
        db.commit()
    r = client.post("/api/admin/fulfillment/run", headers=ADMIN)
    assert r.status_code == 200
    assert r.json()["done"] == 1
    assert len(_order_enrollments(client, order["id"])["enrollments"]) == 1


# --- secure links -------------------------------------------------------------------


def test_last_completed_enrollment_marks_order_processed(
    client: TestClient, make_course, make_user, place_order, mark_paid, upload_attachment
):
    a = make_course()
    b = make_course()
    upload_attachment(a["id"])
    upload_attachment(b["id"])
    order, _ = _paid_order(client, make_user, place_order, mark_paid, [(a["id"], None), (b["id"], None)])
    _fix(client)
    enrollments = _order_enrollments(client, order["id"])["enrollments"]
    assert len(enrollments) == 2

    r = client.post(f"/api/admin/enrollments/{enrollments[0]['id']}/secure-links", json={"attachment_ids": []}, headers=ADMIN)
    assert r.status_code == 200, r.text
    assert r.json()["enrollment_status"] == "completed"
    assert r.json()["order_status"] == "paid"

    r = client.post(f"/api/admin/enrollments/{enrollments[1]['id']}/secure-links", json={"attachment_ids": []}, headers=ADMIN)
    assert r.json()["order_status"] == "processed"


def test_secure_links_reused_and_reissued_after_revoke(
    client: TestClient, make_course, make_user, place_order, mark_paid, upload_attachment
):
    course = make_course()
    att = upload_attachment(course["id"])
    order, _ = _paid_order(client, make_user, place_order, mark_paid, [(course["id"], None)])
    _fix(client)
    enrollment_id = _order_enrollments(client, order["id"])["enrollments"][0]["id"]
    url = f"/api/admin/enrollments/{enrollment_id}/secure-links"

    first = client.post(url, json={"attachment_ids": [att["id"]]}, headers=ADMIN).json()["links"][0]
    again = client.post(url, json={"attachment_ids": [att["id"]]}, headers=ADMIN).json()["links"][0]
    assert again["token"] == first["token"]

    client.post(f"/api/admin/secure-links/{first['id']}/revoke", headers=ADMIN)
    reissued = client.post(url, json={"attachment_ids": [att["id"]]}, headers=ADMIN).json()["links"][0]
    assert reissued["id"] == first["id"]
    assert reissued["token"] != first["token"]
    assert reissued["is_revoked"] is False


def test_secure_links_validation(client: TestClient, make_course, make_user, place_order, mark_paid, upload_attachment):
    course = make_course()
    other = make_course()
    foreign = upload_attachment(other["id"])
    live = make_course(type="live")
    order, _ = _paid_order(client, make_user, place_order, mark_paid, [(course["id"], None), (live["id"], None)])
    _fix(client)
    rows = {e["course_id"]: e for e in _order_enrollments(client, order["id"])["enrollments"]}

    r = client.post(
        f"/api/admin/enrollments/{rows[course['id']]['id']}/secure-links",
        json={"attachment_ids": [foreign["id"]]},
        headers=ADMIN,
    )
    assert r.status_code == 400
    r = client.post(f"/api/admin/enrollments/{rows[live['id']]['id']}/secure-links", json={"attachment_ids": []}, headers=ADMIN)
    assert r.status_code == 400
    assert client.post("/api/admin/enrollments/999/secure-links", json={"attachment_ids": []}, headers=ADMIN).status_code == 404

    client.post(f"/api/admin/enrollments/{rows[course['id']]['id']}/cancel", json={"reason": "duplicate"}, headers=ADMIN)
    r = client.post(
        f"/api/admin/enrollments/{rows[course['id']]['id']}/secure-links", json={"attachment_ids": []}, headers=ADMIN
    )
    assert r.status_code == 409


def test_end_to_end_pdf_order(client: TestClient, make_course, make_user, place_order, mark_paid, upload_attachment):
    course = make_course(price="150.00", currency="SAR")
    att = upload_attachment(course["id"], content=b"%PDF-1.4 the whole course")
    order, headers = _paid_order(client, make_user, place_order, mark_paid, [(course["id"], None)])
    assert Decimal(str(order["amount"])) == Decimal("150.00")

    fixed = _fix(client)
    assert fixed["enrollments_created"] == 1
    enrollment = _order_enrollments(client, order["id"])["enrollments"][0]
    assert enrollment["status"] == "paid"

    r = client.post(
        f"/api/admin/enrollments/{enrollment['id']}/secure-links", json={"attachment_ids": [att["id"]]}, headers=ADMIN
    )
    assert r.status_code == 200
    j = r.json()
    assert j["enrollment_status"] == "completed"
    assert j["order_status"] == "processed"
    link = j["links"][0]
    assert link["download_count"] == 0

    d = client.get(f"/api/secure-download/{link['token']}")
    assert d.status_code == 200
    assert d.content == b"%PDF-1.4 the whole course"
    view = _order_enrollments(client, order["id"])
    assert view["order_status"] == "processed"
    assert view["enrollments"][0]["secure_links"][0]["download_count"] == 1

    mine = client.get("/api/my/enrollments", headers=headers).json()
    assert mine[0]["status"] == "completed"
    assert mine[0]["progress"] == 100


def test_cancel_last_open_enrollment_processes_order(
    client: TestClient, make_course, make_user, place_order, mark_paid, upload_attachment
):
    a = make_course()
    b = make_course()
    upload_attachment(a["id"])
    order, _ = _paid_order(client, make_user, place_order, mark_paid, [(a["id"], None), (b["id"], None)])
    _fix(client)
    rows = {e["course_id"]: e for e in _order_enrollments(client, order["id"])["enrollments"]}
    client.post(f"/api/admin/enrollments/{rows[a['id']]['id']}/secure-links", json={"attachment_ids": []}, headers=ADMIN)
    r = client.post(f"/api/admin/enrollments/{rows[b['id']]['id']}/cancel", headers=ADMIN)
    assert r.status_code == 200
    assert r.json()["status"] == "cancelled"
    assert _order_enrollments(client, order["id"])["order_status"] == "processed"
    # a cancelled enrollment cannot be cancelled again
    assert client.post(f"/api/admin/enrollments/{rows[b['id']]['id']}/cancel", headers=ADMIN).status_code == 409


# --- live sessions ------------------------------------------------------------------


def _live_enrollment(client, make_course, make_user, place_order, mark_paid):
    course = make_course(type="live")
    order, headers = _paid_order(client, make_user, place_order, mark_paid, [(course["id"], None)])
    _fix(client)
    return course, _order_enrollments(client, order["id"])["enrollments"][0], headers


def _seats(client: TestClient, course_id: int) -> dict:
    return {s["id"]: s["seats_taken"] for s in client.get(f"/api/courses/{course_id}").json()["sessions"]}


def test_live_session_lifecycle(client: TestClient, make_course, make_user, place_order, mark_paid):
    course, enrollment, headers = _live_enrollment(client, make_course, make_user, place_order, mark_paid)
    base = f"/api/admin/enrollments/{enrollment['id']}/session"

    r = client.post(
        base,
        json={
            "session": {
                "title_en": "Kick-off",
                "start_at": "2030-02-01T17:00:00",
                "end_at": "2030-02-01T19:00:00",
                "capacity": 5,
                "teams_link": "https://teams.example.com/meet/abc",
            }
        },
        headers=ADMIN,
    )
    assert r.status_code == 200, r.text
    session = r.json()["session"]
    assert r.json()["enrollment"]["status"] == "notified"
    assert _seats(client, course["id"]) == {session["id"]: 1}
    mine = client.get("/api/my/enrollments", headers=headers).json()[0]
    assert mine["status"] == "active"
    assert mine["session"]["teams_link"] == "https://teams.example.com/meet/abc"

    r = client.put(base, json={"end_at": "2030-02-01T20:00:00"}, headers=ADMIN)
    assert r.status_code == 200
    assert r.json()["session"]["end_at"].startswith("2030-02-01T20:00")
    assert client.put(base, json={"end_at": "2030-01-01T00:00:00"}, headers=ADMIN).status_code == 400

    r = client.post(f"{base}/resend", headers=ADMIN)
    assert r.status_code == 200
    assert r.json()["sent"] is False  # SMTP is not configured in tests

    r = client.post(f"{base}/cancel", json={"reason": "Instructor ill"}, headers=ADMIN)
    assert r.status_code == 200
    assert r.json()["status"] == "paid"
    assert r.json()["session_id"] is None
    assert _seats(client, course["id"]) == {session["id"]: 0}
    assert client.post(f"{base}/cancel", headers=ADMIN).status_code == 400


def test_live_session_existing_full_session(client: TestClient, make_course, make_user, place_order, mark_paid, make_session):
    course, enrollment, _ = _live_enrollment(client, make_course, make_user, place_order, mark_paid)
    full = make_session(course["id"], capacity=1)
    # fill the session through a second buyer
    _, headers = make_user()
    order = place_order(headers, [(course["id"], full["id"])])
    mark_paid(order["id"])
    _fix(client)
    r = client.post(f"/api/admin/enrollments/{enrollment['id']}/session", json={"session_id": full["id"]}, headers=ADMIN)
    assert r.status_code == 400
    assert r.json()["error"] == "Session is full."


def test_live_session_rules(client: TestClient, make_course, make_user, place_order, mark_paid, make_session):
    pdf = make_course()
    order, _ = _paid_order(client, make_user, place_order, mark_paid, [(pdf["id"], None)])
    _fix(client)
    pdf_enrollment = _order_enrollments(client, order["id"])["enrollments"][0]
    r = client.post(f"/api/admin/enrollments/{pdf_enrollment['id']}/session", json={}, headers=ADMIN)
    assert r.status_code == 400

    course, enrollment, _ = _live_enrollment(client, make_course, make_user, place_order, mark_paid)
    other_course = make_course(type="live")
    foreign = make_session(other_course["id"])
    r = client.post(f"/api/admin/enrollments/{enrollment['id']}/session", json={"session_id": foreign["id"]}, headers=ADMIN)
    assert r.status_code == 400
    r = client.post(f"/api/admin/enrollments/{enrollment['id']}/session", json={}, headers=ADMIN)
    assert r.status_code == 400

    client.post(f"/api/admin/enrollments/{enrollment['id']}/cancel", headers=ADMIN)
    own = make_session(course["id"])
    r = client.post(f"/api/admin/enrollments/{enrollment['id']}/session", json={"session_id": own["id"]}, headers=ADMIN)
    assert r.status_code == 409
