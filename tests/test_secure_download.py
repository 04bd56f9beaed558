"""Secure material downloads: counting, revocation, access and missing files."""
import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session

from app.core.database import engine
from app.models import Attachment, Enrollment
from app.services.storage import get_storage

ADMIN = {"X-Admin-Secret": "test-admin-secret"}
CONTENT = b"%PDF-1.4 chapter one"


@pytest.fixture
def delivered(client: TestClient, make_course, make_user, place_order, mark_paid, upload_attachment):
    """A paid PDF order with one secure link issued."""
    course = make_course(title_en="Bookkeeping")
    attachment = upload_attachment(course["id"], file_name="chapter-1.pdf", content=CONTENT)
    _, headers = make_user()
    order = place_order(headers, [(course["id"], None)])
    mark_paid(order["id"])
    client.post("/api/admin/fix-missing-enrollments", headers=ADMIN)
    enrollment = client.get(f"/api/admin/orders/{order['id']}/enrollments", headers=ADMIN).json()["enrollments"][0]
    r = client.post(
        f"/api/admin/enrollments/{enrollment['id']}/secure-links",
        json={"attachment_ids": [attachment["id"]]},
        headers=ADMIN,
    )
    assert r.status_code == 200, r.text
    return {
        "order_id": order["id"],
        "enrollment_id": enrollment["id"],
        "attachment_id": attachment["id"],
        "link": r.json()["links"][0],
    }


def _count(client: TestClient, delivered: dict) -> int:
    view = client.get(f"/api/admin/orders/{delivered['order_id']}/enrollments", headers=ADMIN).json()
    return view["enrollments"][0]["secure_links"][0]["download_count"]


def test_download_serves_file_and_counts(client: TestClient, delivered):
    token = delivered["link"]["token"]
    assert delivered["link"]["url"].endswith(f"/api/secure-download/{token}")

    r = client.get(f"/api/secure-download/{token}")
    assert r.status_code == 200
    assert r.content == CONTENT
    assert r.headers["content-type"] == "application/pdf"
    assert "no-store" in r.headers["cache-control"]
    assert "chapter-1.pdf" in r.headers["content-disposition"]
    assert _count(client, delivered) == 1

    r = client.get(f"/api/secure/materials/{token}")
    assert r.status_code == 200
    assert _count(client, delivered) == 2


def test_info_does_not_count(client: TestClient, delivered):
    r = client.get(f"/api/secure/materials/{delivered['link']['token']}/info")
    assert r.status_code == 200
    j = r.json()
    assert j["file_name"] == "chapter-1.pdf"
    assert j["file_size"] == len(CONTENT)
    assert j["content_type"] == "application/pdf"
    assert j["course_title_en"] == "Bookkeeping"
    assert j["download_count"] == 0
    assert _count(client, delivered) == 0


def test_unknown_token_is_404(client: TestClient):
    assert client.get("/api/secure-download/not-a-real-token").status_code == 404
    assert client.get("/api/secure/materials/not-a-real-token/info").status_code == 404


def test_revoked_link_refused_without_counting(client: TestClient, delivered):
    r = client.post(f"/api/admin/secure-links/{delivered['link']['id']}/revoke", headers=ADMIN)
    assert r.status_code == 200
    assert r.json()["is_revoked"] is True
    r = client.get(f"/api/secure-download/{delivered['link']['token']}")
    assert r.status_code == 400
    assert _count(client, delivered) == 0


def test_revoked_attachment_refused_without_counting(client: TestClient, delivered):
    r = client.post(f"/api/admin/attachments/{delivered['attachment_id']}/revoke", headers=ADMIN)
    assert r.status_code == 200
    r = client.get(f"/api/secure-download/{delivered['link']['token']}")
    assert r.status_code == 400
    assert r.json()["error"] == "This file is no longer available."
    assert _count(client, delivered) == 0


def test_completed_enrollment_cannot_be_cancelled(client: TestClient, delivered):
    r = client.post(f"/api/admin/enrollments/{delivered['enrollment_id']}/cancel", headers=ADMIN)
    assert r.status_code == 409
    assert client.get(f"/api/secure-download/{delivered['link']['token']}").status_code == 200


def test_cancelled_enrollment_is_forbidden(client: TestClient, delivered):
    with Session(engine) as db:
        enrollment = db.get(Enrollment, delivered["enrollment_id"])
        enrollment.status = "cancelled"
        db.add(enrollment)
        db.commit()
    r = client.get(f"/api/secure-download/{delivered['link']['token']}")
    assert r.status_code == 403
    assert _count(client, delivered) == 0


def test_missing_file_is_404(client: TestClient, delivered):
    with Session(engine) as db:
        attachment = db.get(Attachment, delivered["attachment_id"])
        get_storage().resolve(attachment.blob_path).unlink()
    r = client.get(f"/api/secure-download/{delivered['link']['token']}")
    assert r.status_code == 404
    assert _count(client, delivered) == 0
