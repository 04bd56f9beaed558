"""Pytest fixtures: test client, fresh in-memory SQLite per test, catalog and user factories."""
import hashlib
import hmac
import json
import os
import tempfile
import uuid

import pytest
from fastapi.testclient import TestClient

# Must be set before app is imported (settings are read at import time)
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("ADMIN_SECRET", "test-admin-secret")
os.environ.setdefault("HYPERPAY_WEBHOOK_SECRET", "hyperpay-test-secret")
os.environ.setdefault("CLICKPAY_WEBHOOK_SECRET", "clickpay-test-secret")
os.environ.setdefault("STORAGE_DIR", tempfile.mkdtemp(prefix="academy-materials-"))
os.environ.setdefault("FULFILLMENT_WORKER_ENABLED", "false")
os.environ.setdefault("REMINDER_WORKER_ENABLED", "false")
os.environ.setdefault("SMTP_HOST", "")
# High limits so the whole suite can register users from one client IP
os.environ.setdefault("RATE_LIMIT_REGISTER_PER_MINUTE", "1000")
os.environ.setdefault("RATE_LIMIT_PER_MINUTE", "1000")

from sqlmodel import SQLModel  # noqa: E402

from app.core.database import engine  # noqa: E402
from app.main import app  # noqa: E402

ADMIN_HEADERS = {"X-Admin-Secret": "test-admin-secret"}
WEBHOOK_SECRETS = {"hyperpay": "hyperpay-test-secret", "clickpay": "clickpay-test-secret"}


@pytest.fixture(scope="function")
def client():
    """TestClient over empty tables; lifespan recreates the schema."""
    SQLModel.metadata.drop_all(engine)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def admin_headers():
    return dict(ADMIN_HEADERS)


@pytest.fixture
def make_user(client: TestClient):
    """Register + login; returns (user_id, auth headers)."""

    def _make(email: str | None = None, locale: str = "en"):
        email = email or f"user-{uuid.uuid4().hex[:8]}@example.com"
        r = client.post(
            "/auth/register",
            json={"email": email, "password": "secret123", "full_name": "Test User", "locale": locale},
        )
        assert r.status_code == 201, r.text
        user_id = r.json()["id"]
        r = client.post("/auth/login", json={"email": email, "password": "secret123"})
        assert r.status_code == 200, r.text
        return user_id, {"Authorization": f"Bearer {r.json()['access_token']}"}

    return _make


@pytest.fixture
def make_course(client: TestClient, admin_headers: dict):
    def _make(price: str = "150.00", type: str = "pdf", currency: str = "SAR", **extra):
        body = {
            "slug": extra.pop("slug", f"course-{uuid.uuid4().hex[:8]}"),
            "title_en": extra.pop("title_en", "Course"),
            "title_ar": extra.pop("title_ar", "دورة"),
            "price": price,
            "currency": currency,
            "type": type,
            **extra,
        }
        r = client.post("/api/admin/courses", json=body, headers=admin_headers)
        assert r.status_code == 201, r.text
        return r.json()

    return _make


@pytest.fixture
def make_session(client: TestClient, admin_headers: dict):
    def _make(course_id: int, capacity: int | None = None):
        r = client.post(
            f"/api/admin/courses/{course_id}/sessions",
            json={
                "title_en": "Evening cohort",
                "start_at": "2030-01-10T18:00:00",
                "end_at": "2030-01-10T20:00:00",
                "capacity": capacity,
                "teams_link": "https://teams.example.com/meet/1",
            },
            headers=admin_headers,
        )
        assert r.status_code == 201, r.text
        return r.json()

    return _make


@pytest.fixture
def upload_attachment(client: TestClient, admin_headers: dict):
    def _upload(course_id: int, file_name: str = "handbook.pdf", content: bytes = b"%PDF-1.4 course handbook"):
        r = client.post(
            f"/api/admin/courses/{course_id}/attachments",
            files={"file": (file_name, content, "application/pdf")},
            headers=admin_headers,
        )
        assert r.status_code == 201, r.text
        return r.json()

    return _upload


@pytest.fixture
def place_order(client: TestClient):
    """Cart with the given (course_id, session_id) items, turned into an order for the user."""

    def _place(headers: dict, items: list[tuple[int, int | None]]):
        cart = client.post("/api/cart/init", headers=headers).json()
        for course_id, session_id in items:
            r = client.post(
                "/api/cart/items",
                json={"cart_id": cart["id"], "course_id": course_id, "session_id": session_id},
                headers=headers,
            )
            assert r.status_code == 201, r.text
        r = client.post("/api/orders", json={"cart_id": cart["id"]}, headers=headers)
        assert r.status_code == 201, r.text
        return r.json()

    return _place


@pytest.fixture
def mark_paid(client: TestClient, admin_headers: dict):
    def _mark(order_id: int):
        r = client.put(f"/api/admin/orders/{order_id}/status", json={"status": "paid"}, headers=admin_headers)
        assert r.status_code == 200, r.text
        return r.json()

    return _mark


def signed(provider: str, payload: dict, secret: str | None = None) -> tuple[bytes, dict]:
    body = json.dumps(payload).encode("utf-8")
    signature = hmac.new((secret or WEBHOOK_SECRETS[provider]).encode("utf-8"), body, hashlib.sha256).hexdigest()
    return body, {"X-Signature": signature, "Content-Type": "application/json"}


@pytest.fixture
def send_webhook(client: TestClient):
    def _send(provider: str, payload: dict, secret: str | None = None):
        body, headers = signed(provider, payload, secret)
        return client.post(f"/api/payments/{provider}/webhook", content=body, headers=headers)

    return _send


@pytest.fixture
def sign_payload():
    """(body, headers) for a webhook signed with the provider secret."""
    return signed
