"""Auth: register, login, me, admin secret."""
from fastapi.testclient import TestClient


def test_register_success(client: TestClient):
    r = client.post(
        "/auth/register",
        json={"email": "New@Example.com", "password": "secure123", "full_name": "New User", "locale": "ar"},
    )
    assert r.status_code == 201
    j = r.json()
    assert j["email"] == "new@example.com"
    assert j["full_name"] == "New User"
    assert j["locale"] == "ar"


def test_register_duplicate_email(client: TestClient):
    body = {"email": "dup@example.com", "password": "secure123"}
    assert client.post("/auth/register", json=body).status_code == 201
    r = client.post("/auth/register", json=body)
    assert r.status_code == 400


def test_register_validation(client: TestClient):
    r = client.post("/auth/register", json={"email": "bad", "password": "123"})
    assert r.status_code == 422
    assert r.json()["status_code"] == 422


def test_login_and_me(client: TestClient):
    client.post("/auth/register", json={"email": "login@example.com", "password": "pass123456", "full_name": "Login"})
    r = client.post("/auth/login", json={"email": "login@example.com", "password": "pass123456"})
    assert r.status_code == 200
    token = r.json()["access_token"]
    me = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["email"] == "login@example.com"


def test_login_wrong_password(client: TestClient):
    client.post("/auth/register", json={"email": "wrong@example.com", "password": "right123"})
    r = client.post("/auth/login", json={"email": "wrong@example.com", "password": "wrongpass"})
    assert r.status_code == 401


def test_me_requires_auth(client: TestClient):
    assert client.get("/auth/me").status_code == 401
    r = client.get("/auth/me", headers={"Authorization": "Bearer not-a-token"})
    assert r.status_code == 401


def test_admin_requires_secret(client: TestClient):
    assert client.get("/api/admin/orders").status_code == 403
    r = client.get("/api/admin/orders", headers={"X-Admin-Secret": "wrong"})
    assert r.status_code == 403
    r = client.get("/api/admin/orders", headers={"X-Admin-Secret": "test-admin-secret"})
    assert r.status_code == 200
