from fastapi.testclient import TestClient

from conftest import register
from storyloom.core.security import create_access_token, create_refresh_token, decode_access_token
from storyloom.main import app


def test_register_sets_session_cookies(client):
    resp = client.post(
        "/api/auth/register",
        json={"email": "new@example.com", "username": "newbie", "password": "secret123"},
    )

    assert resp.status_code == 201
    user = resp.json()["user"]
    assert user["username"] == "newbie"
    assert user["daily_quota"] == 50000
    assert user["is_premium"] is False
    assert "password_hash" not in user
    assert client.cookies.get("access_token")
    assert client.cookies.get("refresh_token")
    set_cookie = ",".join(resp.headers.get_list("set-cookie")).lower()
    assert "httponly" in set_cookie

    assert client.get("/api/auth/me").json()["email"] == "new@example.com"


def test_duplicate_registration_conflicts(client):
    register(client, username="dup")
    with TestClient(app) as second:
        resp = second.post(
            "/api/auth/register",
            json={"email": "dup@example.com", "username": "someone-else", "password": "secret123"},
        )
    assert resp.status_code == 409
    assert "error" in resp.json()


def test_register_validation(client):
    resp = client.post("/api/auth/register", json={"email": "not-an-email", "username": "abc", "password": "secret123"})
    assert resp.status_code == 400
    resp = client.post("/api/auth/register", json={"email": "a@example.com", "username": "abc", "password": "123"})
    assert resp.status_code == 400


def test_login(client):
    register(client, username="login", password="secret123")
    with TestClient(app) as fresh:
        bad = fresh.post("/api/auth/login", json={"email": "login@example.com", "password": "wrong-pass"})
        assert bad.status_code == 401
        assert bad.json() == {"error": "Invalid credentials"}
        assert fresh.get("/api/auth/me").status_code == 401

        ok = fresh.post("/api/auth/login", json={"email": "login@example.com", "password": "secret123"})
        assert ok.status_code == 200
        assert fresh.get("/api/auth/me").json()["username"] == "login"


def test_bearer_header_is_accepted(client):
    user = register(client, username="bearer")
    token = create_access_token(user["id"])
    with TestClient(app) as fresh:
        resp = fresh.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 200
    assert decode_access_token(token)["type"] == "access"


def test_refresh_token_cannot_be_used_as_access_token(client):
    user = register(client, username="refresh")
    with TestClient(app) as fresh:
        resp = fresh.get("/api/auth/me", headers={"Authorization": f"Bearer {create_refresh_token(user['id'])}"})
    assert resp.status_code == 401


def test_refresh_and_logout(client, author):
    resp = client.post("/api/auth/refresh")
    assert resp.status_code == 200
    assert resp.json()["user"]["id"] == author["id"]

    assert client.post("/api/auth/logout").json() == {"success": True}
    assert client.get("/api/auth/me").status_code == 401
    assert client.post("/api/auth/refresh").status_code == 401


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}
