from conftest import register


SECRET = "admin-test-secret"


def test_wrong_secret_is_rejected(client, author):
    resp = client.get("/api/admin/usage", params={"username": author["username"], "admin_secret": "nope"})
    assert resp.status_code == 401


def test_premium_upgrade_applies_premium_quota(client, author):
    resp = client.post("/api/admin/quota", params={"username": author["username"], "admin_secret": SECRET, "is_premium": True})

    assert resp.status_code == 200
    assert resp.json()["daily_quota"] == 500000
    me = client.get("/api/auth/me").json()
    assert me["is_premium"] is True
    assert me["daily_quota"] == 500000


def test_explicit_quota_wins(client, author):
    resp = client.post(
        "/api/admin/quota",
        params={"username": author["username"], "admin_secret": SECRET, "daily_quota": 1234, "is_premium": True},
    )
    assert resp.json()["daily_quota"] == 1234


def test_usage_report(client, novel, upstream):
    client.post(f"/api/novels/{novel['id']}/generate", json={"prompt": "开始"})
    username = client.get("/api/auth/me").json()["username"]

    report = client.get("/api/admin/usage", params={"username": username, "admin_secret": SECRET}).json()

    assert report["used_today"] > 0
    assert len(report["data"]) == 1
    assert report["data"][0]["requests"] == 1
    assert report["data"][0]["total_tokens"] == report["used_today"]


def test_unknown_user(client):
    register(client, username="someone")
    resp = client.post("/api/admin/quota", params={"username": "ghost", "admin_secret": SECRET, "daily_quota": 1})
    assert resp.status_code == 404
