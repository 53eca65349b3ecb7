from datetime import datetime, timedelta

from fastapi.testclient import TestClient
from pymongo.errors import PyMongoError

from tennis_shop.config import Settings
from tennis_shop.security import REFRESH_COOKIE, create_refresh_token, sanitize_html
from tennis_shop.services import service_auth
from tennis_shop.services.service_signup_bonus import is_signup_bonus_active

TEST_PASSWORD = "password123"


def _register(client: TestClient, email: str = "new@example.com", password: str = TEST_PASSWORD):
    return client.post(
        "/api/auth/register",
        json={"email": email, "password": password, "name": "새회원"},
    )


def test_register_stores_hashed_password_and_lowercases_email(client, db):
    response = _register(client, email="New@Example.com")
    assert response.status_code == 201
    user = response.json()["user"]
    assert user["email"] == "new@example.com"
    assert user["pointsBalance"] == 0

    stored = db.users.find_one({"email": "new@example.com"})
    assert stored["hashedPassword"] != TEST_PASSWORD
    assert "password" not in stored


def test_register_rejects_weak_password_and_duplicates(client):
    weak = _register(client, password="short")
    assert weak.status_code == 400
    assert weak.json()["detail"]["error"] == "INVALID_INPUT"

    assert _register(client).status_code == 201
    duplicate = _register(client)
    assert duplicate.status_code == 409
    assert duplicate.json()["detail"]["error"] == "DUPLICATE"


def test_register_survives_signup_bonus_db_error(client, db, monkeypatch, caplog):
    def _broken_bonus(*_args, **_kwargs):
        raise PyMongoError("ledger unavailable")

    monkeypatch.setattr(service_auth, "grant_signup_bonus", _broken_bonus)

    with caplog.at_level("WARNING", logger="tennis_shop.services.service_auth"):
        response = _register(client, email="bonus@example.com")

    assert response.status_code == 201
    assert response.json()["user"]["pointsBalance"] == 0
    assert db.users.count_documents({"email": "bonus@example.com"}) == 1
    assert "signup bonus failed" in caplog.text


def test_login_sets_cookies_and_me_returns_profile(client, db, make_user):
    make_user("login@example.com", password=TEST_PASSWORD, points=700)

    response = client.post("/api/auth/login", json={"email": "login@example.com", "password": TEST_PASSWORD})
    assert response.status_code == 200
    assert "accessToken" in response.cookies
    assert "refreshToken" in response.cookies
    assert db.user_sessions.count_documents({}) == 1

    me = client.get("/api/auth/me")
    assert me.status_code == 200
    assert me.json()["email"] == "login@example.com"
    assert me.json()["pointsBalance"] == 700
    assert me.json()["isAdmin"] is False


def test_login_failures(client, make_user):
    make_user("blocked@example.com", password=TEST_PASSWORD, isSuspended=True)

    wrong = client.post("/api/auth/login", json={"email": "blocked@example.com", "password": "nope12345"})
    assert wrong.status_code == 401
    assert wrong.json()["detail"]["error"] == "INVALID_CREDENTIALS"

    blocked = client.post("/api/auth/login", json={"email": "blocked@example.com", "password": TEST_PASSWORD})
    assert blocked.status_code == 403


def test_whitelisted_admin_gets_csrf_cookie(client, make_user):
    make_user("boss@example.com", password=TEST_PASSWORD)
    response = client.post("/api/auth/login", json={"email": "boss@example.com", "password": TEST_PASSWORD})
    assert response.json()["user"]["isAdmin"] is True
    assert "csrfToken" in response.cookies


def test_me_requires_login(client):
    response = client.get("/api/auth/me")
    assert response.status_code == 401
    assert response.json()["detail"]["error"] == "UNAUTHORIZED"


def test_refresh_paths(client, settings, make_user):
    assert client.post("/api/auth/refresh").status_code == 401

    client.cookies.set(REFRESH_COOKIE, "garbage")
    assert client.post("/api/auth/refresh").status_code == 403

    user = make_user("refresh@example.com")
    client.cookies.clear()
    client.cookies.set(REFRESH_COOKIE, create_refresh_token(settings, str(user["_id"])))
    response = client.post("/api/auth/refresh")
    assert response.status_code == 200
    assert "accessToken" in response.cookies


def test_refresh_for_deleted_user_clears_cookies(client, settings, make_user):
    user = make_user("gone@example.com", isDeleted=True)
    client.cookies.set(REFRESH_COOKIE, create_refresh_token(settings, str(user["_id"])))

    response = client.post("/api/auth/refresh")
    assert response.status_code == 401
    assert response.json()["detail"]["clearCookies"] is True
    assert any("accessToken=" in header for header in response.headers.get_list("set-cookie"))


def test_signup_bonus_applied_once_during_campaign(client, db, settings):
    settings.signup_bonus_enabled = True
    settings.signup_bonus_points = 3000

    response = _register(client, email="bonus@example.com")
    assert response.status_code == 201
    assert response.json()["user"]["pointsBalance"] == 3000
    assert db.points_transactions.count_documents({"type": "signup_bonus"}) == 1


def test_signup_bonus_window_is_inclusive_kst():
    settings = Settings(
        _env_file=None,
        access_token_secret="a" * 32,
        refresh_token_secret="b" * 32,
        signup_bonus_enabled=True,
        signup_bonus_start="2025-01-01",
        signup_bonus_end="2025-01-31",
    )
    # 2025-01-31 23:30 KST == 14:30 UTC
    assert is_signup_bonus_active(settings, datetime(2025, 1, 31, 14, 30))
    assert not is_signup_bonus_active(settings, datetime(2025, 1, 31, 15, 0) + timedelta(minutes=1))
    assert not is_signup_bonus_active(settings, datetime(2024, 12, 31, 14, 59))


def test_sanitize_html_strips_scripts_and_forces_rel():
    cleaned = sanitize_html(
        '<p onclick="x()">hi<script>alert(1)</script></p>'
        '<a href="javascript:alert(1)">bad</a>'
        '<a href="https://example.com">ok</a><img alt="no src">',
    )
    assert "<script" not in cleaned
    assert "onclick" not in cleaned
    assert "javascript:" not in cleaned
    assert 'rel="noopener noreferrer"' in cleaned
    assert "<img" not in cleaned


def test_sanitize_html_checks_img_src_as_attribute():
    decoy = sanitize_html('<p>a</p><img alt="x src=y"><img alt="ok" src="https://example.com/a.png">')
    assert decoy.count("<img") == 1
    assert 'src="https://example.com/a.png"' in decoy

    # 허용되지 않는 스킴의 src 는 지워지므로 이미지도 함께 빠진다
    assert "<img" not in sanitize_html('<img src="javascript:alert(1)" alt="x">')


def test_change_password(db, login_as, make_user):
    user = make_user("change@example.com", password=TEST_PASSWORD)
    client = login_as(user)

    wrong = client.patch("/api/users/me/password", json={"currentPassword": "nope12345", "newPassword": "newpass123"})
    assert wrong.status_code == 400
    weak = client.patch("/api/users/me/password", json={"currentPassword": TEST_PASSWORD, "newPassword": "short"})
    assert weak.status_code == 400

    changed = client.patch(
        "/api/users/me/password",
        json={"currentPassword": TEST_PASSWORD, "newPassword": "newpass123"},
    )
    assert changed.json() == {"ok": True}

    login_as(None)
    old = client.post("/api/auth/login", json={"email": "change@example.com", "password": TEST_PASSWORD})
    assert old.status_code == 401
    new = client.post("/api/auth/login", json={"email": "change@example.com", "password": "newpass123"})
    assert new.status_code == 200


def test_forced_password_change_skips_current_check(db, login_as, make_user):
    user = make_user("forced@example.com", password=TEST_PASSWORD, passwordMustChange=True)

    response = login_as(user).patch("/api/users/me/password", json={"newPassword": "fresh12345"})
    assert response.status_code == 200
    assert db.users.find_one({"_id": user["_id"]})["passwordMustChange"] is False

    anonymous = login_as(None).patch("/api/users/me/password", json={"newPassword": "fresh12345"})
    assert anonymous.status_code == 401
