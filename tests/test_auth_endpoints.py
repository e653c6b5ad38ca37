from datetime import timedelta

from sqlmodel import select

from models import User
from auth import create_access_token


# ---------- sign-up ----------

def test_signup_creates_unverified_user_and_sends_link(auth_helpers, mailer):
    res = auth_helpers["signup"]("alice@example.com", "SuperSecret123!", "Alice")
    assert res.status_code == 201
    data = res.json()
    assert data["user_id"]
    assert data["email_sent"] is True

    assert len(mailer.outbox) == 1
    assert mailer.outbox[0]["to"] == "alice@example.com"
    assert "/verify-email?token=" in mailer.outbox[0]["text"]

    with auth_helpers["session_factory"]() as session:
        user = session.get(User, data["user_id"])
        assert user.email_verified is None
        assert user.verification_token
        assert user.hashed_password != "SuperSecret123!"


def test_signup_duplicate_email_conflict_and_no_second_row(auth_helpers):
    signup = auth_helpers["signup"]
    r1 = signup("bob@example.com", "Password123!")
    assert r1.status_code == 201

    r2 = signup("BOB@example.com", "Password123!")
    assert r2.status_code == 409
    assert "detail" in r2.json()

    with auth_helpers["session_factory"]() as session:
        rows = session.exec(select(User).where(User.email == "bob@example.com")).all()
        assert len(rows) == 1


def test_signup_invalid_payload_is_400(client):
    res = client.post(
        "/api/auth/signup",
        json={"name": "A", "email": "not-an-email", "password": "short"},
    )
    assert res.status_code == 400
    body = res.json()
    assert body["detail"] == "Invalid request"
    assert body["errors"]


def test_signup_succeeds_when_email_cannot_be_sent(auth_helpers, mailer):
    mailer.fail = True
    res = auth_helpers["signup"]("offline@example.com", "Password123!")
    assert res.status_code == 201
    assert res.json()["email_sent"] is False


# ---------- verification ----------

def test_verify_marks_email_and_token_is_single_use(auth_helpers, mailer, client):
    res = auth_helpers["signup"]("carol@example.com", "Password123!")
    token = mailer.last_token("carol@example.com")

    r1 = client.get("/api/auth/verify", params={"token": token})
    assert r1.status_code == 200

    with auth_helpers["session_factory"]() as session:
        user = session.get(User, res.json()["user_id"])
        assert user.email_verified is not None
        assert user.verification_token is None

    r2 = client.get("/api/auth/verify", params={"token": token})
    assert r2.status_code == 400


def test_verify_missing_or_unknown_token(client):
    assert client.get("/api/auth/verify").status_code == 400
    assert client.get("/api/auth/verify", params={"token": "nope"}).status_code == 400


# ---------- login ----------

def test_login_success_sets_http_only_cookie(auth_helpers, client):
    auth_helpers["register_verified"]("dora@example.com", "Map12345!")
    res = auth_helpers["login"]("dora@example.com", "Map12345!")

    assert res.status_code == 200
    data = res.json()
    assert data["access_token"]
    assert data["token_type"] == "bearer"

    set_cookie = res.headers["set-cookie"].lower()
    assert "session=" in set_cookie
    assert "httponly" in set_cookie

    # the cookie alone authenticates follow-up requests
    me = client.get("/api/auth/me")
    assert me.status_code == 200
    assert me.json()["email"] == "dora@example.com"


def test_login_before_verification_forbidden(auth_helpers):
    auth_helpers["signup"]("early@example.com", "Password123!")
    res = auth_helpers["login"]("early@example.com", "Password123!")
    assert res.status_code == 403


def test_login_wrong_password_or_unknown_user(auth_helpers):
    auth_helpers["register_verified"]("erin@example.com", "Correct123!")

    r_wrong = auth_helpers["login"]("erin@example.com", "Wrong123!")
    assert r_wrong.status_code == 400
    assert "detail" in r_wrong.json()

    r_unknown = auth_helpers["login"]("ghost@example.com", "whatever123")
    assert r_unknown.status_code == 400


def test_login_email_is_case_insensitive(auth_helpers):
    auth_helpers["register_verified"]("CaseUser@example.com", "CasePass123!")
    res = auth_helpers["login"]("caseuser@EXAMPLE.com", "CasePass123!")
    assert res.status_code == 200


def test_login_very_long_password_not_500(client):
    r = client.post("/api/auth/login", json={"email": "u@example.com", "password": "p" * 300})
    assert r.status_code in (400, 401)
    assert "detail" in r.json()


def test_logout_clears_cookie(auth_helpers, client):
    auth_helpers["register_verified"]("leave@example.com", "Password123!")
    auth_helpers["login"]("leave@example.com", "Password123!")
    assert client.get("/api/auth/me").status_code == 200

    res = client.post("/api/auth/logout")
    assert res.status_code == 200
    assert "max-age=0" in res.headers["set-cookie"].lower()
    client.cookies.clear()
    assert client.get("/api/auth/me").status_code == 401


# ---------- /api/auth/me ----------

def test_me_requires_auth(client):
    r = client.get("/api/auth/me")
    assert r.status_code == 401
    assert r.headers.get("www-authenticate") == "Bearer"


def test_me_with_tampered_token_unauthorized(auth_helpers, client):
    token = auth_helpers["get_token"]("tamper@example.com")
    tampered = token[:-1] + ("x" if token[-1] != "x" else "y")

    r = client.get("/api/auth/me", headers=auth_helpers["auth_headers"](tampered))
    assert r.status_code == 401


def test_me_with_expired_token_unauthorized(auth_helpers, client):
    user_id = auth_helpers["register_verified"]("expired@example.com", "Expire123!")
    expired_token = create_access_token({"sub": user_id}, expires_delta=timedelta(minutes=-5))

    r = client.get("/api/auth/me", headers=auth_helpers["auth_headers"](expired_token))
    assert r.status_code == 401


def test_me_with_token_for_deleted_user_unauthorized(auth_helpers, client):
    token = auth_helpers["get_token"]("zombie@example.com")

    with auth_helpers["session_factory"]() as session:
        user = session.exec(select(User).where(User.email == "zombie@example.com")).first()
        session.delete(user)
        session.commit()

    r = client.get("/api/auth/me", headers=auth_helpers["auth_headers"](token))
    assert r.status_code == 401


# ---------- password change ----------

def test_change_password_success_new_login_works(auth_helpers, client):
    token = auth_helpers["get_token"]("frank@example.com", "OldPass123!")

    r_change = client.post(
        "/api/auth/change-password",
        headers=auth_helpers["auth_headers"](token),
        json={"current_password": "OldPass123!", "new_password": "NewPass123!"},
    )
    assert r_change.status_code == 200

    assert auth_helpers["login"]("frank@example.com", "OldPass123!").status_code == 400
    assert auth_helpers["login"]("frank@example.com", "NewPass123!").status_code == 200


def test_change_password_wrong_current_rejected(auth_helpers, client):
    token = auth_helpers["get_token"]("grace@example.com", "RealPass123!")

    r_change = client.post(
        "/api/auth/change-password",
        headers=auth_helpers["auth_headers"](token),
        json={"current_password": "WrongPass!", "new_password": "DoesntMatter123"},
    )
    assert r_change.status_code == 400


def test_change_password_requires_auth(client):
    r = client.post(
        "/api/auth/change-password",
        json={"current_password": "whatever1", "new_password": "whatever2"},
    )
    assert r.status_code == 401
