import os
import re
import sys
from contextlib import contextmanager

import pytest

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("DB_CONNECT_DELAY", "0")

from fastapi.testclient import TestClient  # noqa: E402
from sqlmodel import SQLModel, Session, create_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

ROOT_DIR = os.path.dirname(os.path.dirname(__file__))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

from main import app, get_mailer, get_session  # noqa: E402
from crud import seed_default_categories  # noqa: E402


test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
DBSession = Session

TOKEN_RE = re.compile(r"token=([A-Za-z0-9_\-]+)")


class RecordingMailer:
    """Stands in for SMTP and keeps every message it was asked to send."""

    def __init__(self):
        self.outbox = []
        self.fail = False

    def send(self, to, subject, text, html=None):
        self.outbox.append({"to": to, "subject": subject, "text": text, "html": html})
        return not self.fail

    def last_token(self, to: str) -> str:
        for message in reversed(self.outbox):
            if message["to"] == to.lower():
                return TOKEN_RE.search(message["text"]).group(1)
        raise AssertionError(f"No email was sent to {to}")


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture(scope="function")
def client(mailer):
    """Return a TestClient wired to a fresh in-memory database for each test."""
    SQLModel.metadata.drop_all(test_engine)
    SQLModel.metadata.create_all(test_engine)
    with DBSession(test_engine) as session:
        seed_default_categories(session)

    def override_get_session():
        with DBSession(test_engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_mailer] = lambda: mailer

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def db_session(client):
    with DBSession(test_engine) as session:
        yield session


@pytest.fixture
def auth_helpers(client, mailer):
    """
    Common auth utilities shared across test modules.
    Provides signup/verify/login helpers and a token helper.
    """

    @contextmanager
    def session_factory():
        with DBSession(test_engine) as session:
            yield session

    def signup(email: str, password: str, name: str = "Test User"):
        return client.post(
            "/api/auth/signup",
            json={"name": name, "email": email, "password": password},
        )

    def verify(email: str):
        token = mailer.last_token(email)
        return client.get("/api/auth/verify", params={"token": token})

    def register_verified(email: str, password: str, name: str = "Test User") -> str:
        res = signup(email, password, name)
        assert res.status_code == 201, res.text
        res_verify = verify(email)
        assert res_verify.status_code == 200, res_verify.text
        return res.json()["user_id"]

    def login(email: str, password: str):
        return client.post("/api/auth/login", json={"email": email, "password": password})

    def get_token(email: str, password: str = "Password123!") -> str:
        register_verified(email, password)
        res_login = login(email, password)
        assert res_login.status_code == 200, res_login.text
        # tests pass bearer headers explicitly so several users can share one client
        client.cookies.clear()
        return res_login.json()["access_token"]

    def auth_headers(token: str) -> dict:
        return {"Authorization": f"Bearer {token}"}

    return {
        "signup": signup,
        "verify": verify,
        "register_verified": register_verified,
        "login": login,
        "get_token": get_token,
        "auth_headers": auth_headers,
        "session_factory": session_factory,
    }


@pytest.fixture
def user_headers(auth_helpers):
    """Bearer headers for a fresh verified user."""
    token = auth_helpers["get_token"]("owner@example.com")
    return auth_helpers["auth_headers"](token)


@pytest.fixture
def other_headers(auth_helpers):
    """Bearer headers for a second, unrelated user."""
    token = auth_helpers["get_token"]("intruder@example.com")
    return auth_helpers["auth_headers"](token)
