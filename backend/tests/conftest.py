"""Shared test fixtures for authentication tests."""

import os
import re
from urllib.parse import unquote

from cryptography.fernet import Fernet

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("MFA_ENCRYPTION_KEY", Fernet.generate_key().decode())
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-that-is-long-enough-for-hs256")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine, select  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from warden.database import Base, get_db  # noqa: E402
from warden.dependencies.services import get_bot_gate, get_email_service  # noqa: E402
from warden.main import app  # noqa: E402
from warden.models.user import User  # noqa: E402
from warden.rate_limiter import limiter  # noqa: E402
from warden.services.email_service import EmailService  # noqa: E402
from warden.services.errors import CaptchaInvalid, CaptchaRequired  # noqa: E402

CAPTCHA = {"x-captcha-response": "human-token"}
STRONG_PASSWORD = "Ab1!abcd"

_TOKEN_RE = re.compile(r"token=([^\"&<\s]+)")
_OTP_RE = re.compile(r">(\d{6})<")


class FakeDispatcher:
    """Collects emails instead of sending them."""

    def __init__(self):
        self.sent: list[dict] = []
        self.fail = False

    def send(self, to_address: str, subject: str, html_body: str) -> bool:
        if self.fail:
            return False
        self.sent.append({"to": to_address, "subject": subject, "body": html_body})
        return True

    def last_to(self, address: str) -> dict:
        for message in reversed(self.sent):
            if message["to"] == address:
                return message
        raise AssertionError(f"No email sent to {address}")

    def last_token(self, address: str) -> str:
        match = _TOKEN_RE.search(self.last_to(address)["body"])
        assert match, "No token link in email"
        return unquote(match.group(1))

    def last_otp(self, address: str) -> str:
        match = _OTP_RE.search(self.last_to(address)["body"])
        assert match, "No one-time code in email"
        return match.group(1)


class FakeBotGate:
    """Accepts any token except 'bot'."""

    def __init__(self):
        self.calls = 0

    def verify(self, token: str | None, remote_ip: str | None = None) -> None:
        self.calls += 1
        if not token:
            raise CaptchaRequired()
        if token == "bot":
            raise CaptchaInvalid()


@pytest.fixture
def outbox():
    return FakeDispatcher()


@pytest.fixture
def bot_gate():
    return FakeBotGate()


@pytest.fixture
def email_service(outbox):
    return EmailService(outbox, "http://localhost:3000", "Warden")


@pytest.fixture
def db_session_maker():
    """In-memory database shared by every connection in the test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)
    engine.dispose()


@pytest.fixture
def auth_client(db_session_maker, email_service, bot_gate):
    """Create test client wired to the in-memory database and fake collaborators.

    Yields a tuple of (TestClient, SessionMaker) for use in tests.
    """
    limiter.reset()

    def override_get_db():
        db = db_session_maker()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_email_service] = lambda: email_service
    app.dependency_overrides[get_bot_gate] = lambda: bot_gate

    original_factory = app.state.session_factory
    app.state.session_factory = db_session_maker

    with TestClient(app) as test_client:
        yield test_client, db_session_maker

    app.state.session_factory = original_factory
    app.dependency_overrides.clear()


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def sign_up(test_client: TestClient, email: str, password: str = STRONG_PASSWORD, **extra):
    return test_client.post(
        "/api/auth/sign-up",
        json={"email": email, "password": password, **extra},
        headers=CAPTCHA,
    )


def sign_in(test_client: TestClient, email: str, password: str = STRONG_PASSWORD, **extra):
    return test_client.post(
        "/api/auth/sign-in",
        json={"email": email, "password": password, **extra},
        headers=CAPTCHA,
    )


def create_verified_user(
    test_client: TestClient, db_session_maker, email: str, password: str = STRONG_PASSWORD
) -> dict:
    """Helper to sign up and verify a user, then sign in to get a session token.

    Cookies are cleared afterwards so tests authenticate explicitly.
    """
    sign_up(test_client, email, password)

    db = db_session_maker()
    user = db.execute(select(User).where(User.email == email)).scalar_one()
    user.email_verified = True
    db.commit()
    db.close()

    response = sign_in(test_client, email, password)
    test_client.cookies.clear()
    limiter.reset()
    return response.json()
