"""Tests for the current-session and current-user dependencies."""

from datetime import UTC, datetime, timedelta

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from warden.database import get_db
from warden.dependencies.auth import get_current_user
from warden.models.session import Session
from warden.models.user import User
from warden.services.auth_service import AuthService


@pytest.fixture
def test_app(db_session_maker):
    """Create test app with a protected route and one live session."""
    app = FastAPI()

    def override_get_db():
        db = db_session_maker()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db

    @app.get("/protected")
    def protected_route(user: User = Depends(get_current_user)):
        return {"user_id": user.id, "email": user.email}

    db = db_session_maker()
    user = User(email="test@example.com", password_hash="hash", email_verified=True)
    db.add(user)
    db.flush()
    session = Session(user_id=user.id, expires_at=datetime.now(UTC) + timedelta(days=7))
    db.add(session)
    db.commit()
    token = AuthService.create_session_token(user.id, session.id)
    db.close()

    return TestClient(app), token


def _set(db_session_maker, model, **values):
    db = db_session_maker()
    row = db.query(model).one()
    for key, value in values.items():
        setattr(row, key, value)
    db.commit()
    db.close()


def test_protected_route_with_bearer_token(test_app):
    client, token = test_app

    response = client.get("/protected", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 200
    assert response.json()["email"] == "test@example.com"


def test_protected_route_with_session_cookie(test_app):
    client, token = test_app
    client.cookies.set("session_token", token)

    assert client.get("/protected").status_code == 200


def test_protected_route_without_token(test_app):
    client, _ = test_app
    response = client.get("/protected")
    assert response.status_code == 401
    assert response.json()["detail"] == "Not signed in"


def test_protected_route_with_forged_token(test_app):
    client, token = test_app
    response = client.get("/protected", headers={"Authorization": f"Bearer {token[:-4]}abcd"})
    assert response.status_code == 401


def test_revoked_session_is_rejected(test_app, db_session_maker):
    """A valid signature is not enough once the session row is revoked."""
    client, token = test_app
    _set(db_session_maker, Session, is_revoked=True)

    response = client.get("/protected", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 401


def test_expired_session_row_is_rejected(test_app, db_session_maker):
    client, token = test_app
    _set(db_session_maker, Session, expires_at=datetime.now(UTC) - timedelta(minutes=1))

    response = client.get("/protected", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 401


def test_inactive_user_is_forbidden(test_app, db_session_maker):
    client, token = test_app
    _set(db_session_maker, User, is_active=False)

    response = client.get("/protected", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 403
