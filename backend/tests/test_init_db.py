"""Tests for database initialization."""

from sqlalchemy import func, select

from warden.init_db import DEMO_EMAIL, DEMO_PASSWORD, seed_demo_user
from warden.models import User
from warden.services.auth_service import AuthService


def test_seed_demo_user_is_verified_and_idempotent(db_session_maker):
    db = db_session_maker()

    seed_demo_user(db)
    seed_demo_user(db)

    assert db.execute(select(func.count()).select_from(User)).scalar_one() == 1
    user = db.execute(select(User)).scalar_one()
    assert user.email == DEMO_EMAIL
    assert user.email_verified is True
    assert user.two_factor_enabled is False
    assert AuthService.verify_password(DEMO_PASSWORD, user.password_hash)
    db.close()
