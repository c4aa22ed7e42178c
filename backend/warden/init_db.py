"""Database initialization script with an optional demo account.

Usage:
    cd backend && python -m warden.init_db [--demo-user]
"""

import sys

from sqlalchemy import select
from sqlalchemy.orm import Session

from warden.database import Base, SessionLocal, engine
from warden.models import User
from warden.services.auth_service import AuthService

DEMO_EMAIL = "demo@example.com"
DEMO_PASSWORD = "Demo1234!"


def create_tables():
    """Create all database tables."""
    print("Creating database tables...")
    Base.metadata.create_all(bind=engine)
    print(f"Tables ready: {', '.join(sorted(Base.metadata.tables))}")


def seed_demo_user(db: Session):
    """Create a verified demo account without two-factor."""
    existing = db.execute(select(User).where(User.email == DEMO_EMAIL)).scalar_one_or_none()
    if existing:
        print(f"Demo user already exists: {DEMO_EMAIL}")
        return

    db.add(
        User(
            email=DEMO_EMAIL,
            name="Demo User",
            password_hash=AuthService.hash_password(DEMO_PASSWORD),
            email_verified=True,
        )
    )
    db.commit()
    print(f"Demo user created: {DEMO_EMAIL} / {DEMO_PASSWORD}")


def init_db(with_demo_user: bool = False):
    """Initialize database tables and, optionally, the demo account."""
    create_tables()
    if not with_demo_user:
        return

    db = SessionLocal()
    try:
        seed_demo_user(db)
    except Exception as e:
        print(f"\nError during database initialization: {e}")
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    init_db(with_demo_user="--demo-user" in sys.argv[1:])
