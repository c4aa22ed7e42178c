"""Session Issuer: mints, resolves and revokes sign-in sessions."""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from warden.config import settings
from warden.models.session import Session as UserSession
from warden.models.user import User
from warden.services.auth_service import AuthService
from warden.services.shared.datetime_utils import utcnow
from warden.services.sign_in_state import SignInState

if TYPE_CHECKING:
    from warden.services.authenticator import SignInOutcome

logger = logging.getLogger(__name__)


@dataclass
class IssuedSession:
    token: str
    session: UserSession
    max_age: int  # seconds, for the cookie


class SessionIssuer:
    """Sessions are rows in ``sessions`` plus a signed JWT naming the row."""

    def __init__(self, db: Session):
        self.db = db

    def issue(
        self,
        outcome: "SignInOutcome",
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> IssuedSession:
        """Create a session for a fully authenticated sign-in.

        Accepts only a SignInOutcome in the AUTHENTICATED state; anything
        else (a pending second factor in particular) is a programming error.
        """
        if outcome.state != SignInState.AUTHENTICATED:
            raise ValueError(f"Cannot issue a session from state {outcome.state}")

        lifetime = timedelta(days=settings.session_expire_days)
        session = UserSession(
            user_id=outcome.user.id,
            expires_at=utcnow() + lifetime,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        self.db.add(session)
        self.db.flush()

        token = AuthService.create_session_token(outcome.user.id, session.id, lifetime)
        logger.info(f"Session issued: user_id={outcome.user.id} sid={session.id}")
        return IssuedSession(token=token, session=session, max_age=int(lifetime.total_seconds()))

    def resolve_session(self, token: str) -> UserSession | None:
        """Return the live session row behind token, if any."""
        payload = AuthService.decode_session_token(token)
        if not payload:
            return None

        session = self.db.get(UserSession, payload["sid"])
        if session is None or session.user_id != payload["sub"]:
            return None
        if not session.is_live:
            return None
        return session

    def resolve(self, token: str) -> User | None:
        """Return the active principal behind token, if the session is live."""
        session = self.resolve_session(token)
        if session is None:
            return None
        user = self.db.get(User, session.user_id)
        if user is None or not user.is_active:
            return None
        return user

    def sign_out(self, token: str) -> bool:
        """Revoke the session behind token. Returns False if it was not live."""
        session = self.resolve_session(token)
        if session is None:
            return False
        session.is_revoked = True
        logger.info(f"Session revoked: sid={session.id}")
        return True

    def revoke_all(self, user_id: str, except_session_id: str | None = None) -> int:
        """Revoke every live session of a principal, optionally sparing one."""
        stmt = update(UserSession).where(
            UserSession.user_id == user_id,
            UserSession.is_revoked == False,  # noqa: E712
        )
        if except_session_id:
            stmt = stmt.where(UserSession.id != except_session_id)
        result = self.db.execute(
            stmt.values(is_revoked=True).execution_options(synchronize_session=False)
        )
        return result.rowcount

    def active_sessions(self, user_id: str) -> list[UserSession]:
        sessions = self.db.execute(
            select(UserSession).where(
                UserSession.user_id == user_id,
                UserSession.is_revoked == False,  # noqa: E712
            )
        ).scalars()
        return [s for s in sessions if s.is_live]
