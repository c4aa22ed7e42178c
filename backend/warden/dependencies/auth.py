"""Authentication dependencies for protected routes."""

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from warden.database import get_db
from warden.models.session import Session as UserSession
from warden.models.user import User
from warden.services.route_guard import session_token_from_request
from warden.services.session_service import SessionIssuer


def get_current_session(request: Request, db: Session = Depends(get_db)) -> UserSession:
    """
    Get the live session behind the request's session cookie or Bearer token.

    Usage:
        @router.post("/sign-out")
        def sign_out(session: UserSession = Depends(get_current_session)):
            ...
    """
    token = session_token_from_request(request)
    session = SessionIssuer(db).resolve_session(token) if token else None

    if session is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not signed in",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return session


def get_current_user(
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
) -> User:
    """
    Get current signed-in user.

    Usage:
        @router.get("/protected")
        def protected_route(user: User = Depends(get_current_user)):
            return {"user_id": user.id}
    """
    user = db.get(User, session.user_id)

    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is disabled",
        )

    return user
