"""Route Guard: per-request session check for protected paths."""

import logging
from collections.abc import Callable
from urllib.parse import quote

from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import RedirectResponse

from warden.config import settings
from warden.models.user import User
from warden.services.session_service import SessionIssuer

logger = logging.getLogger(__name__)

SESSION_COOKIE = "session_token"


def safe_redirect(target: str | None, default: str | None = None) -> str:
    """Return target if it is a same-site relative path, else the default.

    Rejects absolute URLs and protocol-relative ``//host`` forms so a redirect
    parameter can never send the user off-site.
    """
    default = default or settings.default_redirect
    if not target:
        return default
    if not target.startswith("/") or target.startswith("//") or "\\" in target:
        return default
    return target


def redirect_with_target(path: str, target: str) -> str:
    """Build ``path?redirect=<target>`` with the target fully URL-encoded."""
    return f"{path}?redirect={quote(target, safe='')}"


def session_token_from_request(request: Request) -> str | None:
    """Cookie first, then an ``Authorization: Bearer`` header."""
    token = request.cookies.get(SESSION_COOKIE)
    if token:
        return token
    authorization = request.headers.get("Authorization", "")
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() == "bearer" and credentials:
        return credentials.strip()
    return None


class RouteGuard:
    """Decides whether a request may reach a protected path."""

    def __init__(self, protected_paths: list[str], sign_in_path: str):
        self.protected_paths = protected_paths
        self.sign_in_path = sign_in_path

    def is_protected(self, path: str) -> bool:
        for prefix in self.protected_paths:
            prefix = prefix.rstrip("/")
            if path == prefix or path.startswith(prefix + "/"):
                return True
        return False

    def check(self, db: Session, token: str | None) -> User | None:
        """Return the signed-in principal, or None when the request must redirect."""
        if not token:
            return None
        return SessionIssuer(db).resolve(token)

    def sign_in_redirect(self, path: str, query: str = "") -> RedirectResponse:
        original = f"{path}?{query}" if query else path
        return RedirectResponse(
            url=redirect_with_target(self.sign_in_path, original), status_code=302
        )


class RouteGuardMiddleware(BaseHTTPMiddleware):
    """Redirects unauthenticated requests for protected paths to sign-in.

    Database sessions come from ``app.state.session_factory`` so tests can
    point the guard at their own engine.
    """

    def __init__(self, app, guard: RouteGuard, session_factory: Callable[[], Session] | None = None):
        super().__init__(app)
        self.guard = guard
        self.session_factory = session_factory

    def _open_session(self, request: Request) -> Session:
        factory = getattr(request.app.state, "session_factory", None) or self.session_factory
        return factory()

    def _resolve_user_id(self, request: Request, token: str) -> str | None:
        """Open a session, check the token, close. Runs in the threadpool."""
        db = None
        try:
            db = self._open_session(request)
            user = self.guard.check(db, token)
            return user.id if user else None
        except Exception:
            # Failing session store counts as signed out
            logger.exception(f"Route guard check failed for {request.url.path}")
            return None
        finally:
            if db is not None:
                db.close()

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if not self.guard.is_protected(path):
            return await call_next(request)

        token = session_token_from_request(request)
        user_id = None
        if token:
            user_id = await run_in_threadpool(self._resolve_user_id, request, token)

        if user_id is None:
            logger.debug(f"Unauthenticated request to {path}, redirecting to sign-in")
            return self.guard.sign_in_redirect(path, request.url.query)

        request.state.user_id = user_id
        return await call_next(request)
