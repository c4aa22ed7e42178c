"""Auth method registry.

Each way of proving a first factor (password, magic link) implements
AuthMethod and is registered by name. The Primary Authenticator composes
over the registry instead of hard-coding each method, and the registry's
descriptions are served to clients so the UI knows what to ask for.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from datetime import timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from warden.config import settings
from warden.models.challenge import ChallengePurpose
from warden.models.user import User
from warden.services.auth_service import AuthService
from warden.services.challenge_service import ChallengeIssuer
from warden.services.errors import InvalidCredentials
from warden.services.security_audit_service import SecurityAuditService, SecurityEventType
from warden.services.shared.datetime_utils import as_utc, utcnow

logger = logging.getLogger(__name__)


@dataclass
class AuthContext:
    """Request-scoped collaborators handed to every method."""

    db: Session
    challenges: ChallengeIssuer
    ip_address: str | None = None
    user_agent: str | None = None


@dataclass
class MethodRequirements:
    """What a client must supply to use a method."""

    name: str
    description: str
    attempt_fields: list[str]
    redeem_fields: list[str] = field(default_factory=list)
    requires_captcha: bool = True
    second_factor_applies: bool = True

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class FirstFactorResult:
    """Outcome of attempt/redeem.

    user is None while the method waits on an out-of-band step (a link in an
    inbox). second_factor_applies is False for methods that are the sole
    factor, so the authenticator never layers 2FA on top of them.
    """

    user: User | None
    second_factor_applies: bool = True
    redirect: str | None = None


class AuthMethod(ABC):
    """Interface every first-factor method implements."""

    name: str

    @abstractmethod
    def describe_requirements(self) -> MethodRequirements:
        """Describe the fields and gates this method needs."""

    @abstractmethod
    def attempt(self, ctx: AuthContext, credentials: dict) -> FirstFactorResult:
        """Start (or, for one-step methods, finish) authentication."""

    @abstractmethod
    def redeem(self, ctx: AuthContext, credentials: dict) -> FirstFactorResult:
        """Finish authentication with the proof the attempt produced."""


class PasswordMethod(AuthMethod):
    """Email + password, with account lockout after repeated failures.

    Every failure is reported as InvalidCredentials so the response never
    tells a missing account apart from a wrong password or a locked one.
    """

    name = "password"

    def describe_requirements(self) -> MethodRequirements:
        return MethodRequirements(
            name=self.name,
            description="Sign in with your email and password",
            attempt_fields=["email", "password"],
        )

    def attempt(self, ctx: AuthContext, credentials: dict) -> FirstFactorResult:
        email = AuthService.normalize_email(credentials["email"])
        password = credentials["password"]
        db = ctx.db

        user = db.execute(select(User).where(User.email == email)).scalar_one_or_none()
        if not user or not user.password_hash:
            # Dummy verification keeps timing the same as for a real account
            AuthService.verify_password(password, AuthService.get_dummy_hash())
            SecurityAuditService.log_event(
                db, SecurityEventType.SIGN_IN_FAILED, ip_address=ctx.ip_address,
                user_agent=ctx.user_agent, details={"reason": "user_not_found"}
            )
            db.commit()
            raise InvalidCredentials()

        self._check_lockout(ctx, user)

        if not AuthService.verify_password(password, user.password_hash):
            self._record_failure(ctx, user)
            raise InvalidCredentials()

        user.failed_login_attempts = 0
        user.locked_until = None
        return FirstFactorResult(user=user, second_factor_applies=True)

    def redeem(self, ctx: AuthContext, credentials: dict) -> FirstFactorResult:
        # Passwords are proven in a single step
        return self.attempt(ctx, credentials)

    def _check_lockout(self, ctx: AuthContext, user: User) -> None:
        if user.locked_until and as_utc(user.locked_until) > utcnow():
            SecurityAuditService.log_event(
                ctx.db, SecurityEventType.SIGN_IN_BLOCKED_LOCKOUT, user_id=user.id,
                ip_address=ctx.ip_address, user_agent=ctx.user_agent,
                details={"locked_until": as_utc(user.locked_until).isoformat()}
            )
            ctx.db.commit()
            raise InvalidCredentials()

    def _record_failure(self, ctx: AuthContext, user: User) -> None:
        user.failed_login_attempts += 1
        details: dict = {"reason": "invalid_password", "attempts": user.failed_login_attempts}

        if user.failed_login_attempts >= settings.max_login_attempts:
            user.locked_until = utcnow() + timedelta(minutes=settings.lockout_minutes)
            details["account_locked"] = True
            logger.warning(f"Account locked after {user.failed_login_attempts} failed sign-ins: {user.id}")

        SecurityAuditService.log_event(
            ctx.db, SecurityEventType.SIGN_IN_FAILED, user_id=user.id,
            ip_address=ctx.ip_address, user_agent=ctx.user_agent, details=details
        )
        ctx.db.commit()


class MagicLinkMethod(AuthMethod):
    """Single-use sign-in link sent by email.

    Redeeming the link is the sole factor. It also proves control of the
    inbox, so the email is marked verified, and an address with no account
    gets one (passwordless until the user sets a password via reset).
    """

    name = "magic-link"

    def describe_requirements(self) -> MethodRequirements:
        return MethodRequirements(
            name=self.name,
            description="Get a one-time sign-in link by email",
            attempt_fields=["email", "callback_url"],
            redeem_fields=["token"],
            second_factor_applies=False,
        )

    def attempt(self, ctx: AuthContext, credentials: dict) -> FirstFactorResult:
        ctx.challenges.issue_magic_link(credentials["email"], credentials.get("callback_url"))
        SecurityAuditService.log_event(
            ctx.db, SecurityEventType.MAGIC_LINK_REQUESTED,
            ip_address=ctx.ip_address, user_agent=ctx.user_agent
        )
        return FirstFactorResult(user=None, second_factor_applies=False)

    def redeem(self, ctx: AuthContext, credentials: dict) -> FirstFactorResult:
        challenge = ctx.challenges.redeem(ChallengePurpose.MAGIC_LINK, credentials["token"])
        db = ctx.db

        user = db.execute(select(User).where(User.email == challenge.email)).scalar_one_or_none()
        if user is None:
            user = User(email=challenge.email, email_verified=True)
            db.add(user)
            db.flush()
            SecurityAuditService.log_event(
                db, SecurityEventType.SIGN_UP, user_id=user.id,
                ip_address=ctx.ip_address, user_agent=ctx.user_agent,
                details={"method": self.name}
            )
        elif not user.email_verified:
            user.email_verified = True

        SecurityAuditService.log_event(
            db, SecurityEventType.MAGIC_LINK_REDEEMED, user_id=user.id,
            ip_address=ctx.ip_address, user_agent=ctx.user_agent
        )
        return FirstFactorResult(
            user=user, second_factor_applies=False, redirect=challenge.callback_url
        )


class AuthMethodRegistry:
    """Registered first-factor methods, by name.

    Example usage:
        registry = AuthMethodRegistry()
        registry.register(PasswordMethod())
        registry.get("password").attempt(ctx, {"email": ..., "password": ...})
    """

    def __init__(self):
        self._methods: dict[str, AuthMethod] = {}

    def register(self, method: AuthMethod) -> None:
        if method.name in self._methods:
            raise ValueError(f"Auth method already registered: {method.name}")
        self._methods[method.name] = method

    def get(self, name: str) -> AuthMethod:
        """Get a registered method.

        Raises:
            ValueError: If no method is registered under name
        """
        method = self._methods.get(name)
        if method is None:
            raise ValueError(f"Unsupported auth method: {name}")
        return method

    def names(self) -> list[str]:
        return list(self._methods)

    def describe(self) -> list[MethodRequirements]:
        return [method.describe_requirements() for method in self._methods.values()]


def build_default_registry() -> AuthMethodRegistry:
    registry = AuthMethodRegistry()
    registry.register(PasswordMethod())
    registry.register(MagicLinkMethod())
    logger.info(f"Auth method registry initialized with {len(registry.names())} methods")
    return registry
