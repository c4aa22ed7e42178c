"""Primary Authenticator: first-factor sign-in and account lifecycle.

Sign-in states:

    UNAUTHENTICATED --password--> (password valid)
        two-factor on, device not trusted  -> AWAITING_SECOND_FACTOR
        otherwise                          -> AUTHENTICATED
    UNAUTHENTICATED --magic link redeemed--> AUTHENTICATED

Only an AUTHENTICATED outcome can be turned into a session (SessionIssuer
enforces this). Sign-up, verification, reset, password change and deletion
live here too since they all start from the first factor.
"""

import logging
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.orm import Session

from warden.config import settings
from warden.models.challenge import ChallengePurpose
from warden.models.user import User
from warden.services.auth_methods import (
    AuthContext,
    AuthMethodRegistry,
    build_default_registry,
)
from warden.services.auth_service import AuthService
from warden.services.challenge_service import ChallengeIssuer
from warden.services.email_service import EmailService
from warden.services.errors import (
    EmailAlreadyRegistered,
    EmailNotVerified,
    InvalidCredentials,
    InvalidPassword,
    MismatchedConfirmation,
    NotFound,
)
from warden.services.password_policy import validate_new_password
from warden.services.route_guard import redirect_with_target, safe_redirect
from warden.services.second_factor import (
    SECOND_FACTOR_METHODS,
    PendingSignInStore,
    TrustedDeviceService,
)
from warden.services.security_audit_service import SecurityAuditService, SecurityEventType
from warden.services.session_service import SessionIssuer
from warden.services.sign_in_state import SignInState

logger = logging.getLogger(__name__)

DELETE_CONFIRMATION = "DELETE"


@dataclass
class SignInOutcome:
    """Where a sign-in attempt ended up.

    redirect is the sanitized destination once sign-in completes; while a
    second factor is pending, redirect_url points at the 2FA page and
    carries it along.
    """

    state: SignInState
    user: User
    redirect: str
    pending_token: str | None = None
    methods: list[str] = field(default_factory=list)

    @classmethod
    def authenticated(cls, user: User, redirect: str | None = None) -> "SignInOutcome":
        return cls(state=SignInState.AUTHENTICATED, user=user, redirect=safe_redirect(redirect))

    @property
    def redirect_url(self) -> str:
        if self.state == SignInState.AWAITING_SECOND_FACTOR:
            return redirect_with_target(settings.two_factor_path, self.redirect)
        return self.redirect


class PrimaryAuthenticator:
    """First-factor authentication over the registered auth methods."""

    def __init__(
        self,
        db: Session,
        email_service: EmailService,
        registry: AuthMethodRegistry | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ):
        self.db = db
        self.email_service = email_service
        self.registry = registry or build_default_registry()
        self.challenges = ChallengeIssuer(db, email_service)
        self.ip_address = ip_address
        self.user_agent = user_agent

    @property
    def _ctx(self) -> AuthContext:
        return AuthContext(
            db=self.db,
            challenges=self.challenges,
            ip_address=self.ip_address,
            user_agent=self.user_agent,
        )

    def _audit(self, event_type: str, user_id: str | None = None, details: dict | None = None) -> None:
        SecurityAuditService.log_event(
            self.db, event_type, user_id=user_id, ip_address=self.ip_address,
            user_agent=self.user_agent, details=details
        )

    def _find_user(self, email: str) -> User | None:
        email = AuthService.normalize_email(email)
        return self.db.execute(select(User).where(User.email == email)).scalar_one_or_none()

    # Sign-up and sign-in

    def sign_up(
        self,
        email: str,
        password: str,
        confirm_password: str | None = None,
        name: str | None = None,
    ) -> User:
        """Create an unverified principal and email a verification link."""
        validate_new_password(password, confirm_password)

        email = AuthService.normalize_email(email)
        if self._find_user(email):
            raise EmailAlreadyRegistered()

        user = User(
            email=email,
            name=name,
            password_hash=AuthService.hash_password(password),
            email_verified=False,
        )
        self.db.add(user)
        self.db.flush()

        self.challenges.issue_email_verification(user)
        self._audit(SecurityEventType.SIGN_UP, user.id, {"method": "password"})
        self.db.commit()

        logger.info(f"User signed up (pending verification): {user.id}")
        return user

    def sign_in(
        self,
        email: str,
        password: str,
        trusted_device_token: str | None = None,
        redirect: str | None = None,
    ) -> SignInOutcome:
        """Password sign-in.

        Raises:
            InvalidCredentials: unknown email, wrong password or locked account
            EmailNotVerified: right password, unverified email (when required)
        """
        result = self.registry.get("password").attempt(
            self._ctx, {"email": email, "password": password}
        )
        user = result.user

        if not user.is_active:
            self._audit(SecurityEventType.SIGN_IN_BLOCKED_DISABLED, user.id)
            self.db.commit()
            raise InvalidCredentials()

        if settings.require_email_verification and not user.email_verified:
            self._audit(SecurityEventType.SIGN_IN_BLOCKED_UNVERIFIED, user.id)
            self.db.commit()
            raise EmailNotVerified()

        return self.complete_first_factor(
            user, trusted_device_token, redirect, second_factor_applies=result.second_factor_applies
        )

    def complete_first_factor(
        self,
        user: User,
        trusted_device_token: str | None = None,
        redirect: str | None = None,
        second_factor_applies: bool = True,
    ) -> SignInOutcome:
        """Decide between AUTHENTICATED and AWAITING_SECOND_FACTOR."""
        target = safe_redirect(redirect)

        if (
            second_factor_applies
            and user.two_factor_enabled
            and not TrustedDeviceService.is_trusted(self.db, user.id, trusted_device_token)
        ):
            pending_token = PendingSignInStore.create(self.db, user.id, target)
            self._audit(SecurityEventType.SIGN_IN_SECOND_FACTOR_REQUIRED, user.id)
            self.db.commit()

            logger.info(f"Second factor required for user: {user.id}")
            return SignInOutcome(
                state=SignInState.AWAITING_SECOND_FACTOR,
                user=user,
                redirect=target,
                pending_token=pending_token,
                methods=list(SECOND_FACTOR_METHODS),
            )

        self._audit(SecurityEventType.SIGN_IN_SUCCESS, user.id)
        self.db.commit()
        logger.info(f"User signed in: {user.id}")
        return SignInOutcome.authenticated(user, target)

    def request_magic_link(self, email: str, callback_url: str | None = None) -> None:
        """Email a sign-in link. Reports nothing about whether the account exists."""
        self.registry.get("magic-link").attempt(
            self._ctx, {"email": email, "callback_url": safe_redirect(callback_url)}
        )
        self.db.commit()

    def redeem_magic_link(self, token: str) -> SignInOutcome:
        """Redeem a magic link. The link is the only factor."""
        result = self.registry.get("magic-link").redeem(self._ctx, {"token": token})
        if not result.user.is_active:
            self.db.rollback()
            raise InvalidCredentials()
        return self.complete_first_factor(
            result.user, redirect=result.redirect, second_factor_applies=result.second_factor_applies
        )

    # Email verification

    def verify_email(self, token: str) -> SignInOutcome | None:
        """Mark the email verified.

        Signs the principal straight in when they have no second factor;
        returns None when they still have to sign in with 2FA.
        """
        challenge = self.challenges.redeem(ChallengePurpose.VERIFY_EMAIL, token)
        user = self.db.get(User, challenge.user_id) if challenge.user_id else None
        if user is None:
            self.db.rollback()
            raise NotFound()

        user.email_verified = True
        self._audit(SecurityEventType.EMAIL_VERIFIED, user.id)
        self.db.commit()
        logger.info(f"Email verified for user: {user.id}")

        if user.two_factor_enabled or not user.is_active:
            return None
        return self.complete_first_factor(user, second_factor_applies=False)

    def resend_verification(self, email: str) -> None:
        """Re-send the verification link. Silent for unknown or verified emails."""
        user = self._find_user(email)
        if user and not user.email_verified:
            self.challenges.issue_email_verification(user)
            self.db.commit()

    # Password reset and change

    def request_password_reset(self, email: str) -> None:
        """Always succeeds; only real accounts receive an email."""
        self.challenges.issue_password_reset(email)
        user = self._find_user(email)
        self._audit(SecurityEventType.PASSWORD_RESET_REQUESTED, user.id if user else None)
        self.db.commit()

    def reset_password(self, token: str, new_password: str, confirm_password: str | None = None) -> User:
        """Set a new password from a reset link.

        The password is validated before the token is redeemed, so a weak
        password does not burn the link. Every session and trusted device
        is revoked.
        """
        validate_new_password(new_password, confirm_password)

        challenge = self.challenges.redeem(ChallengePurpose.RESET_PASSWORD, token)
        user = self._find_user(challenge.email)
        if user is None:
            self.db.rollback()
            raise NotFound()

        user.password_hash = AuthService.hash_password(new_password)
        user.failed_login_attempts = 0
        user.locked_until = None

        SessionIssuer(self.db).revoke_all(user.id)
        TrustedDeviceService.revoke_all(self.db, user.id)
        self._audit(SecurityEventType.PASSWORD_RESET_COMPLETED, user.id)
        self.db.commit()

        self.email_service.send_password_changed_notification(user.email)
        logger.info(f"Password reset completed for user: {user.id}")
        return user

    def change_password(
        self,
        user: User,
        current_password: str,
        new_password: str,
        confirm_password: str | None = None,
        current_session_id: str | None = None,
    ) -> None:
        """Change password; every other session is signed out."""
        if not user.password_hash or not AuthService.verify_password(current_password, user.password_hash):
            raise InvalidPassword("Current password is incorrect")
        validate_new_password(new_password, confirm_password)

        user.password_hash = AuthService.hash_password(new_password)
        SessionIssuer(self.db).revoke_all(user.id, except_session_id=current_session_id)
        self._audit(SecurityEventType.PASSWORD_CHANGED, user.id)
        self.db.commit()

        self.email_service.send_password_changed_notification(user.email)
        logger.info(f"Password changed for user: {user.id}")

    # Profile

    def update_profile(self, user: User, name: str | None) -> User:
        user.name = name.strip() if name else None
        self.db.commit()
        return user

    def delete_account(self, user: User, password: str, confirmation: str) -> None:
        """Delete the principal and everything it owns.

        Needs the current password and the literal phrase DELETE.
        """
        if confirmation != DELETE_CONFIRMATION:
            raise MismatchedConfirmation(f'Type "{DELETE_CONFIRMATION}" to confirm')
        if not user.password_hash or not AuthService.verify_password(password, user.password_hash):
            raise InvalidPassword()

        user_id = user.id
        self._audit(SecurityEventType.ACCOUNT_DELETED, user_id)
        self.db.delete(user)
        self.db.commit()
        logger.info(f"Account deleted: {user_id}")
