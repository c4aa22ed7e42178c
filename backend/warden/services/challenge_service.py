"""Challenge Issuer: single-use codes and tokens proven by email.

Every challenge stores only the SHA-256 of its secret. Issuing a new
challenge for a subject and purpose deletes the outstanding ones, so at most
one is live at a time. Redemption marks the challenge consumed with a
conditional UPDATE; when two requests race on the same secret exactly one
UPDATE matches a row.
"""

import logging
import secrets
from datetime import timedelta

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from warden.config import settings
from warden.models.challenge import Challenge, ChallengePurpose
from warden.models.user import User
from warden.services.auth_service import AuthService
from warden.services.email_service import EmailService
from warden.services.errors import AlreadyConsumed, Expired, NotFound
from warden.services.mfa_service import MfaService
from warden.services.shared.datetime_utils import is_past, utcnow

logger = logging.getLogger(__name__)

_LIFETIME_MINUTES = {
    ChallengePurpose.VERIFY_EMAIL: lambda: settings.email_verification_expire_minutes,
    ChallengePurpose.RESET_PASSWORD: lambda: settings.password_reset_expire_minutes,
    ChallengePurpose.MAGIC_LINK: lambda: settings.magic_link_expire_minutes,
    ChallengePurpose.EMAIL_OTP: lambda: settings.email_otp_expire_minutes,
}


class ChallengeIssuer:
    """Creates, dispatches and redeems challenges.

    Does not commit; the caller owns the transaction. A redemption only wins
    once the caller commits, so callers commit right after redeem succeeds.
    """

    def __init__(self, db: Session, email_service: EmailService):
        self.db = db
        self.email_service = email_service

    def _create(
        self,
        purpose: ChallengePurpose,
        email: str,
        secret: str,
        user_id: str | None = None,
        callback_url: str | None = None,
    ) -> Challenge:
        self.db.execute(
            delete(Challenge)
            .where(
                Challenge.email == email,
                Challenge.purpose == purpose.value,
                Challenge.consumed_at.is_(None),
            )
            .execution_options(synchronize_session=False)
        )

        now = utcnow()
        challenge = Challenge(
            user_id=user_id,
            email=email,
            purpose=purpose.value,
            secret_hash=AuthService.hash_token(secret),
            callback_url=callback_url,
            issued_at=now,
            expires_at=now + timedelta(minutes=_LIFETIME_MINUTES[purpose]()),
        )
        self.db.add(challenge)
        self.db.flush()
        return challenge

    def issue_email_verification(self, user: User) -> str:
        """Create a verify-email token and email the link to the user."""
        token = secrets.token_urlsafe(32)
        self._create(ChallengePurpose.VERIFY_EMAIL, user.email, token, user_id=user.id)
        self.email_service.send_verification_email(user.email, token, user.name)
        return token

    def issue_password_reset(self, email: str) -> str:
        """Create a reset-password token keyed by email.

        The challenge is recorded whether or not an account exists so the
        caller's behaviour is identical either way. The link is only emailed
        to existing accounts, and redeeming it requires a principal.
        """
        email = AuthService.normalize_email(email)
        user = self.db.execute(select(User).where(User.email == email)).scalar_one_or_none()

        token = secrets.token_urlsafe(32)
        self._create(
            ChallengePurpose.RESET_PASSWORD,
            email,
            token,
            user_id=user.id if user else None,
        )
        if user:
            self.email_service.send_password_reset_email(user.email, token, user.name)
        else:
            logger.info("Password reset requested for unknown email")
        return token

    def issue_magic_link(self, email: str, callback_url: str | None = None) -> str:
        """Create a magic-link token and email it. No account is required."""
        email = AuthService.normalize_email(email)
        user = self.db.execute(select(User).where(User.email == email)).scalar_one_or_none()

        token = secrets.token_urlsafe(32)
        self._create(
            ChallengePurpose.MAGIC_LINK,
            email,
            token,
            user_id=user.id if user else None,
            callback_url=callback_url,
        )
        self.email_service.send_magic_link_email(email, token)
        return token

    def issue_email_otp(self, user: User) -> str:
        """Create a 6-digit sign-in code and email it to the user."""
        code = MfaService.generate_email_otp()
        self._create(ChallengePurpose.EMAIL_OTP, user.email, code, user_id=user.id)
        self.email_service.send_email_otp(user.email, code, user.name)
        return code

    def redeem(
        self,
        purpose: ChallengePurpose,
        secret: str,
        user_id: str | None = None,
    ) -> Challenge:
        """Consume the challenge matching secret and return it.

        user_id scopes the lookup, required for email OTP where the secret
        space is small enough to collide across principals.

        Raises:
            NotFound: no challenge with this secret
            AlreadyConsumed: the challenge was redeemed before
            Expired: the challenge is past its expiry
        """
        query = select(Challenge).where(
            Challenge.purpose == purpose.value,
            Challenge.secret_hash == AuthService.hash_token(secret),
        )
        if user_id is not None:
            query = query.where(Challenge.user_id == user_id)
        challenge = self.db.execute(
            query.order_by(Challenge.issued_at.desc()).limit(1)
        ).scalar_one_or_none()

        if challenge is None:
            raise NotFound()
        if challenge.consumed_at is not None:
            raise AlreadyConsumed()
        if is_past(challenge.expires_at):
            raise Expired()

        now = utcnow()
        result = self.db.execute(
            update(Challenge)
            .where(Challenge.id == challenge.id, Challenge.consumed_at.is_(None))
            .values(consumed_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise AlreadyConsumed()

        self.db.refresh(challenge)
        logger.info(f"Challenge redeemed: purpose={purpose.value} id={challenge.id}")
        return challenge
