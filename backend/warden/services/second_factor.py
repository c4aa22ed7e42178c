"""Second-Factor Engine: TOTP enrollment, sign-in verification, backup codes
and trusted devices.

Enable, confirm, disable and backup-code regeneration for one principal run
one at a time: a process-local lock per principal plus SELECT ... FOR UPDATE
on the user row (the row lock is what serializes across processes on
PostgreSQL; SQLite ignores it and serializes writers itself).

Single-use artifacts are consumed with conditional DELETE/UPDATE statements
whose rowcount decides the winner: backup codes, email OTP challenges,
TOTP time steps and pending sign-ins.
"""

import logging
import secrets
import threading
import weakref
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import timedelta

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.orm import Session

from warden.config import settings
from warden.models.backup_code import BackupCode
from warden.models.challenge import ChallengePurpose
from warden.models.pending_sign_in import PendingSignIn
from warden.models.trusted_device import TrustedDevice
from warden.models.user import User
from warden.models.user_mfa import UserMfa
from warden.services.auth_service import AuthService
from warden.services.challenge_service import ChallengeIssuer
from warden.services.email_service import EmailService
from warden.services.errors import (
    AlreadyConsumed,
    InvalidCode,
    InvalidPassword,
    InvalidPendingSignIn,
    NotFound,
    TwoFactorAlreadyEnabled,
    TwoFactorNotEnabled,
    TwoFactorSetupNotStarted,
)
from warden.services.mfa_service import MfaService
from warden.services.security_audit_service import SecurityAuditService, SecurityEventType
from warden.services.shared.datetime_utils import is_past, utcnow

logger = logging.getLogger(__name__)

SECOND_FACTOR_METHODS = ["totp", "otp", "backup_code"]

# Entries vanish once no request holds the lock
_principal_locks: "weakref.WeakValueDictionary[str, threading.Lock]" = weakref.WeakValueDictionary()
_principal_locks_guard = threading.Lock()


def _principal_lock(user_id: str) -> threading.Lock:
    with _principal_locks_guard:
        return _principal_locks.setdefault(user_id, threading.Lock())


class TrustedDeviceService:
    """Devices that skip the second factor until their record expires."""

    @staticmethod
    def grant(db: Session, user_id: str, user_agent: str | None = None) -> str:
        """Create a trusted-device record and return the raw cookie token."""
        token = secrets.token_urlsafe(32)
        db.add(
            TrustedDevice(
                user_id=user_id,
                token_hash=AuthService.hash_token(token),
                user_agent=user_agent,
                expires_at=utcnow() + timedelta(days=settings.trusted_device_days),
            )
        )
        return token

    @staticmethod
    def is_trusted(db: Session, user_id: str, token: str | None) -> bool:
        if not token:
            return False
        device = db.execute(
            select(TrustedDevice).where(
                TrustedDevice.user_id == user_id,
                TrustedDevice.token_hash == AuthService.hash_token(token),
            )
        ).scalar_one_or_none()
        return device is not None and not is_past(device.expires_at)

    @staticmethod
    def list_for_user(db: Session, user_id: str) -> list[TrustedDevice]:
        devices = db.execute(
            select(TrustedDevice)
            .where(TrustedDevice.user_id == user_id)
            .order_by(TrustedDevice.created_at.desc())
        ).scalars()
        return [d for d in devices if not is_past(d.expires_at)]

    @staticmethod
    def revoke(db: Session, user_id: str, device_id: str) -> bool:
        result = db.execute(
            delete(TrustedDevice)
            .where(TrustedDevice.id == device_id, TrustedDevice.user_id == user_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @staticmethod
    def revoke_all(db: Session, user_id: str) -> int:
        result = db.execute(
            delete(TrustedDevice)
            .where(TrustedDevice.user_id == user_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount


class PendingSignInStore:
    """Sign-in attempts parked between the password and the second factor."""

    @staticmethod
    def create(db: Session, user_id: str, redirect_to: str | None) -> str:
        token = secrets.token_urlsafe(32)
        db.add(
            PendingSignIn(
                user_id=user_id,
                token_hash=AuthService.hash_token(token),
                redirect_to=redirect_to,
                expires_at=utcnow() + timedelta(minutes=settings.pending_sign_in_expire_minutes),
            )
        )
        return token

    @staticmethod
    def load(db: Session, token: str) -> PendingSignIn:
        pending = db.execute(
            select(PendingSignIn).where(PendingSignIn.token_hash == AuthService.hash_token(token))
        ).scalar_one_or_none()
        if pending is None or pending.used_at is not None or is_past(pending.expires_at):
            raise InvalidPendingSignIn()
        return pending

    @staticmethod
    def consume(db: Session, pending: PendingSignIn) -> None:
        """Mark used. Raises InvalidPendingSignIn if another request got there first."""
        result = db.execute(
            update(PendingSignIn)
            .where(PendingSignIn.id == pending.id, PendingSignIn.used_at.is_(None))
            .values(used_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InvalidPendingSignIn()


@dataclass
class TwoFactorSetup:
    """Shown once, when setup begins. Never retrievable afterwards."""

    secret: str
    uri: str
    qr_code: str  # base64 PNG
    backup_codes: list[str]


@dataclass
class TwoFactorStatus:
    enabled: bool
    setup_pending: bool
    backup_codes_remaining: int
    trusted_devices: int
    methods: list[str] = field(default_factory=list)


@dataclass
class SecondFactorResult:
    """A pending sign-in that passed its second factor."""

    user: User
    redirect: str | None
    method: str
    trusted_device_token: str | None = None


class SecondFactorEngine:
    """Two-factor setup, verification and management for one request."""

    def __init__(
        self,
        db: Session,
        email_service: EmailService,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ):
        self.db = db
        self.email_service = email_service
        self.challenges = ChallengeIssuer(db, email_service)
        self.ip_address = ip_address
        self.user_agent = user_agent

    def _audit(self, event_type: str, user_id: str, details: dict | None = None) -> None:
        SecurityAuditService.log_event(
            self.db, event_type, user_id=user_id, ip_address=self.ip_address,
            user_agent=self.user_agent, details=details
        )

    @contextmanager
    def _serialized(self, user_id: str) -> Iterator[User]:
        """Hold the principal's lock and row lock; roll back on any failure."""
        with _principal_lock(user_id):
            try:
                user = self.db.execute(
                    select(User)
                    .where(User.id == user_id)
                    .with_for_update()
                    .execution_options(populate_existing=True)
                ).scalar_one()
                yield user
            except Exception:
                self.db.rollback()
                raise

    @staticmethod
    def _check_password(user: User, password: str) -> None:
        if not user.password_hash or not AuthService.verify_password(password, user.password_hash):
            raise InvalidPassword()

    def _get_mfa(self, user_id: str) -> UserMfa | None:
        return self.db.execute(
            select(UserMfa).where(UserMfa.user_id == user_id)
        ).scalar_one_or_none()

    def _replace_backup_codes(self, user_id: str) -> list[str]:
        """Delete the whole previous set and insert a new one, same transaction."""
        self.db.execute(
            delete(BackupCode)
            .where(BackupCode.user_id == user_id)
            .execution_options(synchronize_session=False)
        )
        codes = MfaService.generate_backup_codes()
        for code in codes:
            self.db.add(BackupCode(user_id=user_id, code_hash=AuthService.hash_token(code)))
        return codes

    def _consume_backup_code(self, user_id: str, code: str) -> bool:
        normalized = MfaService.normalize_backup_code(code)
        if not normalized:
            return False
        result = self.db.execute(
            delete(BackupCode)
            .where(
                BackupCode.user_id == user_id,
                BackupCode.code_hash == AuthService.hash_token(normalized),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    # Account settings

    def status(self, user: User) -> TwoFactorStatus:
        remaining = self.db.execute(
            select(func.count()).select_from(BackupCode).where(BackupCode.user_id == user.id)
        ).scalar_one()
        mfa = self._get_mfa(user.id)
        return TwoFactorStatus(
            enabled=user.two_factor_enabled,
            setup_pending=mfa is not None and not user.two_factor_enabled,
            backup_codes_remaining=remaining if user.two_factor_enabled else 0,
            trusted_devices=len(TrustedDeviceService.list_for_user(self.db, user.id)),
            methods=list(SECOND_FACTOR_METHODS) if user.two_factor_enabled else [],
        )

    def begin_setup(self, user: User, password: str) -> TwoFactorSetup:
        """Generate a TOTP secret and backup codes after re-checking the password.

        Two-factor stays disabled until confirm_setup sees a matching code.
        Restarting setup replaces the unconfirmed secret and codes.
        """
        with self._serialized(user.id) as locked:
            self._check_password(locked, password)
            if locked.two_factor_enabled:
                raise TwoFactorAlreadyEnabled()

            secret = MfaService.generate_totp_secret()
            encrypted = MfaService.encrypt_secret(secret)

            mfa = self._get_mfa(locked.id)
            if mfa is None:
                mfa = UserMfa(user_id=locked.id, totp_secret_encrypted=encrypted)
                self.db.add(mfa)
            else:
                mfa.totp_secret_encrypted = encrypted
                mfa.enabled_at = None
                mfa.last_totp_timestep = None

            backup_codes = self._replace_backup_codes(locked.id)
            self._audit(SecurityEventType.TWO_FACTOR_SETUP_STARTED, locked.id)
            self.db.commit()

        uri = MfaService.get_totp_uri(secret, user.email)
        logger.info(f"Two-factor setup started for user: {user.id}")
        return TwoFactorSetup(
            secret=secret,
            uri=uri,
            qr_code=MfaService.generate_qr_code_base64(uri),
            backup_codes=backup_codes,
        )

    def confirm_setup(self, user: User, code: str) -> None:
        """Enable two-factor once the authenticator produces a matching code."""
        with self._serialized(user.id) as locked:
            if locked.two_factor_enabled:
                raise TwoFactorAlreadyEnabled()
            mfa = self._get_mfa(locked.id)
            if mfa is None:
                raise TwoFactorSetupNotStarted()

            secret = MfaService.decrypt_secret(mfa.totp_secret_encrypted)
            if not MfaService.verify_totp(secret, code):
                self._audit(SecurityEventType.TWO_FACTOR_FAILED, locked.id, {"stage": "confirm"})
                self.db.commit()
                raise InvalidCode()

            mfa.enabled_at = utcnow()
            locked.two_factor_enabled = True
            self._audit(SecurityEventType.TWO_FACTOR_ENABLED, locked.id)
            self.db.commit()

        user.two_factor_enabled = True
        logger.info(f"Two-factor enabled for user: {user.id}")

    def disable(self, user: User, password: str) -> None:
        """Clear the secret, backup codes, trusted devices and flag in one commit."""
        with self._serialized(user.id) as locked:
            self._check_password(locked, password)
            mfa = self._get_mfa(locked.id)
            if not locked.two_factor_enabled and mfa is None:
                raise TwoFactorNotEnabled()

            if mfa is not None:
                self.db.delete(mfa)
            self.db.execute(
                delete(BackupCode)
                .where(BackupCode.user_id == locked.id)
                .execution_options(synchronize_session=False)
            )
            TrustedDeviceService.revoke_all(self.db, locked.id)
            locked.two_factor_enabled = False
            self._audit(SecurityEventType.TWO_FACTOR_DISABLED, locked.id)
            self.db.commit()

        user.two_factor_enabled = False
        self.email_service.send_two_factor_disabled_notification(user.email)
        logger.info(f"Two-factor disabled for user: {user.id}")

    def regenerate_backup_codes(self, user: User, password: str) -> list[str]:
        """Replace the whole backup-code set. Old codes die at commit."""
        with self._serialized(user.id) as locked:
            self._check_password(locked, password)
            if not locked.two_factor_enabled:
                raise TwoFactorNotEnabled()

            codes = self._replace_backup_codes(locked.id)
            self._audit(SecurityEventType.BACKUP_CODES_REGENERATED, locked.id)
            self.db.commit()

        logger.info(f"Backup codes regenerated for user: {user.id}")
        return codes

    # Sign-in

    def send_email_otp(self, pending_token: str) -> None:
        """Email a one-time code to the principal behind a pending sign-in."""
        pending = PendingSignInStore.load(self.db, pending_token)
        user = self.db.get(User, pending.user_id)
        if user is None or not user.two_factor_enabled:
            raise InvalidPendingSignIn()

        self.challenges.issue_email_otp(user)
        self._audit(SecurityEventType.EMAIL_OTP_SENT, user.id)
        self.db.commit()

    def _claim_totp_timestep(self, mfa_id: str, step: int) -> bool:
        """Record step as used. False if this or a later step was already accepted."""
        result = self.db.execute(
            update(UserMfa)
            .where(
                UserMfa.id == mfa_id,
                or_(UserMfa.last_totp_timestep.is_(None), UserMfa.last_totp_timestep < step),
            )
            .values(last_totp_timestep=step)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def _check_code(self, user: User, method: str, code: str) -> bool:
        if method == "totp":
            mfa = self._get_mfa(user.id)
            if mfa is None:
                return False
            step = MfaService.totp_timestep(MfaService.decrypt_secret(mfa.totp_secret_encrypted), code)
            if step is None:
                return False
            return self._claim_totp_timestep(mfa.id, step)

        if method == "otp":
            try:
                self.challenges.redeem(ChallengePurpose.EMAIL_OTP, code.strip(), user_id=user.id)
            except (NotFound, AlreadyConsumed):
                return False
            return True

        if method == "backup_code":
            return self._consume_backup_code(user.id, code)

        return False

    def verify(
        self,
        pending_token: str,
        method: str,
        code: str,
        trust_device: bool = False,
    ) -> SecondFactorResult:
        """Complete a pending sign-in with one second factor.

        A wrong code leaves the pending sign-in usable for another try. A
        correct one consumes the pending sign-in (and the backup code or
        email OTP, when that was the factor) in the same commit.

        Raises:
            InvalidPendingSignIn: unknown, used or expired pending token
            InvalidCode: the code did not match
            Expired: the email OTP matched but is past its expiry
        """
        pending = PendingSignInStore.load(self.db, pending_token)
        user = self.db.get(User, pending.user_id)
        if user is None or not user.is_active:
            raise InvalidPendingSignIn()
        if not user.two_factor_enabled:
            raise TwoFactorNotEnabled()

        if not self._check_code(user, method, code):
            self.db.rollback()
            self._audit(SecurityEventType.TWO_FACTOR_FAILED, user.id, {"method": method})
            self.db.commit()
            raise InvalidCode()

        try:
            PendingSignInStore.consume(self.db, pending)
        except InvalidPendingSignIn:
            self.db.rollback()
            raise

        device_token = None
        if trust_device:
            device_token = TrustedDeviceService.grant(self.db, user.id, self.user_agent)
            self._audit(SecurityEventType.TRUSTED_DEVICE_ADDED, user.id)

        if method == "backup_code":
            self._audit(SecurityEventType.BACKUP_CODE_USED, user.id)
        self._audit(SecurityEventType.TWO_FACTOR_VERIFIED, user.id, {"method": method})
        self.db.commit()

        logger.info(f"Second factor verified for user: {user.id} via {method}")
        return SecondFactorResult(
            user=user,
            redirect=pending.redirect_to,
            method=method,
            trusted_device_token=device_token,
        )
