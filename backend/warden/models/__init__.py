"""SQLAlchemy ORM models."""

from warden.models.backup_code import BackupCode
from warden.models.challenge import Challenge, ChallengePurpose
from warden.models.pending_sign_in import PendingSignIn
from warden.models.security_audit_log import SecurityAuditLog
from warden.models.session import Session
from warden.models.trusted_device import TrustedDevice
from warden.models.user import User
from warden.models.user_mfa import UserMfa

__all__ = [
    "BackupCode",
    "Challenge",
    "ChallengePurpose",
    "PendingSignIn",
    "SecurityAuditLog",
    "Session",
    "TrustedDevice",
    "User",
    "UserMfa",
]
