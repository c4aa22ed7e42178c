"""Security audit trail.

Events are written in the caller's transaction, so an event is recorded only
when the state change it describes commits (failed attempts are committed
explicitly by the caller before raising).
"""

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from warden.models.security_audit_log import SecurityAuditLog

logger = logging.getLogger(__name__)

# Keys never persisted in event details, whatever the caller passes
_SECRET_KEYS = {"password", "token", "code", "secret", "temp_token", "backup_code"}


class SecurityEventType:
    """Event type constants, grouped by flow."""

    # Sign-up and sign-in
    SIGN_UP = "sign_up"
    SIGN_IN_SUCCESS = "sign_in_success"
    SIGN_IN_FAILED = "sign_in_failed"
    SIGN_IN_BLOCKED_UNVERIFIED = "sign_in_blocked_unverified"
    SIGN_IN_BLOCKED_DISABLED = "sign_in_blocked_disabled"
    SIGN_IN_BLOCKED_LOCKOUT = "sign_in_blocked_lockout"
    SIGN_IN_SECOND_FACTOR_REQUIRED = "sign_in_second_factor_required"
    SIGN_OUT = "sign_out"
    MAGIC_LINK_REQUESTED = "magic_link_requested"
    MAGIC_LINK_REDEEMED = "magic_link_redeemed"

    # Account
    PASSWORD_CHANGED = "password_changed"
    PASSWORD_RESET_REQUESTED = "password_reset_requested"
    PASSWORD_RESET_COMPLETED = "password_reset_completed"
    EMAIL_VERIFIED = "email_verified"
    ACCOUNT_DELETED = "account_deleted"

    # Two-factor
    TWO_FACTOR_SETUP_STARTED = "two_factor_setup_started"
    TWO_FACTOR_ENABLED = "two_factor_enabled"
    TWO_FACTOR_DISABLED = "two_factor_disabled"
    TWO_FACTOR_VERIFIED = "two_factor_verified"
    TWO_FACTOR_FAILED = "two_factor_failed"
    BACKUP_CODE_USED = "backup_code_used"
    BACKUP_CODES_REGENERATED = "backup_codes_regenerated"
    EMAIL_OTP_SENT = "email_otp_sent"
    TRUSTED_DEVICE_ADDED = "trusted_device_added"
    TRUSTED_DEVICE_REVOKED = "trusted_device_revoked"

    FAILURES = frozenset(
        {
            SIGN_IN_FAILED,
            SIGN_IN_BLOCKED_UNVERIFIED,
            SIGN_IN_BLOCKED_DISABLED,
            SIGN_IN_BLOCKED_LOCKOUT,
            TWO_FACTOR_FAILED,
        }
    )


class SecurityAuditService:
    """Records security events and reads them back for account pages."""

    @staticmethod
    def log_event(
        db: Session,
        event_type: str,
        user_id: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        details: dict | None = None,
    ) -> None:
        """Add an audit row to the session. The caller commits."""
        if details:
            details = {k: v for k, v in details.items() if k not in _SECRET_KEYS}

        db.add(
            SecurityAuditLog(
                user_id=user_id,
                event_type=event_type,
                ip_address=ip_address,
                user_agent=user_agent,
                details=details or None,
            )
        )

        level = logging.WARNING if event_type in SecurityEventType.FAILURES else logging.INFO
        logger.log(level, f"Security event: {event_type} | user_id={user_id} | ip={ip_address}")

    @staticmethod
    def recent_events(db: Session, user_id: str, limit: int = 10) -> list[SecurityAuditLog]:
        """Newest first."""
        return list(
            db.execute(
                select(SecurityAuditLog)
                .where(SecurityAuditLog.user_id == user_id)
                .order_by(SecurityAuditLog.created_at.desc())
                .limit(limit)
            ).scalars()
        )

    @staticmethod
    def get_request_info(request) -> tuple[str | None, str | None]:
        """Client IP (first X-Forwarded-For hop when proxied) and user agent."""
        if request is None:
            return None, None

        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            ip_address = forwarded_for.split(",")[0].strip()
        else:
            ip_address = request.client.host if request.client else None

        return ip_address, request.headers.get("User-Agent", "")[:500] or None
