"""Two-factor router: TOTP setup, backup codes and sign-in verification."""

import logging

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.orm import Session

from warden.config import settings
from warden.database import get_db
from warden.dependencies.auth import get_current_user
from warden.dependencies.services import get_email_service
from warden.models.user import User
from warden.rate_limiter import EMAIL_LIMIT, SECOND_FACTOR_LIMIT, limiter
from warden.routers.auth import TRUSTED_DEVICE_COOKIE, issue_session
from warden.schemas.auth import MessageResponse, SessionResponse
from warden.schemas.mfa import (
    BackupCodesResponse,
    PasswordConfirmRequest,
    SendEmailOtpRequest,
    TwoFactorConfirmRequest,
    TwoFactorSetupResponse,
    TwoFactorStatusResponse,
    TwoFactorVerifyRequest,
)
from warden.services.authenticator import SignInOutcome
from warden.services.email_service import EmailService
from warden.services.second_factor import SecondFactorEngine
from warden.services.security_audit_service import SecurityAuditService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth/two-factor", tags=["two-factor"])


def _engine(request: Request, db: Session, email_service: EmailService) -> SecondFactorEngine:
    ip_address, user_agent = SecurityAuditService.get_request_info(request)
    return SecondFactorEngine(db, email_service, ip_address=ip_address, user_agent=user_agent)


@router.get("", response_model=TwoFactorStatusResponse)
def get_status(
    request: Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    email_service: EmailService = Depends(get_email_service),
) -> dict:
    """Two-factor status for account settings."""
    status = _engine(request, db, email_service).status(current_user)
    return {
        "enabled": status.enabled,
        "setup_pending": status.setup_pending,
        "backup_codes_remaining": status.backup_codes_remaining,
        "trusted_devices": status.trusted_devices,
        "methods": status.methods,
    }


@router.post("/enable", response_model=TwoFactorSetupResponse)
def enable(
    request: Request,
    data: PasswordConfirmRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    email_service: EmailService = Depends(get_email_service),
) -> dict:
    """Start TOTP setup. Two-factor stays off until /confirm succeeds."""
    setup = _engine(request, db, email_service).begin_setup(current_user, data.password)
    return {
        "secret": setup.secret,
        "uri": setup.uri,
        "qr_code_base64": setup.qr_code,
        "backup_codes": setup.backup_codes,
    }


@router.post("/confirm", response_model=MessageResponse)
@limiter.limit(SECOND_FACTOR_LIMIT)
def confirm(
    request: Request,
    data: TwoFactorConfirmRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    email_service: EmailService = Depends(get_email_service),
) -> dict:
    """Confirm setup with a code from the authenticator app."""
    _engine(request, db, email_service).confirm_setup(current_user, data.code)
    return {"message": "Two-factor authentication enabled"}


@router.post("/disable", response_model=MessageResponse)
def disable(
    request: Request,
    data: PasswordConfirmRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    email_service: EmailService = Depends(get_email_service),
) -> dict:
    """Disable two-factor. Requires the current password."""
    _engine(request, db, email_service).disable(current_user, data.password)
    return {"message": "Two-factor authentication disabled"}


@router.post("/backup-codes", response_model=BackupCodesResponse)
def regenerate_backup_codes(
    request: Request,
    data: PasswordConfirmRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    email_service: EmailService = Depends(get_email_service),
) -> dict:
    """Replace all backup codes. Previous codes stop working immediately."""
    codes = _engine(request, db, email_service).regenerate_backup_codes(current_user, data.password)
    return {"backup_codes": codes}


@router.post("/send-otp", response_model=MessageResponse)
@limiter.limit(EMAIL_LIMIT)
def send_email_otp(
    request: Request,
    data: SendEmailOtpRequest,
    db: Session = Depends(get_db),
    email_service: EmailService = Depends(get_email_service),
) -> dict:
    """Email a one-time code for a pending sign-in."""
    _engine(request, db, email_service).send_email_otp(data.temp_token)
    return {"message": "Verification code sent to your email"}


@router.post("/verify", response_model=SessionResponse)
@limiter.limit(SECOND_FACTOR_LIMIT)
def verify(
    request: Request,
    response: Response,
    data: TwoFactorVerifyRequest,
    db: Session = Depends(get_db),
    email_service: EmailService = Depends(get_email_service),
) -> dict:
    """Complete a pending sign-in with a TOTP code, email OTP or backup code."""
    result = _engine(request, db, email_service).verify(
        data.temp_token, data.method, data.code, trust_device=data.trust_device
    )

    if result.trusted_device_token:
        response.set_cookie(
            TRUSTED_DEVICE_COOKIE,
            result.trusted_device_token,
            max_age=settings.trusted_device_days * 24 * 60 * 60,
            httponly=True,
            secure=not settings.debug,
            samesite="lax",
        )

    outcome = SignInOutcome.authenticated(result.user, result.redirect)
    return issue_session(request, response, db, outcome)
