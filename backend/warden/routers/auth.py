"""Authentication router."""

import logging

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, Response, status
from sqlalchemy.orm import Session

from warden.config import settings
from warden.database import get_db
from warden.dependencies.auth import get_current_session, get_current_user
from warden.dependencies.services import get_email_service, require_captcha
from warden.models.session import Session as UserSession
from warden.models.user import User
from warden.rate_limiter import EMAIL_LIMIT, SIGN_IN_LIMIT, SIGN_UP_LIMIT, limiter
from warden.schemas.auth import (
    AuthMethodInfo,
    ChangePasswordRequest,
    DeleteAccountRequest,
    ForgotPasswordRequest,
    MagicLinkRequest,
    MessageResponse,
    ResendVerificationRequest,
    ResetPasswordRequest,
    SessionResponse,
    SignInRequest,
    SignInResponse,
    SignUpRequest,
    TokenRequest,
    TrustedDeviceInfo,
    UpdateProfileRequest,
    UserInfo,
    VerifyEmailResponse,
)
from warden.services.authenticator import PrimaryAuthenticator, SignInOutcome, SignInState
from warden.services.email_service import EmailService
from warden.services.route_guard import SESSION_COOKIE, session_token_from_request
from warden.services.second_factor import TrustedDeviceService
from warden.services.security_audit_service import SecurityAuditService, SecurityEventType
from warden.services.session_service import SessionIssuer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["authentication"])

TRUSTED_DEVICE_COOKIE = "trusted_device"


def _authenticator(request: Request, db: Session, email_service: EmailService) -> PrimaryAuthenticator:
    ip_address, user_agent = SecurityAuditService.get_request_info(request)
    return PrimaryAuthenticator(
        db,
        email_service,
        registry=request.app.state.auth_methods,
        ip_address=ip_address,
        user_agent=user_agent,
    )


def issue_session(
    request: Request,
    response: Response,
    db: Session,
    outcome: SignInOutcome,
) -> dict:
    """Mint a session for an AUTHENTICATED outcome and write the cookie."""
    ip_address, user_agent = SecurityAuditService.get_request_info(request)
    issued = SessionIssuer(db).issue(outcome, ip_address, user_agent)
    db.commit()

    response.set_cookie(
        SESSION_COOKIE,
        issued.token,
        max_age=issued.max_age,
        httponly=True,
        secure=not settings.debug,
        samesite="lax",
    )
    return {
        "session_token": issued.token,
        "token_type": "bearer",
        "redirect_url": outcome.redirect_url,
        "user": UserInfo.model_validate(outcome.user),
    }


@router.get("/methods", response_model=list[AuthMethodInfo])
def list_methods(request: Request) -> list[dict]:
    """List the registered sign-in methods and what each one needs."""
    return [m.to_dict() for m in request.app.state.auth_methods.describe()]


@router.post(
    "/sign-up",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_captcha)],
)
@limiter.limit(SIGN_UP_LIMIT)
def sign_up(
    request: Request,
    data: SignUpRequest,
    db: Session = Depends(get_db),
    email_service: EmailService = Depends(get_email_service),
) -> dict:
    """Create an account and send the verification email."""
    _authenticator(request, db, email_service).sign_up(
        data.email, data.password, data.confirm_password, data.name
    )
    return {"message": "Account created. Please check your email to verify your account."}


@router.post("/sign-in", response_model=SignInResponse, dependencies=[Depends(require_captcha)])
@limiter.limit(SIGN_IN_LIMIT)
def sign_in(
    request: Request,
    response: Response,
    data: SignInRequest,
    db: Session = Depends(get_db),
    email_service: EmailService = Depends(get_email_service),
) -> dict:
    """Password sign-in. Returns a session or a pending second factor."""
    outcome = _authenticator(request, db, email_service).sign_in(
        data.email,
        data.password,
        trusted_device_token=request.cookies.get(TRUSTED_DEVICE_COOKIE),
        redirect=data.redirect,
    )

    if outcome.state == SignInState.AWAITING_SECOND_FACTOR:
        return {
            "two_factor_required": True,
            "temp_token": outcome.pending_token,
            "methods": outcome.methods,
            "redirect_url": outcome.redirect_url,
        }

    return issue_session(request, response, db, outcome)


@router.post("/sign-out", response_model=MessageResponse)
def sign_out(request: Request, response: Response, db: Session = Depends(get_db)) -> dict:
    """Revoke the current session. Succeeds even when not signed in."""
    token = session_token_from_request(request)
    if token:
        sessions = SessionIssuer(db)
        user = sessions.resolve(token)
        if sessions.sign_out(token):
            ip_address, user_agent = SecurityAuditService.get_request_info(request)
            SecurityAuditService.log_event(
                db, SecurityEventType.SIGN_OUT, user_id=user.id if user else None,
                ip_address=ip_address, user_agent=user_agent
            )
            db.commit()

    response.delete_cookie(SESSION_COOKIE)
    return {"message": "Signed out"}


@router.post("/magic-link", response_model=MessageResponse, dependencies=[Depends(require_captcha)])
@limiter.limit(EMAIL_LIMIT)
def request_magic_link(
    request: Request,
    data: MagicLinkRequest,
    db: Session = Depends(get_db),
    email_service: EmailService = Depends(get_email_service),
) -> dict:
    """Email a single-use sign-in link."""
    _authenticator(request, db, email_service).request_magic_link(data.email, data.callback_url)
    return {"message": "Check your email for a sign-in link."}


@router.post("/magic-link/verify", response_model=SessionResponse)
def verify_magic_link(
    request: Request,
    response: Response,
    data: TokenRequest,
    db: Session = Depends(get_db),
    email_service: EmailService = Depends(get_email_service),
) -> dict:
    """Redeem a magic link and sign in."""
    outcome = _authenticator(request, db, email_service).redeem_magic_link(data.token)
    return issue_session(request, response, db, outcome)


@router.post("/verify-email", response_model=VerifyEmailResponse)
def verify_email(
    request: Request,
    response: Response,
    data: TokenRequest,
    db: Session = Depends(get_db),
    email_service: EmailService = Depends(get_email_service),
) -> dict:
    """Verify email with the token from the email link.

    Principals without two-factor are signed in right away.
    """
    outcome = _authenticator(request, db, email_service).verify_email(data.token)
    if outcome is None:
        return {"message": "Email verified. Please sign in."}

    session = issue_session(request, response, db, outcome)
    return {"message": "Email verified.", **session}


@router.post("/resend-verification", response_model=MessageResponse)
@limiter.limit(EMAIL_LIMIT)
def resend_verification(
    request: Request,
    background_tasks: BackgroundTasks,
    data: ResendVerificationRequest,
    db: Session = Depends(get_db),
    email_service: EmailService = Depends(get_email_service),
) -> dict:
    """Resend the verification email. Same answer whether or not the account exists."""
    deferred = email_service.in_background(background_tasks)
    _authenticator(request, db, deferred).resend_verification(data.email)
    return {"message": "If the account exists and is unverified, a verification email has been sent."}


@router.post("/forgot-password", response_model=MessageResponse, dependencies=[Depends(require_captcha)])
@limiter.limit(EMAIL_LIMIT)
def forgot_password(
    request: Request,
    background_tasks: BackgroundTasks,
    data: ForgotPasswordRequest,
    db: Session = Depends(get_db),
    email_service: EmailService = Depends(get_email_service),
) -> dict:
    """Request a password reset. Same answer whether or not the account exists."""
    deferred = email_service.in_background(background_tasks)
    _authenticator(request, db, deferred).request_password_reset(data.email)
    return {"message": "If an account exists with this email, a reset link has been sent."}


@router.post("/reset-password", response_model=MessageResponse)
def reset_password(
    request: Request,
    data: ResetPasswordRequest,
    db: Session = Depends(get_db),
    email_service: EmailService = Depends(get_email_service),
) -> dict:
    """Set a new password using the token from the reset email."""
    _authenticator(request, db, email_service).reset_password(
        data.token, data.new_password, data.confirm_password
    )
    return {"message": "Password reset successfully. Please sign in with your new password."}


@router.put("/change-password", response_model=MessageResponse)
def change_password(
    request: Request,
    data: ChangePasswordRequest,
    current_user: User = Depends(get_current_user),
    current_session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
    email_service: EmailService = Depends(get_email_service),
) -> dict:
    """Change password. Other sessions are signed out."""
    _authenticator(request, db, email_service).change_password(
        current_user,
        data.current_password,
        data.new_password,
        data.confirm_password,
        current_session_id=current_session.id,
    )
    return {"message": "Password changed successfully"}


@router.get("/me", response_model=UserInfo)
def get_me(current_user: User = Depends(get_current_user)) -> User:
    """Get current user info."""
    return current_user


@router.put("/me", response_model=UserInfo)
def update_me(
    request: Request,
    data: UpdateProfileRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    email_service: EmailService = Depends(get_email_service),
) -> User:
    """Update the display name."""
    return _authenticator(request, db, email_service).update_profile(current_user, data.name)


@router.delete("/me", response_model=MessageResponse)
def delete_me(
    request: Request,
    response: Response,
    data: DeleteAccountRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    email_service: EmailService = Depends(get_email_service),
) -> dict:
    """Delete the account. Requires the password and the word DELETE."""
    _authenticator(request, db, email_service).delete_account(
        current_user, data.password, data.confirmation
    )
    response.delete_cookie(SESSION_COOKIE)
    response.delete_cookie(TRUSTED_DEVICE_COOKIE)
    return {"message": "Account deleted"}


@router.get("/trusted-devices", response_model=list[TrustedDeviceInfo])
def list_trusted_devices(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list:
    """List devices that currently skip the second factor."""
    return TrustedDeviceService.list_for_user(db, current_user.id)


@router.delete("/trusted-devices/{device_id}", response_model=MessageResponse)
def revoke_trusted_device(
    request: Request,
    device_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    """Revoke one trusted device."""
    if not TrustedDeviceService.revoke(db, current_user.id, device_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Trusted device not found")

    ip_address, user_agent = SecurityAuditService.get_request_info(request)
    SecurityAuditService.log_event(
        db, SecurityEventType.TRUSTED_DEVICE_REVOKED, user_id=current_user.id,
        ip_address=ip_address, user_agent=user_agent, details={"device_id": device_id}
    )
    db.commit()
    return {"message": "Trusted device revoked"}


@router.delete("/trusted-devices", response_model=MessageResponse)
def revoke_all_trusted_devices(
    request: Request,
    response: Response,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    """Revoke every trusted device, this one included."""
    count = TrustedDeviceService.revoke_all(db, current_user.id)

    ip_address, user_agent = SecurityAuditService.get_request_info(request)
    SecurityAuditService.log_event(
        db, SecurityEventType.TRUSTED_DEVICE_REVOKED, user_id=current_user.id,
        ip_address=ip_address, user_agent=user_agent, details={"count": count}
    )
    db.commit()
    response.delete_cookie(TRUSTED_DEVICE_COOKIE)
    return {"message": f"Revoked {count} trusted device(s)"}
