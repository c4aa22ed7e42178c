"""Pydantic schemas for API validation."""

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
from warden.schemas.mfa import (
    BackupCodesResponse,
    PasswordConfirmRequest,
    SendEmailOtpRequest,
    TwoFactorConfirmRequest,
    TwoFactorSetupResponse,
    TwoFactorStatusResponse,
    TwoFactorVerifyRequest,
)

__all__ = [
    "AuthMethodInfo",
    "BackupCodesResponse",
    "ChangePasswordRequest",
    "DeleteAccountRequest",
    "ForgotPasswordRequest",
    "MagicLinkRequest",
    "MessageResponse",
    "PasswordConfirmRequest",
    "ResendVerificationRequest",
    "ResetPasswordRequest",
    "SendEmailOtpRequest",
    "SessionResponse",
    "SignInRequest",
    "SignInResponse",
    "SignUpRequest",
    "TokenRequest",
    "TrustedDeviceInfo",
    "TwoFactorConfirmRequest",
    "TwoFactorSetupResponse",
    "TwoFactorStatusResponse",
    "TwoFactorVerifyRequest",
    "UpdateProfileRequest",
    "UserInfo",
    "VerifyEmailResponse",
]
