"""Schemas for authentication endpoints."""

from datetime import datetime

from pydantic import BaseModel, EmailStr, Field


class SignUpRequest(BaseModel):
    """Schema for sign-up. Strength is checked by the password policy, not here."""

    email: EmailStr
    password: str = Field(max_length=128)
    confirm_password: str | None = Field(None, max_length=128)
    name: str | None = Field(None, max_length=100)


class SignInRequest(BaseModel):
    """Schema for password sign-in."""

    email: str
    password: str
    redirect: str | None = None


class UserInfo(BaseModel):
    """Schema for user info in auth responses."""

    id: str
    email: str
    name: str | None = None
    email_verified: bool
    two_factor_enabled: bool

    model_config = {"from_attributes": True}


class SessionResponse(BaseModel):
    """Returned once a sign-in is fully authenticated."""

    session_token: str
    token_type: str = "bearer"
    redirect_url: str
    user: UserInfo


class SignInResponse(BaseModel):
    """Either a session or a pending second factor."""

    two_factor_required: bool = False
    session_token: str | None = None
    token_type: str | None = None
    temp_token: str | None = None
    methods: list[str] | None = None
    redirect_url: str
    user: UserInfo | None = None


class MessageResponse(BaseModel):
    """Schema for simple message response."""

    message: str


class MagicLinkRequest(BaseModel):
    email: EmailStr
    callback_url: str | None = None


class TokenRequest(BaseModel):
    """A token taken from an emailed link."""

    token: str


class VerifyEmailResponse(BaseModel):
    message: str
    session_token: str | None = None
    redirect_url: str | None = None
    user: UserInfo | None = None


class ResendVerificationRequest(BaseModel):
    """Schema for resending verification email."""

    email: EmailStr


class ForgotPasswordRequest(BaseModel):
    """Schema for requesting password reset."""

    email: EmailStr


class ResetPasswordRequest(BaseModel):
    """Schema for resetting password with token."""

    token: str
    new_password: str = Field(max_length=128)
    confirm_password: str | None = Field(None, max_length=128)


class ChangePasswordRequest(BaseModel):
    """Schema for changing password while signed in."""

    current_password: str
    new_password: str = Field(max_length=128)
    confirm_password: str | None = Field(None, max_length=128)


class UpdateProfileRequest(BaseModel):
    name: str | None = Field(None, max_length=100)


class DeleteAccountRequest(BaseModel):
    """Deleting an account takes the password and the literal word DELETE."""

    password: str
    confirmation: str


class AuthMethodInfo(BaseModel):
    name: str
    description: str
    attempt_fields: list[str]
    redeem_fields: list[str]
    requires_captcha: bool
    second_factor_applies: bool


class TrustedDeviceInfo(BaseModel):
    id: str
    user_agent: str | None = None
    created_at: datetime
    expires_at: datetime

    model_config = {"from_attributes": True}
