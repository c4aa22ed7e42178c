"""Schemas for two-factor endpoints."""

from pydantic import BaseModel, Field


class PasswordConfirmRequest(BaseModel):
    """Re-authentication for setup, disable and backup-code regeneration."""

    password: str


class TwoFactorSetupResponse(BaseModel):
    """Secret, provisioning URI, QR code and backup codes. Shown once."""

    secret: str
    uri: str
    qr_code_base64: str
    backup_codes: list[str]


class TwoFactorConfirmRequest(BaseModel):
    code: str = Field(min_length=6, max_length=6)


class BackupCodesResponse(BaseModel):
    backup_codes: list[str]


class TwoFactorStatusResponse(BaseModel):
    enabled: bool
    setup_pending: bool
    backup_codes_remaining: int
    trusted_devices: int
    methods: list[str]


class SendEmailOtpRequest(BaseModel):
    """Request to email a one-time code for a pending sign-in."""

    temp_token: str


class TwoFactorVerifyRequest(BaseModel):
    """Complete a pending sign-in with one second factor."""

    temp_token: str
    method: str = Field(pattern="^(totp|otp|backup_code)$")
    code: str = Field(min_length=1, max_length=32)
    trust_device: bool = False
