"""Services layer: the authentication state machine and its collaborators.

- authenticator: Primary Authenticator (first factor, account lifecycle)
- second_factor: Second-Factor Engine (TOTP, email OTP, backup codes, trusted devices)
- challenge_service: Challenge Issuer (emailed single-use codes and links)
- session_service / route_guard: sessions and the protected-path gate
- bot_gate: captcha verification
- shared/: HTTP client and datetime helpers

Common imports for convenience:
    from warden.services import AuthError, InvalidCredentials
"""

# Re-export the error taxonomy for convenience
from warden.services.errors import (
    AlreadyConsumed,
    AuthError,
    CaptchaInvalid,
    CaptchaRequired,
    EmailAlreadyRegistered,
    EmailNotVerified,
    Expired,
    InvalidCode,
    InvalidCredentials,
    InvalidPassword,
    InvalidPendingSignIn,
    MismatchedConfirmation,
    NotFound,
    RateLimited,
    ServiceUnavailable,
    TwoFactorAlreadyEnabled,
    TwoFactorNotEnabled,
    TwoFactorSetupNotStarted,
    WeakPassword,
)

__all__ = [
    "AlreadyConsumed",
    "AuthError",
    "CaptchaInvalid",
    "CaptchaRequired",
    "EmailAlreadyRegistered",
    "EmailNotVerified",
    "Expired",
    "InvalidCode",
    "InvalidCredentials",
    "InvalidPassword",
    "InvalidPendingSignIn",
    "MismatchedConfirmation",
    "NotFound",
    "RateLimited",
    "ServiceUnavailable",
    "TwoFactorAlreadyEnabled",
    "TwoFactorNotEnabled",
    "TwoFactorSetupNotStarted",
    "WeakPassword",
]
