"""Authentication error taxonomy.

Every failure the auth core can report is an AuthError subclass carrying an
HTTP status, a stable error code and the message shown to the user. Routers
let these propagate; main.py renders them through a single exception handler.
"""


class AuthError(Exception):
    """Base exception for authentication and account-security failures."""

    status_code: int = 400
    code: str = "auth_error"
    message: str = "Request could not be completed."

    def __init__(self, message: str | None = None):
        if message is not None:
            self.message = message
        super().__init__(self.message)


class InvalidCredentials(AuthError):
    """Wrong email or password. Never says which one."""

    status_code = 401
    code = "invalid_credentials"
    message = "Invalid email or password"


class CaptchaRequired(AuthError):
    status_code = 400
    code = "captcha_required"
    message = "Captcha verification is required"


class CaptchaInvalid(AuthError):
    status_code = 403
    code = "captcha_invalid"
    message = "Captcha verification failed"


class Expired(AuthError):
    status_code = 400
    code = "expired"
    message = "This code or link has expired. Please request a new one."


class AlreadyConsumed(AuthError):
    status_code = 400
    code = "already_consumed"
    message = "This code or link has already been used"


class NotFound(AuthError):
    status_code = 400
    code = "not_found"
    message = "Invalid code or link"


class InvalidCode(AuthError):
    status_code = 401
    code = "invalid_code"
    message = "Invalid verification code"


class InvalidPassword(AuthError):
    status_code = 401
    code = "invalid_password"
    message = "Password is incorrect"


class WeakPassword(AuthError):
    status_code = 400
    code = "weak_password"
    message = "Please create a strong password that meets all requirements"

    def __init__(self, missing: list[str] | None = None):
        self.missing = missing or []
        message = None
        if self.missing:
            message = f"Password must contain: {', '.join(self.missing)}"
        super().__init__(message)


class MismatchedConfirmation(AuthError):
    status_code = 400
    code = "mismatched_confirmation"
    message = "Passwords do not match"


class RateLimited(AuthError):
    status_code = 429
    code = "rate_limited"
    message = "Too many attempts. Please wait and try again."


class EmailNotVerified(AuthError):
    status_code = 403
    code = "email_not_verified"
    message = "Please verify your email address before signing in"


class EmailAlreadyRegistered(AuthError):
    status_code = 400
    code = "email_already_registered"
    message = "Email already registered"


class TwoFactorNotEnabled(AuthError):
    status_code = 400
    code = "two_factor_not_enabled"
    message = "Two-factor authentication is not enabled"


class TwoFactorAlreadyEnabled(AuthError):
    status_code = 400
    code = "two_factor_already_enabled"
    message = "Two-factor authentication is already enabled"


class TwoFactorSetupNotStarted(AuthError):
    status_code = 400
    code = "two_factor_setup_not_started"
    message = "Start two-factor setup before confirming a code"


class InvalidPendingSignIn(AuthError):
    status_code = 401
    code = "invalid_pending_sign_in"
    message = "Your sign-in attempt has expired. Please sign in again."


class ServiceUnavailable(AuthError):
    """Server-side misconfiguration or an unreachable collaborator.

    The message given to the constructor is for the log only; users always
    see the generic message.
    """

    status_code = 503
    code = "service_unavailable"
    message = "Something went wrong. Please try again."

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__()
