"""Application configuration."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    # Database
    database_url: str = "sqlite:///./warden.db"

    # Sessions
    jwt_secret_key: str = "change-me-in-production"  # Generate with: openssl rand -hex 32
    jwt_algorithm: str = "HS256"
    session_expire_days: int = 7

    # Application
    app_name: str = "Warden"
    frontend_url: str = "http://localhost:3000"
    log_level: str = "INFO"
    debug: bool = True

    # CORS
    allowed_origins: list[str] = ["http://localhost:5173", "http://localhost:3000"]

    # Email (SendGrid)
    sendgrid_api_key: str = ""
    email_from_address: str = "auth@example.com"
    email_from_name: str = "Warden"
    email_timeout_seconds: float = 10.0

    # Two-factor
    mfa_encryption_key: str = ""  # Fernet key
    totp_issuer: str = "Warden"
    backup_code_count: int = 10
    backup_code_length: int = 10

    # Bot verification (Cloudflare Turnstile)
    captcha_enabled: bool = True
    turnstile_secret_key: str = ""
    turnstile_verify_url: str = "https://challenges.cloudflare.com/turnstile/v0/siteverify"
    captcha_timeout_seconds: float = 5.0

    # Sign-in policy
    require_email_verification: bool = True
    max_login_attempts: int = 5
    lockout_minutes: int = 15

    # Challenge lifetimes
    email_verification_expire_minutes: int = 60
    password_reset_expire_minutes: int = 60
    magic_link_expire_minutes: int = 5
    email_otp_expire_minutes: int = 10
    pending_sign_in_expire_minutes: int = 10
    trusted_device_days: int = 30

    # Route guard
    protected_paths: list[str] = ["/dashboard"]
    sign_in_path: str = "/sign-in"
    two_factor_path: str = "/2fa"
    default_redirect: str = "/dashboard"

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )


settings = Settings()
