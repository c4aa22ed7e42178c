"""Second-factor primitives: TOTP, QR codes, secret encryption and backup codes."""

import base64
import secrets
import string
from datetime import UTC, datetime, timedelta
from io import BytesIO

import pyotp
import qrcode
from cryptography.fernet import Fernet, InvalidToken

from warden.config import settings
from warden.services.errors import ServiceUnavailable

# Unambiguous uppercase alphabet; users read these codes off paper
_BACKUP_CODE_ALPHABET = "".join(
    c for c in string.ascii_uppercase + string.digits if c not in "O0I1"
)


def _get_fernet() -> Fernet:
    """Get Fernet cipher for TOTP secret encryption/decryption."""
    if not settings.mfa_encryption_key:
        raise ServiceUnavailable("MFA encryption key not configured")
    try:
        return Fernet(settings.mfa_encryption_key.encode())
    except ValueError as e:
        raise ServiceUnavailable("MFA encryption key is not a valid Fernet key") from e


class MfaService:
    """Service for second-factor primitives."""

    @staticmethod
    def generate_totp_secret() -> str:
        """Generate a new TOTP secret (base32 encoded, 32 characters)."""
        return pyotp.random_base32()

    @staticmethod
    def get_totp_uri(secret: str, email: str) -> str:
        """Get otpauth:// URI for QR code scanning."""
        totp = pyotp.TOTP(secret)
        return totp.provisioning_uri(name=email, issuer_name=settings.totp_issuer)

    @staticmethod
    def generate_qr_code_base64(uri: str) -> str:
        """Generate QR code as base64 PNG for embedding in responses."""
        qr = qrcode.make(uri)
        buffer = BytesIO()
        qr.save(buffer, format="PNG")
        return base64.b64encode(buffer.getvalue()).decode()

    @staticmethod
    def totp_timestep(secret: str, code: str, for_time: datetime | None = None) -> int | None:
        """Return the time step a TOTP code belongs to, or None if it matches none.

        Allows 1 window of drift (30 seconds each side).
        """
        totp = pyotp.TOTP(secret)
        now = for_time or datetime.now(UTC)
        for drift in (0, -1, 1):
            at = now + timedelta(seconds=drift * totp.interval)
            if totp.verify(code, for_time=at):
                return totp.timecode(at)
        return None

    @staticmethod
    def verify_totp(secret: str, code: str) -> bool:
        """Verify TOTP code. Allows 1 window of drift (30 seconds each side)."""
        return MfaService.totp_timestep(secret, code) is not None

    @staticmethod
    def encrypt_secret(secret: str) -> str:
        """Encrypt TOTP secret for storage using Fernet (AES-128-CBC).

        Requires mfa_encryption_key to be a valid Fernet key.
        Generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"
        """
        return _get_fernet().encrypt(secret.encode()).decode()

    @staticmethod
    def decrypt_secret(encrypted: str) -> str:
        """Decrypt TOTP secret from storage."""
        try:
            return _get_fernet().decrypt(encrypted.encode()).decode()
        except InvalidToken as e:
            raise ServiceUnavailable("Stored TOTP secret cannot be decrypted with the current key") from e

    @staticmethod
    def generate_backup_codes(count: int | None = None, length: int | None = None) -> list[str]:
        """Generate a batch of distinct alphanumeric backup codes."""
        count = count or settings.backup_code_count
        length = length or settings.backup_code_length
        codes: set[str] = set()
        while len(codes) < count:
            codes.add("".join(secrets.choice(_BACKUP_CODE_ALPHABET) for _ in range(length)))
        return list(codes)

    @staticmethod
    def normalize_backup_code(code: str) -> str:
        """Accept codes typed in lower case or with spaces/dashes."""
        return "".join(code.split()).replace("-", "").upper()

    @staticmethod
    def generate_email_otp() -> str:
        """Generate 6-digit OTP code for email verification."""
        return f"{secrets.randbelow(1000000):06d}"
