"""Password hashing, token hashing and session JWTs."""

import hashlib
import logging
from datetime import UTC, datetime, timedelta

import bcrypt
import jwt

from warden.config import settings

logger = logging.getLogger(__name__)

# bcrypt only looks at the first 72 bytes; newer releases raise instead of truncating
_BCRYPT_MAX_BYTES = 72


class AuthService:
    """Service for authentication primitives."""

    # Pre-computed bcrypt hash for timing-consistent password verification
    # Used when user doesn't exist to prevent email enumeration via timing attacks
    _DUMMY_HASH = "$2b$12$LQv3c1yqBWVHxkd0LHAkCOYz6TtxMQJqhN8/X4.VTtYA9dWQ6E3Ky"

    @staticmethod
    def get_dummy_hash() -> str:
        """Get a dummy password hash for timing-consistent verification."""
        return AuthService._DUMMY_HASH

    @staticmethod
    def normalize_email(email: str) -> str:
        """Canonical form used for storage and lookups."""
        return email.strip().lower()

    @staticmethod
    def hash_password(password: str) -> str:
        """Hash a password using bcrypt."""
        salt = bcrypt.gensalt()
        hashed = bcrypt.hashpw(password.encode("utf-8")[:_BCRYPT_MAX_BYTES], salt)
        return hashed.decode("utf-8")

    @staticmethod
    def verify_password(password: str, hashed: str) -> bool:
        """Verify a password against its hash."""
        try:
            return bcrypt.checkpw(
                password.encode("utf-8")[:_BCRYPT_MAX_BYTES], hashed.encode("utf-8")
            )
        except ValueError as e:
            logger.error(f"Password verification error: {e}")
            return False

    @staticmethod
    def hash_token(token: str) -> str:
        """Hash a high-entropy secret (token, code, device id) with SHA-256."""
        return hashlib.sha256(token.encode("utf-8")).hexdigest()

    @staticmethod
    def create_session_token(
        user_id: str,
        session_id: str,
        expires_delta: timedelta | None = None,
    ) -> str:
        """Create the signed session JWT bound to a sessions row."""
        if expires_delta is None:
            expires_delta = timedelta(days=settings.session_expire_days)

        now = datetime.now(UTC)
        payload = {
            "sub": user_id,
            "sid": session_id,
            "exp": now + expires_delta,
            "iat": now,
            "type": "session",
        }
        return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)

    @staticmethod
    def decode_session_token(token: str) -> dict | None:
        """Decode and validate a session JWT. Returns None when unusable."""
        try:
            payload = jwt.decode(
                token,
                settings.jwt_secret_key,
                algorithms=[settings.jwt_algorithm],
            )
        except jwt.ExpiredSignatureError:
            logger.debug("Session token expired")
            return None
        except jwt.InvalidTokenError as e:
            logger.debug(f"Invalid session token: {e}")
            return None

        if payload.get("type") != "session" or not payload.get("sid") or not payload.get("sub"):
            return None
        return payload
