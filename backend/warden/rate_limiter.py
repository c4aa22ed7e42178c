"""Rate limiter configuration for auth endpoints."""

from slowapi import Limiter
from slowapi.util import get_remote_address

# Rate limiter instance - shared across modules
limiter = Limiter(key_func=get_remote_address)

# Per-IP limits
SIGN_IN_LIMIT = "5/minute"
SIGN_UP_LIMIT = "5/minute"
EMAIL_LIMIT = "3/minute"  # anything that sends an email
SECOND_FACTOR_LIMIT = "10/minute"
