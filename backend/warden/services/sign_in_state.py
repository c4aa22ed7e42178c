"""States a sign-in attempt moves through."""

from enum import StrEnum


class SignInState(StrEnum):
    UNAUTHENTICATED = "unauthenticated"
    AWAITING_SECOND_FACTOR = "awaiting_second_factor"
    AUTHENTICATED = "authenticated"
