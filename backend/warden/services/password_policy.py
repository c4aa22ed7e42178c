"""Password strength policy.

A password is scored by how many of five checks it satisfies. The raw count
(0-5) is re-bucketed onto a 0-4 scale; only a password passing every check
reaches the top tier, and account creation, reset and change all require it.
Sign-in never checks strength.
"""

import re
from dataclasses import dataclass, field

from warden.services.errors import MismatchedConfirmation, WeakPassword

SPECIAL_CHARACTERS = '!@#$%^&*(),.?":{}|<>'
MIN_LENGTH = 8
TOP_TIER = 4

_SPECIAL_RE = re.compile("[" + re.escape(SPECIAL_CHARACTERS) + "]")

_CHECKS: list[tuple[str, str]] = [
    ("length", f"at least {MIN_LENGTH} characters"),
    ("uppercase", "one uppercase letter"),
    ("lowercase", "one lowercase letter"),
    ("number", "one number"),
    ("special", "one special character"),
]


@dataclass
class PasswordStrength:
    """Result of scoring a password."""

    score: int  # 0-4
    label: str
    checks: dict[str, bool] = field(default_factory=dict)

    @property
    def is_strong(self) -> bool:
        return self.score == TOP_TIER

    @property
    def missing(self) -> list[str]:
        return [description for name, description in _CHECKS if not self.checks.get(name)]


def get_password_strength(password: str) -> PasswordStrength:
    """Score a password against the five checks."""
    if not password:
        return PasswordStrength(score=0, label="", checks={name: False for name, _ in _CHECKS})

    checks = {
        "length": len(password) >= MIN_LENGTH,
        "uppercase": re.search(r"[A-Z]", password) is not None,
        "lowercase": re.search(r"[a-z]", password) is not None,
        "number": re.search(r"\d", password) is not None,
        "special": _SPECIAL_RE.search(password) is not None,
    }
    satisfied = sum(checks.values())

    if satisfied == 0:
        return PasswordStrength(score=0, label="", checks=checks)
    if satisfied <= 2:
        return PasswordStrength(score=1, label="Weak", checks=checks)
    if satisfied == 3:
        return PasswordStrength(score=2, label="Fair", checks=checks)
    if satisfied == 4:
        return PasswordStrength(score=3, label="Good", checks=checks)
    return PasswordStrength(score=4, label="Strong", checks=checks)


def validate_new_password(password: str, confirmation: str | None = None) -> None:
    """Raise unless password is top tier and matches its confirmation.

    confirmation=None skips the equality check for callers whose form has
    no confirmation field.
    """
    if confirmation is not None and password != confirmation:
        raise MismatchedConfirmation()

    strength = get_password_strength(password)
    if not strength.is_strong:
        raise WeakPassword(strength.missing)
