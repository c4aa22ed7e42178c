"""Tests for password strength scoring and validation."""

import pytest

from warden.services.errors import MismatchedConfirmation, WeakPassword
from warden.services.password_policy import (
    SPECIAL_CHARACTERS,
    TOP_TIER,
    get_password_strength,
    validate_new_password,
)


class TestGetPasswordStrength:
    """Tests for the five-check score and its 0-4 buckets."""

    def test_empty_password_scores_zero(self):
        strength = get_password_strength("")
        assert strength.score == 0
        assert strength.label == ""

    def test_all_five_checks_reach_top_tier(self):
        strength = get_password_strength("Ab1!abcd")
        assert strength.score == TOP_TIER
        assert strength.label == "Strong"
        assert strength.is_strong
        assert strength.missing == []

    @pytest.mark.parametrize(
        "password, missing",
        [
            ("Ab1!abc", "at least 8 characters"),
            ("ab1!abcd", "one uppercase letter"),
            ("AB1!ABCD", "one lowercase letter"),
            ("Abc!abcd", "one number"),
            ("Ab1aabcd", "one special character"),
        ],
    )
    def test_any_missing_category_caps_below_top(self, password, missing):
        strength = get_password_strength(password)
        assert strength.score == 3
        assert strength.label == "Good"
        assert not strength.is_strong
        assert strength.missing == [missing]

    def test_buckets(self):
        assert get_password_strength("a").score == 1  # lowercase only
        assert get_password_strength("aB").score == 1  # two checks
        assert get_password_strength("aB1").score == 2
        assert get_password_strength("aB1!").score == 3

    def test_every_special_character_counts(self):
        for char in SPECIAL_CHARACTERS:
            assert get_password_strength(f"Abcdef1{char}").is_strong, char

    def test_other_symbols_are_not_special(self):
        assert not get_password_strength("Abcdef1_").is_strong
        assert not get_password_strength("Abcdef1~").is_strong


class TestValidateNewPassword:
    """Tests for the account-creation/reset gate."""

    def test_strong_password_passes(self):
        validate_new_password("Ab1!abcd", "Ab1!abcd")

    def test_confirmation_mismatch(self):
        with pytest.raises(MismatchedConfirmation):
            validate_new_password("Ab1!abcd", "Ab1!abcx")

    def test_weak_password_lists_missing_checks(self):
        with pytest.raises(WeakPassword) as exc_info:
            validate_new_password("abcdefgh")
        assert "one uppercase letter" in exc_info.value.missing
        assert "one number" in exc_info.value.missing
        assert exc_info.value.status_code == 400

    def test_no_confirmation_skips_equality_check(self):
        validate_new_password("Ab1!abcd", None)
