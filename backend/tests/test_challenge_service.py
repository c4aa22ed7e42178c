"""Tests for the Challenge Issuer."""

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import select

from tests.conftest import FakeDispatcher
from warden.models.challenge import Challenge, ChallengePurpose
from warden.models.user import User
from warden.services.challenge_service import ChallengeIssuer
from warden.services.errors import AlreadyConsumed, Expired, NotFound


@pytest.fixture
def db(db_session_maker):
    session = db_session_maker()
    yield session
    session.close()


@pytest.fixture
def user(db):
    user = User(email="a@x.com", name="Ada")
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def issuer(db, email_service):
    return ChallengeIssuer(db, email_service)


def _expire(db, purpose: ChallengePurpose) -> None:
    challenge = db.execute(select(Challenge).where(Challenge.purpose == purpose.value)).scalar_one()
    challenge.expires_at = datetime.now(UTC) - timedelta(seconds=1)
    db.commit()


class TestIssue:
    """Tests for issuing challenges."""

    def test_email_verification_expires_in_one_hour(self, db, user, issuer, outbox: FakeDispatcher):
        token = issuer.issue_email_verification(user)
        db.commit()

        challenge = db.execute(select(Challenge)).scalar_one()
        lifetime = challenge.expires_at - challenge.issued_at
        assert lifetime == timedelta(hours=1)
        assert challenge.purpose == "verify-email"
        assert challenge.user_id == user.id
        assert outbox.last_token("a@x.com") == token

    def test_secret_is_stored_hashed(self, db, user, issuer):
        token = issuer.issue_email_verification(user)
        db.commit()

        challenge = db.execute(select(Challenge)).scalar_one()
        assert challenge.secret_hash != token
        assert len(challenge.secret_hash) == 64

    def test_magic_link_expires_in_five_minutes(self, db, issuer):
        issuer.issue_magic_link("new@x.com", "/dashboard")
        db.commit()

        challenge = db.execute(select(Challenge)).scalar_one()
        assert challenge.expires_at - challenge.issued_at == timedelta(minutes=5)
        assert challenge.user_id is None
        assert challenge.callback_url == "/dashboard"

    def test_email_otp_is_six_digits_and_expires_in_ten_minutes(self, db, user, issuer, outbox):
        code = issuer.issue_email_otp(user)
        db.commit()

        assert len(code) == 6 and code.isdigit()
        assert outbox.last_otp("a@x.com") == code
        challenge = db.execute(select(Challenge)).scalar_one()
        assert challenge.expires_at - challenge.issued_at == timedelta(minutes=10)

    def test_reissue_invalidates_outstanding_challenge(self, db, user, issuer):
        first = issuer.issue_email_otp(user)
        db.commit()
        second = issuer.issue_email_otp(user)
        db.commit()

        if first != second:
            with pytest.raises(NotFound):
                issuer.redeem(ChallengePurpose.EMAIL_OTP, first, user_id=user.id)
        issuer.redeem(ChallengePurpose.EMAIL_OTP, second, user_id=user.id)

    def test_password_reset_for_unknown_email_sends_nothing(self, db, issuer, outbox):
        token = issuer.issue_password_reset("nobody@x.com")
        db.commit()

        assert token
        assert outbox.sent == []
        challenge = db.execute(select(Challenge)).scalar_one()
        assert challenge.user_id is None
        assert challenge.email == "nobody@x.com"

    def test_email_failure_does_not_raise(self, db, user, issuer, outbox):
        outbox.fail = True
        issuer.issue_email_verification(user)
        db.commit()
        assert db.execute(select(Challenge)).scalar_one() is not None


class TestRedeem:
    """Tests for single-use redemption."""

    def test_redeem_returns_bound_subject(self, db, user, issuer):
        token = issuer.issue_email_verification(user)
        db.commit()

        challenge = issuer.redeem(ChallengePurpose.VERIFY_EMAIL, token)
        db.commit()
        assert challenge.user_id == user.id
        assert challenge.email == "a@x.com"
        assert challenge.consumed_at is not None

    def test_second_redeem_is_already_consumed(self, db, user, issuer):
        token = issuer.issue_email_verification(user)
        db.commit()

        issuer.redeem(ChallengePurpose.VERIFY_EMAIL, token)
        db.commit()
        with pytest.raises(AlreadyConsumed):
            issuer.redeem(ChallengePurpose.VERIFY_EMAIL, token)

    def test_unknown_token_is_not_found(self, issuer):
        with pytest.raises(NotFound):
            issuer.redeem(ChallengePurpose.VERIFY_EMAIL, "no-such-token")

    def test_token_only_redeems_for_its_purpose(self, db, user, issuer):
        token = issuer.issue_email_verification(user)
        db.commit()

        with pytest.raises(NotFound):
            issuer.redeem(ChallengePurpose.RESET_PASSWORD, token)

    def test_expired_challenge(self, db, user, issuer):
        token = issuer.issue_email_verification(user)
        db.commit()
        _expire(db, ChallengePurpose.VERIFY_EMAIL)

        with pytest.raises(Expired):
            issuer.redeem(ChallengePurpose.VERIFY_EMAIL, token)

    def test_email_otp_is_scoped_to_its_principal(self, db, user, issuer):
        other = User(email="b@x.com")
        db.add(other)
        db.commit()

        code = issuer.issue_email_otp(user)
        db.commit()

        with pytest.raises(NotFound):
            issuer.redeem(ChallengePurpose.EMAIL_OTP, code, user_id=other.id)
        issuer.redeem(ChallengePurpose.EMAIL_OTP, code, user_id=user.id)
