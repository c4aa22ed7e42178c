"""Tests for Turnstile captcha verification and its failure modes."""

from urllib.parse import parse_qs

import httpx
import pytest
from sqlalchemy import func, select

from tests.conftest import sign_up
from warden.dependencies.services import get_bot_gate
from warden.main import app
from warden.models.user import User
from warden.services.bot_gate import DisabledBotGate, TurnstileBotGate
from warden.services.errors import CaptchaInvalid, CaptchaRequired, ServiceUnavailable

VERIFY_URL = "https://turnstile.test/siteverify"


def make_gate(handler, secret_key: str = "secret", max_retries: int = 2) -> TurnstileBotGate:
    gate = TurnstileBotGate(secret_key=secret_key, verify_url=VERIFY_URL, timeout=1.0, max_retries=max_retries)
    gate._client = httpx.Client(transport=httpx.MockTransport(handler))
    return gate


class TestTurnstileBotGate:
    def test_successful_verification(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(parse_qs(request.content.decode()))
            return httpx.Response(200, json={"success": True})

        make_gate(handler).verify("token-123", remote_ip="203.0.113.7")

        assert seen[0]["secret"] == ["secret"]
        assert seen[0]["response"] == ["token-123"]
        assert seen[0]["remoteip"] == ["203.0.113.7"]

    @pytest.mark.parametrize("token", [None, ""])
    def test_missing_token_never_calls_out(self, token):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json={"success": True})

        with pytest.raises(CaptchaRequired):
            make_gate(handler).verify(token)
        assert calls == []

    def test_rejected_token(self):
        gate = make_gate(lambda request: httpx.Response(
            200, json={"success": False, "error-codes": ["invalid-input-response"]}
        ))

        with pytest.raises(CaptchaInvalid):
            gate.verify("stale-token")

    def test_bad_secret_is_a_server_problem(self):
        gate = make_gate(lambda request: httpx.Response(
            200, json={"success": False, "error-codes": ["invalid-input-secret"]}
        ))

        with pytest.raises(ServiceUnavailable) as exc_info:
            gate.verify("token-123")
        assert "invalid-input-secret" in exc_info.value.detail

    def test_missing_secret_key(self):
        with pytest.raises(ServiceUnavailable):
            make_gate(lambda request: httpx.Response(200, json={"success": True}), secret_key="").verify("t")

    def test_connection_errors_are_retried_then_unavailable(self):
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(ServiceUnavailable):
            make_gate(handler, max_retries=2).verify("token-123")
        assert len(calls) == 2

    def test_error_status_is_unavailable(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(500, text="upstream broke")

        with pytest.raises(ServiceUnavailable):
            make_gate(handler).verify("token-123")
        assert len(calls) == 1

    def test_disabled_gate_accepts_anything(self):
        assert DisabledBotGate().verify(None) is None


class TestCaptchaOnEndpoints:
    def test_unreachable_verifier_returns_generic_503(self, auth_client):
        """Nothing about the upstream failure leaks to the client."""
        test_client, db_session_maker = auth_client

        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        app.dependency_overrides[get_bot_gate] = lambda: make_gate(handler, max_retries=1)
        response = sign_up(test_client, "a@x.com")

        assert response.status_code == 503
        assert response.json() == {
            "detail": "Something went wrong. Please try again.",
            "code": "service_unavailable",
        }
        db = db_session_maker()
        assert db.execute(select(func.count()).select_from(User)).scalar_one() == 0
        db.close()

    @pytest.mark.parametrize(
        "path,body",
        [
            ("/api/auth/sign-in", {"email": "a@x.com", "password": "x"}),
            ("/api/auth/magic-link", {"email": "a@x.com"}),
            ("/api/auth/forgot-password", {"email": "a@x.com"}),
        ],
    )
    def test_gated_endpoints_reject_bots(self, auth_client, outbox, path, body):
        test_client, _ = auth_client

        missing = test_client.post(path, json=body)
        bot = test_client.post(path, json=body, headers={"x-captcha-response": "bot"})

        assert missing.json()["code"] == "captcha_required"
        assert bot.status_code == 403
        assert outbox.sent == []

    def test_captcha_header_is_forwarded(self, auth_client, bot_gate):
        test_client, _ = auth_client

        sign_up(test_client, "a@x.com")

        assert bot_gate.calls == 1
