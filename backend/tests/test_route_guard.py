"""Tests for the route guard middleware and redirect handling."""

import asyncio
from unittest.mock import patch

import pytest
from sqlalchemy import select

from tests.conftest import bearer, create_verified_user, sign_in
from warden.main import app
from warden.models.user import User
from warden.services.route_guard import RouteGuard, redirect_with_target, safe_redirect


class TestSafeRedirect:
    @pytest.mark.parametrize("target", ["/dashboard", "/dashboard/reports?tab=2", "/"])
    def test_relative_paths_pass(self, target):
        assert safe_redirect(target) == target

    @pytest.mark.parametrize(
        "target",
        [
            "https://evil.example.com/dashboard",
            "//evil.example.com",
            "/\\evil.example.com",
            "javascript:alert(1)",
            "dashboard",
            "",
            None,
        ],
    )
    def test_off_site_targets_fall_back(self, target):
        assert safe_redirect(target) == "/dashboard"
        assert safe_redirect(target, default="/home") == "/home"

    def test_redirect_target_is_fully_encoded(self):
        assert redirect_with_target("/sign-in", "/dashboard?x=1&y=2") == (
            "/sign-in?redirect=%2Fdashboard%3Fx%3D1%26y%3D2"
        )


class TestIsProtected:
    guard = RouteGuard(["/dashboard", "/settings/"], "/sign-in")

    @pytest.mark.parametrize("path", ["/dashboard", "/dashboard/", "/dashboard/reports", "/settings"])
    def test_protected(self, path):
        assert self.guard.is_protected(path)

    @pytest.mark.parametrize("path", ["/", "/dashboards", "/api/auth/sign-in", "/health"])
    def test_not_protected(self, path):
        assert not self.guard.is_protected(path)


class TestRouteGuardMiddleware:
    """Tests for redirecting unauthenticated requests to sign-in."""

    def test_signed_out_request_redirects_with_original_target(self, auth_client):
        test_client, _ = auth_client

        response = test_client.get("/dashboard?x=1", follow_redirects=False)

        assert response.status_code == 302
        assert response.headers["location"] == "/sign-in?redirect=%2Fdashboard%3Fx%3D1"

    def test_unknown_token_redirects(self, auth_client):
        test_client, _ = auth_client

        response = test_client.get("/dashboard", headers=bearer("not-a-session"), follow_redirects=False)

        assert response.status_code == 302
        assert response.headers["location"] == "/sign-in?redirect=%2Fdashboard"

    def test_session_cookie_reaches_dashboard(self, auth_client):
        test_client, db_session_maker = auth_client
        create_verified_user(test_client, db_session_maker, "a@x.com")

        sign_in(test_client, "a@x.com")  # sets the session cookie
        response = test_client.get("/dashboard", follow_redirects=False)

        assert response.status_code == 200
        data = response.json()
        assert data["user"]["email"] == "a@x.com"
        assert data["security"]["active_sessions"] == 2
        assert data["security"]["two_factor_enabled"] is False
        assert "sign_in_success" in {e["event"] for e in data["recent_activity"]}

    def test_bearer_token_reaches_dashboard(self, auth_client):
        test_client, db_session_maker = auth_client
        token = create_verified_user(test_client, db_session_maker, "a@x.com")["session_token"]

        response = test_client.get("/dashboard", headers=bearer(token), follow_redirects=False)

        assert response.status_code == 200

    def test_signed_out_session_redirects(self, auth_client):
        test_client, db_session_maker = auth_client
        token = create_verified_user(test_client, db_session_maker, "a@x.com")["session_token"]
        test_client.post("/api/auth/sign-out", headers=bearer(token))

        response = test_client.get("/dashboard", headers=bearer(token), follow_redirects=False)

        assert response.status_code == 302

    def test_failing_session_store_redirects(self, auth_client):
        test_client, db_session_maker = auth_client
        token = create_verified_user(test_client, db_session_maker, "a@x.com")["session_token"]

        with patch("warden.services.route_guard.SessionIssuer.resolve", side_effect=RuntimeError("db down")):
            response = test_client.get("/dashboard", headers=bearer(token), follow_redirects=False)

        assert response.status_code == 302

    def test_failing_session_factory_redirects(self, auth_client, monkeypatch):
        test_client, db_session_maker = auth_client
        token = create_verified_user(test_client, db_session_maker, "a@x.com")["session_token"]

        def exhausted_pool():
            raise RuntimeError("pool exhausted")

        monkeypatch.setattr(app.state, "session_factory", exhausted_pool)
        response = test_client.get("/dashboard", headers=bearer(token), follow_redirects=False)

        assert response.status_code == 302
        assert response.headers["location"].startswith("/sign-in?redirect=")

    def test_session_check_runs_off_the_event_loop(self, auth_client):
        test_client, db_session_maker = auth_client
        token = create_verified_user(test_client, db_session_maker, "a@x.com")["session_token"]
        loop_running = []
        original_check = RouteGuard.check

        def recording_check(guard, db, raw_token):
            try:
                asyncio.get_running_loop()
                loop_running.append(True)
            except RuntimeError:
                loop_running.append(False)
            return original_check(guard, db, raw_token)

        with patch.object(RouteGuard, "check", recording_check):
            response = test_client.get("/dashboard", headers=bearer(token), follow_redirects=False)

        assert response.status_code == 200
        assert loop_running == [False]

    def test_unprotected_paths_pass_through(self, auth_client):
        test_client, _ = auth_client

        assert test_client.get("/health", follow_redirects=False).status_code == 200
        assert test_client.get("/api/auth/methods", follow_redirects=False).status_code == 200
        assert test_client.get("/api/auth/me", follow_redirects=False).status_code == 401

    def test_pending_second_factor_is_not_signed_in(self, auth_client):
        test_client, db_session_maker = auth_client
        create_verified_user(test_client, db_session_maker, "a@x.com")

        db = db_session_maker()
        db.execute(select(User)).scalar_one().two_factor_enabled = True
        db.commit()
        db.close()

        temp_token = sign_in(test_client, "a@x.com").json()["temp_token"]
        response = test_client.get("/dashboard", headers=bearer(temp_token), follow_redirects=False)

        assert response.status_code == 302
