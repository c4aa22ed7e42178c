"""Tests for email rendering and delivery."""

import asyncio
from unittest.mock import MagicMock, patch

from fastapi import BackgroundTasks

from tests.conftest import FakeDispatcher
from warden.services.email_service import EmailService, SendGridDispatcher


class ExplodingDispatcher:
    def send(self, to_address, subject, html_body):
        raise ConnectionError("smtp down")


class TestEmailService:
    def test_links_point_at_frontend_with_encoded_token(self):
        outbox = FakeDispatcher()
        service = EmailService(outbox, "http://localhost:3000/", "Warden")

        service.send_password_reset_email("a@x.com", "abc+/=")

        body = outbox.last_to("a@x.com")["body"]
        assert "http://localhost:3000/reset-password?token=abc%2B%2F%3D" in body
        assert outbox.last_token("a@x.com") == "abc+/="

    def test_name_is_escaped(self):
        outbox = FakeDispatcher()
        service = EmailService(outbox, "http://localhost:3000", "Warden")

        service.send_verification_email("a@x.com", "tok", name="<script>")

        body = outbox.last_to("a@x.com")["body"]
        assert "<script>" not in body
        assert "&lt;script&gt;" in body

    def test_dispatcher_exception_is_reported_as_false(self):
        service = EmailService(ExplodingDispatcher(), "http://localhost:3000", "Warden")

        assert service.send_email_otp("a@x.com", "123456") is False


class TestSendGridDispatcher:
    def test_send_without_api_key_skips(self):
        dispatcher = SendGridDispatcher(api_key="", from_address="noreply@x.com", from_name="Warden")

        assert dispatcher.send("a@x.com", "Subject", "<p>body</p>") is False

    @patch("warden.services.email_service.SendGridAPIClient")
    def test_send_success(self, mock_client_cls):
        mock_client = MagicMock()
        mock_client.send.return_value = MagicMock(status_code=202)
        mock_client_cls.return_value = mock_client
        dispatcher = SendGridDispatcher(api_key="SG.key", from_address="noreply@x.com", from_name="Warden")

        assert dispatcher.send("a@x.com", "Subject", "<p>body</p>") is True
        mock_client_cls.assert_called_once_with("SG.key")
        mock_client.send.assert_called_once()

    @patch("warden.services.email_service.SendGridAPIClient")
    def test_send_failure_returns_false(self, mock_client_cls):
        mock_client_cls.return_value.send.side_effect = RuntimeError("401 Unauthorized")
        dispatcher = SendGridDispatcher(api_key="SG.key", from_address="noreply@x.com", from_name="Warden")

        assert dispatcher.send("a@x.com", "Subject", "<p>body</p>") is False


class TestBackgroundDelivery:
    def test_send_is_queued_until_tasks_run(self):
        outbox = FakeDispatcher()
        tasks = BackgroundTasks()
        service = EmailService(outbox, "http://localhost:3000", "Warden").in_background(tasks)

        assert service.send_password_reset_email("a@x.com", "tok") is True
        assert outbox.sent == []

        asyncio.run(tasks())

        assert outbox.last_token("a@x.com") == "tok"

    def test_failing_dispatcher_is_logged_not_raised(self, caplog):
        tasks = BackgroundTasks()
        service = EmailService(ExplodingDispatcher(), "http://localhost:3000", "Warden").in_background(tasks)
        service.send_verification_email("a@x.com", "tok")

        asyncio.run(tasks())

        assert "Background email dispatcher failed for a@x.com" in caplog.text
