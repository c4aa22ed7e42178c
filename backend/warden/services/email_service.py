"""Transactional email: an injected dispatcher plus the auth message bodies."""

import html
import logging
from typing import Protocol
from urllib.parse import quote

from fastapi import BackgroundTasks
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail

from warden.config import settings

logger = logging.getLogger(__name__)


class EmailDispatcher(Protocol):
    """Anything that can deliver one HTML email. Returns True on success."""

    def send(self, to_address: str, subject: str, html_body: str) -> bool: ...


class SendGridDispatcher:
    """Deliver email via SendGrid."""

    def __init__(
        self,
        api_key: str,
        from_address: str,
        from_name: str,
        timeout: float = 10.0,
    ):
        self.api_key = api_key
        self.from_address = from_address
        self.from_name = from_name
        self.timeout = timeout

    @classmethod
    def from_settings(cls) -> "SendGridDispatcher":
        return cls(
            api_key=settings.sendgrid_api_key,
            from_address=settings.email_from_address,
            from_name=settings.email_from_name,
            timeout=settings.email_timeout_seconds,
        )

    def send(self, to_address: str, subject: str, html_body: str) -> bool:
        """Send email via SendGrid. Returns True if successful."""
        if not self.api_key:
            logger.warning("SendGrid API key not configured, skipping email send")
            return False

        message = Mail(
            from_email=(self.from_address, self.from_name),
            to_emails=to_address,
            subject=subject,
            html_content=html_body,
        )

        try:
            sg = SendGridAPIClient(self.api_key)
            sg.client.timeout = self.timeout
            response = sg.send(message)
            logger.info(f"Email sent to {to_address}, status: {response.status_code}")
            return response.status_code in (200, 201, 202)
        except Exception:
            logger.exception(f"Failed to send email to {to_address}")
            return False


class BackgroundDispatcher:
    """Queue each send on FastAPI BackgroundTasks so it runs after the response.

    Used where the answer must not depend on whether an account exists: the
    response goes out at the same speed whether or not an email is queued.
    """

    def __init__(self, dispatcher: EmailDispatcher, background_tasks: BackgroundTasks):
        self.dispatcher = dispatcher
        self.background_tasks = background_tasks

    def send(self, to_address: str, subject: str, html_body: str) -> bool:
        self.background_tasks.add_task(self._deliver, to_address, subject, html_body)
        return True

    def _deliver(self, to_address: str, subject: str, html_body: str) -> None:
        try:
            if not self.dispatcher.send(to_address, subject, html_body):
                logger.warning(f"Background email to {to_address} was not delivered")
        except Exception:
            logger.exception(f"Background email dispatcher failed for {to_address}")


class EmailService:
    """Renders auth emails and hands them to the dispatcher.

    A failed send is logged and reported as False; callers never fail the
    request because of it, the user can ask for another code or link.
    """

    def __init__(self, dispatcher: EmailDispatcher, frontend_url: str, app_name: str):
        self.dispatcher = dispatcher
        self.frontend_url = frontend_url.rstrip("/")
        self.app_name = app_name

    def in_background(self, background_tasks: BackgroundTasks) -> "EmailService":
        """Same messages, delivered after the response is sent."""
        return EmailService(
            BackgroundDispatcher(self.dispatcher, background_tasks), self.frontend_url, self.app_name
        )

    def _send(self, to_address: str, subject: str, html_body: str) -> bool:
        try:
            return self.dispatcher.send(to_address, subject, html_body)
        except Exception:
            logger.exception(f"Email dispatcher failed for {to_address}")
            return False

    def _link(self, path: str, token: str) -> str:
        return f"{self.frontend_url}{path}?token={quote(token, safe='')}"

    @staticmethod
    def _greeting(name: str | None) -> str:
        return f"Hi {html.escape(name)}," if name else "Hi,"

    def send_verification_email(self, email: str, token: str, name: str | None = None) -> bool:
        """Send email verification link."""
        verify_url = self._link("/verify-email", token)
        body = f"""
        <p>{self._greeting(name)}</p>
        <h2>Verify Your Email</h2>
        <p>Click the link below to verify your email address:</p>
        <p><a href="{verify_url}">{verify_url}</a></p>
        <p>This link expires in {settings.email_verification_expire_minutes} minutes.</p>
        <p>If you didn't create an account, you can ignore this email.</p>
        """
        return self._send(email, "Verify your email address", body)

    def send_password_reset_email(self, email: str, token: str, name: str | None = None) -> bool:
        """Send password reset link."""
        reset_url = self._link("/reset-password", token)
        body = f"""
        <p>{self._greeting(name)}</p>
        <h2>Reset Your Password</h2>
        <p>Click the link below to reset your password:</p>
        <p><a href="{reset_url}">{reset_url}</a></p>
        <p>This link expires in {settings.password_reset_expire_minutes} minutes.</p>
        <p>If you didn't request this, you can ignore this email.</p>
        """
        return self._send(email, f"Reset Password - {self.app_name}", body)

    def send_magic_link_email(self, email: str, token: str) -> bool:
        """Send a single-use sign-in link."""
        link = self._link("/magic-link", token)
        body = f"""
        <h2>Your Sign-In Link</h2>
        <p>Click the link below to sign in to {html.escape(self.app_name)}:</p>
        <p><a href="{link}">{link}</a></p>
        <p>This link expires in {settings.magic_link_expire_minutes} minutes and can be used once.</p>
        <p>If you didn't ask to sign in, you can ignore this email.</p>
        """
        return self._send(email, "Magic Login link", body)

    def send_email_otp(self, email: str, code: str, name: str | None = None) -> bool:
        """Send a sign-in one-time code."""
        body = f"""
        <p>{self._greeting(name)}</p>
        <h2>Your Login Code</h2>
        <p>Your verification code is:</p>
        <h1 style="font-size: 32px; letter-spacing: 8px; font-family: monospace;">{code}</h1>
        <p>This code expires in {settings.email_otp_expire_minutes} minutes.</p>
        <p>If you didn't try to log in, please secure your account immediately.</p>
        """
        return self._send(email, "Your One-Time Password Code", body)

    def send_password_changed_notification(self, email: str) -> bool:
        """Notify user their password was changed."""
        body = """
        <h2>Password Changed</h2>
        <p>Your password was successfully changed.</p>
        <p>If you didn't make this change, please contact support immediately.</p>
        """
        return self._send(email, f"Your Password Was Changed - {self.app_name}", body)

    def send_two_factor_disabled_notification(self, email: str) -> bool:
        """Notify user their two-factor authentication was disabled."""
        body = """
        <h2>Two-Factor Authentication Disabled</h2>
        <p>Two-factor authentication has been disabled on your account.</p>
        <p>If you didn't make this change, please contact support immediately.</p>
        """
        return self._send(email, f"Two-Factor Authentication Disabled - {self.app_name}", body)
