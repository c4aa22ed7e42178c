"""Bot gate: verifies captcha tokens before sensitive endpoints run."""

import logging
from typing import Protocol

from warden.config import settings
from warden.services.errors import CaptchaInvalid, CaptchaRequired, ServiceUnavailable
from warden.services.shared.http_client import HTTPClient, HTTPClientError

logger = logging.getLogger(__name__)

# Turnstile error codes that mean our side is misconfigured, not the user
_SERVER_SIDE_ERRORS = {"missing-input-secret", "invalid-input-secret"}


class BotGate(Protocol):
    """Raises CaptchaRequired/CaptchaInvalid unless the token proves a human."""

    def verify(self, token: str | None, remote_ip: str | None = None) -> None: ...


class TurnstileBotGate(HTTPClient):
    """Cloudflare Turnstile siteverify client.

    Tokens are single-use on Cloudflare's side, so a failed check always
    means the widget must produce a fresh token.
    """

    def __init__(
        self,
        secret_key: str,
        verify_url: str,
        timeout: float = 5.0,
        max_retries: int = 2,
    ):
        super().__init__(timeout=timeout, max_retries=max_retries)
        self.secret_key = secret_key
        self.verify_url = verify_url

    @classmethod
    def from_settings(cls) -> "TurnstileBotGate":
        return cls(
            secret_key=settings.turnstile_secret_key,
            verify_url=settings.turnstile_verify_url,
            timeout=settings.captcha_timeout_seconds,
        )

    def verify(self, token: str | None, remote_ip: str | None = None) -> None:
        if not token:
            raise CaptchaRequired()
        if not self.secret_key:
            raise ServiceUnavailable("Turnstile secret key not configured")

        payload = {"secret": self.secret_key, "response": token}
        if remote_ip:
            payload["remoteip"] = remote_ip

        try:
            result = self.post_form_json(self.verify_url, data=payload)
        except HTTPClientError as e:
            raise ServiceUnavailable(f"Turnstile verification unavailable: {e}") from e

        if result.get("success"):
            return

        error_codes = set(result.get("error-codes") or [])
        if error_codes & _SERVER_SIDE_ERRORS:
            raise ServiceUnavailable(f"Turnstile rejected server credentials: {sorted(error_codes)}")

        logger.info(f"Captcha rejected: {sorted(error_codes)}")
        raise CaptchaInvalid()


class DisabledBotGate:
    """Used when captcha_enabled is off (local development)."""

    def verify(self, token: str | None, remote_ip: str | None = None) -> None:
        return None
