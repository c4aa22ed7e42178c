"""Time-bounded HTTP client for collaborators called while a user waits.

Every request has a hard timeout and at most ``max_retries`` attempts; only
connect errors and timeouts are retried. Anything else surfaces immediately
as HTTPClientError so the caller can turn it into a user-facing failure.
"""

import logging
from typing import Any

import httpx
from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)

_RETRYABLE = (httpx.TimeoutException, httpx.ConnectError)


class HTTPClientError(Exception):
    """An outbound call failed after its retries were spent."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_body: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class HTTPClient:
    """Base class for outbound collaborators.

    Example usage:
        class TurnstileBotGate(HTTPClient):
            def __init__(self, secret_key: str):
                super().__init__(timeout=5.0, max_retries=2)

            def verify(self, token: str) -> dict:
                return self.post_form_json(VERIFY_URL, data={"response": token})
    """

    def __init__(self, timeout: float = 10.0, max_retries: int = 2):
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self._client: httpx.Client | None = None

    @property
    def client(self) -> httpx.Client:
        """Created on first use so constructing a collaborator never opens sockets."""
        if self._client is None:
            self._client = httpx.Client(timeout=self.timeout)
        return self._client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def _retrying(self) -> Retrying:
        return Retrying(
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential(multiplier=0.2, max=2),
            retry=retry_if_exception_type(_RETRYABLE),
            reraise=True,
        )

    def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Send one request through the retry policy.

        Raises:
            HTTPClientError: error status, or timeout/connection failure on the last attempt
        """
        try:
            for attempt in self._retrying():
                with attempt:
                    response = self.client.request(method, url, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.warning(f"{method} {url} returned HTTP {status}")
            raise HTTPClientError(
                f"HTTP {status}: {e.response.reason_phrase}",
                status_code=status,
                response_body=e.response.text,
            ) from e
        except httpx.TimeoutException as e:
            logger.warning(f"{method} {url} timed out after {self.max_retries} attempt(s)")
            raise HTTPClientError(f"Request timed out: {url}") from e
        except httpx.HTTPError as e:
            logger.warning(f"{method} {url} failed after {self.max_retries} attempt(s): {e}")
            raise HTTPClientError(f"Connection failed: {url}") from e
        return response

    def post_form_json(self, url: str, data: dict | None = None) -> Any:
        """POST form fields, return the parsed JSON body."""
        return self._send("POST", url, data=data).json()
