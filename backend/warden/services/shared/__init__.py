"""Shared utilities for services."""

from .datetime_utils import as_utc, is_past, utcnow
from .http_client import HTTPClient, HTTPClientError

__all__ = [
    "HTTPClient",
    "HTTPClientError",
    "as_utc",
    "is_past",
    "utcnow",
]
