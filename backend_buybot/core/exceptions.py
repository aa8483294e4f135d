"""
Application-level exceptions.

- ConfigError: missing or invalid setting; fatal at startup.
- InvalidPayloadError: webhook body is not a list of transactions.
- UpstreamError: Helius / Telegram / price API failure (retryable or not).
- RateLimitedError: upstream returned a rate-limit response (HTTP 429).
- QueueClosedError: request queue shut down before the call ran.
"""

from __future__ import annotations


class BuyBotError(Exception):
    """Base class for all Backend BuyBot errors."""


class ConfigError(BuyBotError):
    """Required configuration is missing or invalid."""


class InvalidPayloadError(BuyBotError):
    """Inbound payload does not have the expected shape."""


class UpstreamError(BuyBotError):
    """
    Failure talking to an external API.

    retryable is True for transport errors and 5xx responses; the generic
    retry executor only retries those.
    """

    def __init__(self, message: str, *, status_code: int | None = None, retryable: bool = True) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable


class RateLimitedError(UpstreamError):
    """Upstream quota exceeded. retry_after is the server hint in seconds, if any."""

    def __init__(self, message: str = "rate limited", *, retry_after: float | None = None) -> None:
        super().__init__(message, status_code=429, retryable=False)
        self.retry_after = retry_after


class QueueClosedError(BuyBotError):
    """Request queue was closed while the call was still pending."""
