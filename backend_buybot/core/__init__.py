"""
Core utilities shared by every layer: exception taxonomy and retry policy.
"""

from backend_buybot.core.exceptions import (
    BuyBotError,
    ConfigError,
    InvalidPayloadError,
    QueueClosedError,
    RateLimitedError,
    UpstreamError,
)
from backend_buybot.core.retry import RetryPolicy, retry_async

__all__ = [
    "BuyBotError",
    "ConfigError",
    "InvalidPayloadError",
    "QueueClosedError",
    "RateLimitedError",
    "RetryPolicy",
    "UpstreamError",
    "retry_async",
]
