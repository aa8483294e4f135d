"""
Generic async retry executor with exponential backoff.

A RetryPolicy value object says how many attempts to make, how long to wait,
and which errors are worth retrying. retry_async() runs a coroutine factory
under that policy and re-raises the last error once attempts are exhausted.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, TypeVar

from backend_buybot.buybot_logging import get_logger
from backend_buybot.core.exceptions import UpstreamError

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY_SEC = 1.0
DEFAULT_MAX_DELAY_SEC = 60.0


def default_is_retryable(error: BaseException) -> bool:
    """Retry UpstreamError only when flagged retryable; retry any other Exception."""
    if isinstance(error, UpstreamError):
        return error.retryable
    return isinstance(error, Exception)


@dataclass(frozen=True)
class RetryPolicy:
    """How to retry: attempts, backoff base/cap, and a retryable predicate."""

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    base_delay_sec: float = DEFAULT_BASE_DELAY_SEC
    max_delay_sec: float = DEFAULT_MAX_DELAY_SEC
    is_retryable: Callable[[BaseException], bool] = field(default=default_is_retryable)
    # Wait the error asks for (e.g. a server-sent retry-after); never shortens the backoff
    requested_delay: Callable[[BaseException], float | None] | None = None

    def delay_for(self, attempt: int) -> float:
        """Backoff before attempt+1 (attempt is 0-based): base * 2**attempt, capped."""
        return min(self.base_delay_sec * (2 ** attempt), self.max_delay_sec)

    def delay_after(self, error: BaseException, attempt: int) -> float:
        """Backoff for attempt, raised to the delay error requests, if any."""
        delay = self.delay_for(attempt)
        requested = self.requested_delay(error) if self.requested_delay is not None else None
        if requested is not None and requested > delay:
            return requested
        return delay


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    *,
    context: str = "operation",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Await fn() until it succeeds, the error is not retryable, or attempts run out.

    The last error is re-raised unchanged so callers can still distinguish
    RateLimitedError from other failures.
    """
    cfg = policy or RetryPolicy()
    attempts = max(1, cfg.max_attempts)
    for attempt in range(attempts):
        try:
            return await fn()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            is_last = attempt + 1 >= attempts
            if is_last or not cfg.is_retryable(e):
                logger.error(
                    "retry_give_up",
                    context=context,
                    attempt=attempt + 1,
                    max_attempts=attempts,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                raise
            delay = cfg.delay_after(e, attempt)
            logger.warning(
                "retry_scheduled",
                context=context,
                attempt=attempt + 1,
                max_attempts=attempts,
                delay_sec=delay,
                error=str(e),
            )
            await sleep(delay)
    raise RuntimeError("unreachable")  # pragma: no cover
