"""
HTTP middleware: request logging, webhook auth, inbound rate limiting.

Responsibilities:
- Debug-log every request with method, path and client address.
- Optional shared-secret check on the Authorization header of POST /webhook.
- Fixed-window rate limit per client address on POST /webhook.
"""

from __future__ import annotations

import hmac
import time
from typing import Awaitable, Callable

from fastapi import HTTPException, Request, Response

from backend_buybot.buybot_logging import get_logger

logger = get_logger(__name__)

WEBHOOK_MAX_REQUESTS = 100
WEBHOOK_WINDOW_SEC = 60.0


class InboundRateLimiter:
    """Fixed-window request counter per client key."""

    def __init__(
        self,
        max_requests: int = WEBHOOK_MAX_REQUESTS,
        window_sec: float = WEBHOOK_WINDOW_SEC,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_requests = max_requests
        self._window_sec = window_sec
        self._clock = clock
        self._windows: dict[str, tuple[float, int]] = {}

    def allow(self, key: str) -> bool:
        now = self._clock()
        started, count = self._windows.get(key, (now, 0))
        if now - started >= self._window_sec:
            started, count = now, 0
        if count >= self._max_requests:
            self._windows[key] = (started, count)
            return False
        self._windows[key] = (started, count + 1)
        self._prune(now)
        return True

    def _prune(self, now: float) -> None:
        expired = [k for k, (started, _) in self._windows.items() if now - started >= self._window_sec]
        for k in expired:
            del self._windows[k]


def client_key(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def webhook_rate_limit(request: Request) -> None:
    """Dependency: 429 once a client exceeds the webhook request budget."""
    limiter: InboundRateLimiter = request.app.state.webhook_limiter
    key = client_key(request)
    if not limiter.allow(key):
        logger.warning("webhook_rate_limit_exceeded", client=key)
        raise HTTPException(status_code=429, detail="Too many requests")


def verify_webhook_auth(request: Request) -> None:
    """Dependency: when WEBHOOK_AUTH_TOKEN is set, the Authorization header must match it."""
    settings = request.app.state.settings
    expected = settings.webhook_auth_token if settings is not None else None
    if not expected:
        return
    supplied = request.headers.get("authorization", "")
    if not hmac.compare_digest(supplied.encode(), expected.encode()):
        logger.warning("webhook_auth_rejected", client=client_key(request))
        raise HTTPException(status_code=401, detail="Invalid webhook authorization")


async def log_requests(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
    start = time.perf_counter()
    response = await call_next(request)
    logger.debug(
        "http_request",
        method=request.method,
        path=request.url.path,
        client=client_key(request),
        status_code=response.status_code,
        duration_ms=round((time.perf_counter() - start) * 1000, 2),
    )
    return response
