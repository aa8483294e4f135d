"""
Client-side admission control for calls to the rate-limited Helius API.

Calls are queued FIFO and executed one at a time by a single drain task.
At most max_per_window calls start per window; the counter is reset every
window_sec by a scheduled handle, which also restarts draining. A short fixed
delay separates consecutive calls to smooth bursts (e.g. a webhook delivering
many transactions at once).
"""

from __future__ import annotations

import asyncio
from collections import deque
from typing import Any, Awaitable, Callable, TypeVar

from backend_buybot.buybot_logging import get_logger
from backend_buybot.core.exceptions import QueueClosedError

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_MAX_PER_WINDOW = 50
DEFAULT_WINDOW_SEC = 60.0
DEFAULT_INTER_TASK_DELAY_SEC = 0.2

_Entry = tuple[Callable[[], Awaitable[Any]], "asyncio.Future[Any]"]


class RequestQueue:
    """
    FIFO queue of deferred external calls under a per-window call budget.

    Invariants: one call in flight at a time; calls complete in enqueue
    order; each caller's future settles exactly once.
    """

    def __init__(
        self,
        max_per_window: int = DEFAULT_MAX_PER_WINDOW,
        *,
        window_sec: float = DEFAULT_WINDOW_SEC,
        inter_task_delay_sec: float = DEFAULT_INTER_TASK_DELAY_SEC,
    ) -> None:
        if max_per_window <= 0:
            raise ValueError("max_per_window must be positive")
        if window_sec <= 0:
            raise ValueError("window_sec must be positive")
        self._max_per_window = max_per_window
        self._window_sec = window_sec
        self._inter_task_delay = max(0.0, inter_task_delay_sec)
        self._pending: deque[_Entry] = deque()
        self._calls_this_window = 0
        self._drain_task: asyncio.Task[None] | None = None
        self._reset_handle: asyncio.TimerHandle | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._closed = False
        self._ceiling_logged = False

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def calls_this_window(self) -> int:
        return self._calls_this_window

    @property
    def max_per_window(self) -> int:
        return self._max_per_window

    @property
    def is_draining(self) -> bool:
        return self._drain_task is not None and not self._drain_task.done()

    async def enqueue(self, factory: Callable[[], Awaitable[T]]) -> T:
        """Queue factory and wait for its result (or its exception)."""
        if self._closed:
            raise QueueClosedError("request queue is closed")
        loop = asyncio.get_running_loop()
        self._loop = loop
        fut: asyncio.Future[Any] = loop.create_future()
        self._pending.append((factory, fut))
        self._ensure_reset_timer()
        self._kick()
        return await fut

    def reset_window(self) -> None:
        """Start a new budget window and resume draining."""
        self._calls_this_window = 0
        self._ceiling_logged = False
        if self._pending:
            logger.debug("request_queue_window_reset", pending=len(self._pending))
        self._kick()

    async def close(self) -> None:
        """Cancel the window timer, reject queued calls, let an in-flight call finish."""
        self._closed = True
        if self._reset_handle is not None:
            self._reset_handle.cancel()
            self._reset_handle = None
        rejected = 0
        while self._pending:
            _, fut = self._pending.popleft()
            if not fut.done():
                fut.set_exception(QueueClosedError("request queue closed before call ran"))
                rejected += 1
        task = self._drain_task
        if task is not None and not task.done():
            await asyncio.gather(task, return_exceptions=True)
        logger.info("request_queue_closed", rejected=rejected)

    def _ensure_reset_timer(self) -> None:
        if self._reset_handle is None and not self._closed and self._loop is not None:
            self._reset_handle = self._loop.call_later(self._window_sec, self._on_window_elapsed)

    def _on_window_elapsed(self) -> None:
        self._reset_handle = None
        if self._closed:
            return
        self.reset_window()
        self._ensure_reset_timer()

    def _kick(self) -> None:
        """Start the drain task if it is idle and there is budget and work."""
        if self._closed or self.is_draining or not self._pending:
            return
        if self._calls_this_window >= self._max_per_window:
            self._log_ceiling()
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._drain_task = loop.create_task(self._drain())

    def _log_ceiling(self) -> None:
        if self._ceiling_logged:
            return
        self._ceiling_logged = True
        logger.warning(
            "request_queue_rate_limit_reached",
            calls_this_window=self._calls_this_window,
            max_per_window=self._max_per_window,
            pending=len(self._pending),
        )

    async def _drain(self) -> None:
        try:
            while self._pending and not self._closed:
                if self._calls_this_window >= self._max_per_window:
                    self._log_ceiling()
                    return
                factory, fut = self._pending.popleft()
                if fut.done():
                    # Caller cancelled while waiting; costs no budget
                    continue
                self._calls_this_window += 1
                try:
                    result = await factory()
                except asyncio.CancelledError:
                    if not fut.done():
                        fut.cancel()
                    raise
                except Exception as e:
                    logger.warning(
                        "request_queue_task_failed",
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    if not fut.done():
                        fut.set_exception(e)
                else:
                    if not fut.done():
                        fut.set_result(result)
                if self._inter_task_delay > 0 and self._pending:
                    await asyncio.sleep(self._inter_task_delay)
        finally:
            self._drain_task = None
