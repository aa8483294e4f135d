"""
Fixed time-window batching of trades.

Trades are grouped by bucket index floor(now / window_sec). The first trade of
a bucket schedules its flush exactly window_sec later; at flush time the bucket
is removed and, if non-empty, handed to on_flush as one batch. Several buckets
may be outstanding at once; each flushes independently. window_sec == 0
disables batching (callers notify per trade).
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Sequence

from backend_buybot.buybot_logging import get_logger
from backend_buybot.solana_listener.models import TradeRecord

logger = get_logger(__name__)

DEFAULT_PREVIEW_LIMIT = 3


@dataclass(frozen=True)
class BatchSummary:
    """Aggregate of one flushed bucket, ready for formatting."""

    count: int
    total_base: float
    total_tokens: float
    large_trade_count: int
    preview: tuple[TradeRecord, ...]
    remaining: int
    """Trades not shown in preview ("+K more")."""
    window_sec: int = 0


def summarize_batch(
    trades: Sequence[TradeRecord],
    *,
    window_sec: int = 0,
    preview_limit: int = DEFAULT_PREVIEW_LIMIT,
) -> BatchSummary:
    preview = tuple(trades[:preview_limit])
    return BatchSummary(
        count=len(trades),
        total_base=sum(t.base_amount for t in trades),
        total_tokens=sum(t.token_amount for t in trades),
        large_trade_count=sum(1 for t in trades if t.is_large_trade),
        preview=preview,
        remaining=max(0, len(trades) - len(preview)),
        window_sec=window_sec,
    )


class BatchWindow:
    """
    Map of bucket index -> trades, each bucket with its own scheduled flush handle.

    Handles are kept beside the buckets so tests (and shutdown) can flush or
    cancel deterministically instead of waiting on wall-clock time.
    """

    def __init__(
        self,
        window_sec: int,
        on_flush: Callable[[list[TradeRecord]], Awaitable[None]],
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if window_sec < 0:
            raise ValueError("window_sec must be >= 0")
        self._window_sec = window_sec
        self._on_flush = on_flush
        self._clock = clock
        self._buckets: dict[int, list[TradeRecord]] = {}
        self._handles: dict[int, asyncio.TimerHandle] = {}
        self._flush_tasks: set[asyncio.Task[int]] = set()

    @property
    def enabled(self) -> bool:
        return self._window_sec > 0

    @property
    def window_sec(self) -> int:
        return self._window_sec

    @property
    def bucket_count(self) -> int:
        return len(self._buckets)

    def bucket_key(self, now: float | None = None) -> int:
        ts = self._clock() if now is None else now
        return int(ts // self._window_sec)

    def pending(self, key: int) -> list[TradeRecord]:
        """Copy of the trades waiting in bucket key."""
        return list(self._buckets.get(key, ()))

    def add(self, trade: TradeRecord) -> int:
        """Append trade to the current bucket, creating and scheduling it if new. Returns bucket key."""
        if not self.enabled:
            raise RuntimeError("batching is disabled (window_sec == 0)")
        key = self.bucket_key()
        if key not in self._buckets:
            self._buckets[key] = []
            loop = asyncio.get_running_loop()
            self._handles[key] = loop.call_later(self._window_sec, self._on_timer, key)
            logger.debug("batch_bucket_created", bucket=key, window_sec=self._window_sec)
        self._buckets[key].append(trade)
        return key

    def _on_timer(self, key: int) -> None:
        self._handles.pop(key, None)
        task = asyncio.get_running_loop().create_task(self.flush(key))
        self._flush_tasks.add(task)
        task.add_done_callback(self._flush_tasks.discard)

    async def flush(self, key: int) -> int:
        """
        Remove bucket key and emit it. Missing or empty buckets are a no-op.
        Returns the number of trades flushed.
        """
        handle = self._handles.pop(key, None)
        if handle is not None:
            handle.cancel()
        trades = self._buckets.pop(key, None)
        if not trades:
            return 0
        logger.info("batch_flush", bucket=key, trade_count=len(trades))
        try:
            await self._on_flush(trades)
        except Exception as e:
            logger.exception("batch_flush_failed", bucket=key, trade_count=len(trades), error=str(e))
        return len(trades)

    async def flush_all(self) -> int:
        """Flush every outstanding bucket, oldest first."""
        total = 0
        for key in sorted(self._buckets):
            total += await self.flush(key)
        return total

    def close(self) -> None:
        """Cancel scheduled flushes; outstanding buckets stay until flushed."""
        for handle in self._handles.values():
            handle.cancel()
        self._handles.clear()
