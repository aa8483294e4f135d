"""
Bot service: ties extraction, dedup, batching, rate limiting and alerts together.

Responsibilities:
- process_transaction: dedup -> extract -> record -> (batch | enrich + notify).
- process_webhook_data: push mode, chunked concurrent processing of a delivery.
- Polling mode: STOPPED / RUNNING / PAUSED state machine driven by a stop event.
- initialize / setup_webhook / shutdown: pick webhook or polling mode at startup.

All mutable state (dedup cache, stats, batches, queue) lives on one BotService
instance; nothing is module-global.
"""

from __future__ import annotations

import asyncio
import time
from enum import Enum
from typing import Any, Protocol

from backend_buybot.buybot_logging import bind_signature, get_logger, short_id
from backend_buybot.config.settings import Settings
from backend_buybot.core.exceptions import ConfigError, InvalidPayloadError, RateLimitedError
from backend_buybot.ingestion.batching import BatchWindow, summarize_batch
from backend_buybot.ingestion.dedup import DedupCache
from backend_buybot.ingestion.request_queue import RequestQueue
from backend_buybot.solana_listener.models import AggregateStats, TradeRecord
from backend_buybot.solana_listener.parser import extract_trade

logger = get_logger(__name__)

PUSH_CHUNK_SIZE = 5
PUSH_CHUNK_PAUSE_SEC = 0.1
DEFAULT_INITIAL_POLL_DELAY_SEC = 2.0


class PollState(str, Enum):
    STOPPED = "stopped"
    RUNNING = "running"
    PAUSED = "paused"


class TransactionSource(Protocol):
    async def fetch_recent_transactions(self, limit: int = 5) -> list[dict[str, Any]]: ...

    async def create_webhook(self, webhook_url: str, filters: Any = None, *, auth_header: str | None = None) -> dict[str, Any]: ...


class HolderEnrichment(Protocol):
    async def fetch_holder_count(self, mint: str | None = None, *, gate: Any = None) -> int: ...


class Notifier(Protocol):
    async def send_trade_notification(self, trade: TradeRecord, stats: AggregateStats) -> bool: ...

    async def send_batch_summary(self, summary: Any) -> bool: ...

    async def send_startup_message(self, mode: str) -> bool: ...


class BotService:
    """One instance per process; owns every piece of ingestion state."""

    def __init__(
        self,
        settings: Settings,
        *,
        source: TransactionSource,
        notifier: Notifier,
        enrichment: HolderEnrichment,
        request_queue: RequestQueue | None = None,
        batch_window: BatchWindow | None = None,
        initial_poll_delay_sec: float = DEFAULT_INITIAL_POLL_DELAY_SEC,
    ) -> None:
        self._settings = settings
        self._source = source
        self._notifier = notifier
        self._enrichment = enrichment
        self._queue = request_queue or RequestQueue(settings.max_requests_per_minute)
        self._batches = batch_window or BatchWindow(settings.batch_window_sec, self._flush_batch)
        self._dedup = DedupCache(settings.max_cache_size)
        self._stats = AggregateStats()
        self._initial_poll_delay = initial_poll_delay_sec
        self._poll_state = PollState.STOPPED
        self._poll_task: asyncio.Task[None] | None = None
        self._stop_event: asyncio.Event | None = None
        self._pause_sec = 0.0

    @property
    def dedup(self) -> DedupCache:
        return self._dedup

    @property
    def stats(self) -> AggregateStats:
        return self._stats

    @property
    def request_queue(self) -> RequestQueue:
        return self._queue

    @property
    def batch_window(self) -> BatchWindow:
        return self._batches

    @property
    def poll_state(self) -> PollState:
        return self._poll_state

    @property
    def is_polling(self) -> bool:
        return self._poll_state is not PollState.STOPPED

    # ------------------------------------------------------------------
    # Transaction pipeline
    # ------------------------------------------------------------------

    async def process_transaction(self, raw: Any) -> bool:
        """
        Run one raw transaction through the pipeline.

        Returns True when a trade was accepted (notified or batched), False for
        duplicates and transactions without a qualifying swap.
        """
        signature = raw.get("signature") if isinstance(raw, dict) else None
        if isinstance(signature, str) and self._dedup.has(signature):
            logger.debug("transaction_duplicate", signature=short_id(signature))
            return False

        s = self._settings
        trade = extract_trade(
            raw,
            s.token_mint,
            s.base_assets,
            s.token_decimals,
            large_trade_threshold=s.whale_threshold,
        )
        if trade is None:
            return False
        # No await between the has() check above and this insert
        self._dedup.insert(trade.signature, time.time())

        if self._batches.enabled:
            key = self._batches.add(trade)
            logger.debug("trade_batched", signature=short_id(trade.signature), bucket=key)
            return True

        holders = await self._fetch_holders()
        self._stats.record(trade, holders)
        await self._notifier.send_trade_notification(trade, self._stats)
        logger.info(
            "transaction_processed",
            signature=short_id(trade.signature),
            direction=trade.direction.value,
            base_amount=trade.base_amount,
            base_symbol=trade.base_symbol,
        )
        return True

    async def _fetch_holders(self) -> int | None:
        """Holder count with each upstream request charged to the queue; None on failure."""
        try:
            return await self._enrichment.fetch_holder_count(
                self._settings.token_mint,
                gate=self._queue.enqueue,
            )
        except Exception as e:
            logger.warning(
                "holder_enrichment_failed",
                error=str(e),
                error_type=type(e).__name__,
                last_known=self._stats.total_holders,
            )
            return None

    async def _flush_batch(self, trades: list[TradeRecord]) -> None:
        for trade in trades:
            self._stats.record(trade)
        summary = summarize_batch(trades, window_sec=self._batches.window_sec)
        await self._notifier.send_batch_summary(summary)

    async def _process_logged(self, raw: Any) -> bool:
        signature = raw.get("signature") if isinstance(raw, dict) else None
        try:
            return await self.process_transaction(raw)
        except Exception as e:
            bind_signature(signature or "").exception("transaction_processing_failed", error=str(e))
            return False

    async def process_webhook_data(self, transactions: Any) -> int:
        """
        Process one webhook delivery; returns how many transactions were accepted.

        Items run PUSH_CHUNK_SIZE at a time concurrently, with a short pause
        between chunks. A failing item never affects the others.
        """
        if not isinstance(transactions, list):
            raise InvalidPayloadError("Invalid webhook payload format: expected a JSON array")
        logger.info("webhook_received", transaction_count=len(transactions))
        processed = 0
        for start in range(0, len(transactions), PUSH_CHUNK_SIZE):
            chunk = transactions[start:start + PUSH_CHUNK_SIZE]
            results = await asyncio.gather(*(self._process_logged(tx) for tx in chunk))
            processed += sum(1 for ok in results if ok)
            if start + PUSH_CHUNK_SIZE < len(transactions):
                await asyncio.sleep(PUSH_CHUNK_PAUSE_SEC)
        logger.info("webhook_processed", processed=processed, total=len(transactions))
        return processed

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    def start_polling(self, initial_delay_sec: float | None = None) -> None:
        """STOPPED -> RUNNING; a no-op when already polling. Must be called from the event loop."""
        if self.is_polling:
            logger.warning("polling_already_active", state=self._poll_state.value)
            return
        delay = self._initial_poll_delay if initial_delay_sec is None else initial_delay_sec
        self._poll_state = PollState.RUNNING
        self._stop_event = asyncio.Event()
        self._poll_task = asyncio.get_running_loop().create_task(
            self._poll_loop(self._stop_event, delay)
        )
        logger.info(
            "polling_started",
            poll_interval_sec=self._settings.poll_interval_sec,
            poll_limit=self._settings.poll_limit,
        )

    def stop_polling(self) -> None:
        """Any state -> STOPPED. The loop wakes immediately; an in-flight fetch is discarded."""
        was_polling = self.is_polling
        self._poll_state = PollState.STOPPED
        if self._stop_event is not None:
            self._stop_event.set()
        if was_polling:
            logger.info("polling_stopped")

    async def _poll_loop(self, stop_event: asyncio.Event, initial_delay: float) -> None:
        delay = initial_delay
        while not stop_event.is_set():
            if delay > 0:
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=delay)
                    break
                except asyncio.TimeoutError:
                    pass
            if self._poll_state is PollState.PAUSED:
                self._poll_state = PollState.RUNNING
                logger.info("polling_resumed")
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.exception("poll_cycle_error", error=str(e))
            if self._poll_state is PollState.PAUSED:
                delay = self._pause_sec
            else:
                delay = self._settings.poll_interval_sec
        logger.info("poll_loop_exited")

    async def poll_once(self) -> int:
        """
        Fetch recent transactions once and process them in order.

        RateLimitedError while RUNNING moves the poller to PAUSED for
        max(poll_pause_sec, retry_after). Returns the number accepted.
        """
        was_polling = self.is_polling
        s = self._settings
        try:
            transactions = await self._queue.enqueue(
                lambda: self._source.fetch_recent_transactions(s.poll_limit)
            )
        except RateLimitedError as e:
            self._pause_sec = max(s.poll_pause_sec, e.retry_after or 0.0)
            if self._poll_state is PollState.RUNNING:
                self._poll_state = PollState.PAUSED
            logger.warning("polling_rate_limited", pause_sec=self._pause_sec, error=str(e))
            return 0
        except Exception as e:
            logger.error("polling_error", error=str(e), error_type=type(e).__name__)
            return 0

        if was_polling and not self.is_polling:
            logger.debug("poll_results_discarded", count=len(transactions))
            return 0

        processed = 0
        for tx in transactions:
            if await self._process_logged(tx):
                processed += 1
        logger.debug("poll_completed", fetched=len(transactions), processed=processed)
        return processed

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def setup_webhook(self, webhook_url: str | None = None) -> dict[str, Any]:
        """Register the Helius webhook through the request queue; errors propagate."""
        url = webhook_url or self._settings.webhook_url
        if not url:
            raise ConfigError("WEBHOOK_URL is not configured")
        auth = self._settings.webhook_auth_token
        return await self._queue.enqueue(lambda: self._source.create_webhook(url, auth_header=auth))

    async def initialize(self) -> str:
        """
        Choose exactly one ingestion mode and announce startup.

        Webhook registration failure is fatal; no fallback to polling.
        """
        mode = self._settings.mode
        logger.info("bot_initializing", mode=mode, token=short_id(self._settings.token_mint))
        if mode == "webhook":
            try:
                await self.setup_webhook()
            except Exception as e:
                logger.error("webhook_setup_failed", error=str(e))
                raise
            logger.info("webhook_setup_completed")
        elif mode == "polling":
            self.start_polling()
        else:
            raise ConfigError("Neither WEBHOOK_URL nor ENABLE_POLLING is configured")
        await self._notifier.send_startup_message(mode)
        logger.info("bot_initialized", mode=mode)
        return mode

    async def shutdown(self) -> None:
        """Stop polling, flush pending batches, close the request queue."""
        self.stop_polling()
        task = self._poll_task
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        self._poll_task = None
        self._batches.close()
        await self._batches.flush_all()
        await self._queue.close()
        logger.info("bot_shutdown", processed_transactions=self._dedup.size())

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def get_status(self) -> dict[str, Any]:
        return {
            "polling_state": self._poll_state.value,
            "is_polling": self.is_polling,
            "processed_transactions": self._dedup.size(),
            "dedup_capacity": self._dedup.capacity,
            "batch_queue_size": self._batches.bucket_count,
            "queued_requests": self._queue.pending_count,
            "requests_this_minute": self._queue.calls_this_window,
            "stats": self._stats.to_dict(),
        }

