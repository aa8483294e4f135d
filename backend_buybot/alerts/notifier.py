"""
Telegram notifier: trade alerts, batch summaries, startup and error messages.

Wraps telegram.Bot. Trade and batch sends are retried on network errors and
flood-control (RetryAfter); when retries run out an error alert goes to the
secondary error channel, if one is configured. Sends never raise to callers;
they return True/False.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Any, Awaitable, Callable

from telegram import Bot, LinkPreviewOptions
from telegram.constants import ParseMode
from telegram.error import BadRequest, NetworkError, RetryAfter, TelegramError

from backend_buybot.alerts.formatting import (
    TEST_MESSAGE,
    format_batch_message,
    format_error_alert,
    format_startup_message,
    format_trade_message,
)
from backend_buybot.buybot_logging import get_logger, short_id
from backend_buybot.clients.price import PriceService
from backend_buybot.config.settings import Settings
from backend_buybot.core.retry import RetryPolicy, retry_async
from backend_buybot.ingestion.batching import BatchSummary
from backend_buybot.solana_listener.models import AggregateStats, TradeRecord

logger = get_logger(__name__)


def is_retryable_telegram_error(error: BaseException) -> bool:
    """Flood control and transport errors are retried; bad requests are not."""
    if isinstance(error, BadRequest):
        return False
    return isinstance(error, (RetryAfter, NetworkError))


def telegram_retry_after(error: BaseException) -> float | None:
    """Seconds Telegram asked us to wait on flood control."""
    if not isinstance(error, RetryAfter):
        return None
    wait = error.retry_after
    if isinstance(wait, timedelta):
        return wait.total_seconds()
    return float(wait)


class TelegramNotifier:
    """Notification sink for one main channel plus an optional error channel."""

    def __init__(
        self,
        settings: Settings,
        *,
        bot: Any = None,
        price_service: PriceService | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._bot = bot if bot is not None else Bot(token=settings.telegram_bot_token)
        self._channel_id = settings.telegram_channel_id
        self._error_channel_id = settings.telegram_error_channel_id
        self._token_symbol = settings.token_symbol
        self._price_service = price_service
        self._sleep = sleep
        self._retry_policy = RetryPolicy(
            max_attempts=settings.telegram_retry_attempts,
            base_delay_sec=settings.telegram_retry_delay_sec,
            is_retryable=is_retryable_telegram_error,
            requested_delay=telegram_retry_after,
        )

    @property
    def channel_id(self) -> str:
        return self._channel_id

    async def _send(self, chat_id: str, text: str, rich: bool) -> None:
        await self._bot.send_message(
            chat_id=chat_id,
            text=text,
            parse_mode=ParseMode.MARKDOWN if rich else None,
            link_preview_options=LinkPreviewOptions(is_disabled=True),
        )

    async def send_message(
        self,
        chat_id: str,
        text: str,
        *,
        rich: bool = True,
        retry: bool = True,
        context: str = "send_message",
    ) -> bool:
        """Send text to chat_id; True on success, False once retries are exhausted."""
        policy = self._retry_policy if retry else RetryPolicy(max_attempts=1)
        try:
            await retry_async(
                lambda: self._send(chat_id, text, rich),
                policy,
                context=context,
                sleep=self._sleep,
            )
        except TelegramError as e:
            logger.error("telegram_send_failed", context=context, chat_id=chat_id, error=str(e))
            return False
        return True

    async def send_trade_notification(self, trade: TradeRecord, stats: AggregateStats) -> bool:
        sol_price = await self._price_service.get_sol_price() if self._price_service else 0.0
        text = format_trade_message(
            trade,
            token_symbol=self._token_symbol,
            stats=stats,
            sol_price=sol_price,
        )
        ok = await self.send_message(self._channel_id, text, context="send_notification")
        if ok:
            logger.info(
                "trade_notified",
                signature=short_id(trade.signature),
                direction=trade.direction.value,
                base_amount=trade.base_amount,
                venue=trade.venue,
            )
        else:
            await self.send_error_alert(f"Failed to send trade notification for {trade.signature}")
        return ok

    async def send_batch_summary(self, summary: BatchSummary) -> bool:
        text = format_batch_message(summary, token_symbol=self._token_symbol)
        ok = await self.send_message(self._channel_id, text, context="send_batch_summary")
        if ok:
            logger.info("batch_notified", trade_count=summary.count, total_base=summary.total_base)
        else:
            await self.send_error_alert(f"Failed to send batch summary of {summary.count} trades")
        return ok

    async def send_startup_message(self, mode: str) -> bool:
        ok = await self.send_message(
            self._channel_id,
            format_startup_message(self._token_symbol, mode),
            retry=False,
            context="send_startup",
        )
        if not ok:
            logger.warning("startup_message_failed")
        return ok

    async def send_error_alert(self, message: str) -> bool:
        """Post to the error channel; no-op (False) when none is configured."""
        if not self._error_channel_id:
            return False
        return await self.send_message(
            self._error_channel_id,
            format_error_alert(message),
            retry=False,
            context="send_error_alert",
        )

    async def send_test_message(self) -> bool:
        return await self.send_message(self._channel_id, TEST_MESSAGE, retry=False, context="send_test")
