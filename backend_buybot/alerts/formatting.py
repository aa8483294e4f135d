"""
Telegram message bodies (legacy Markdown) for trades, batches and status.

Dynamic text (venue, symbol, error messages) is escaped with
telegram.helpers.escape_markdown so stray '_' or '*' cannot break parsing.
"""

from __future__ import annotations

from datetime import datetime, timezone

from telegram.helpers import escape_markdown

from backend_buybot.ingestion.batching import BatchSummary
from backend_buybot.solana_listener.models import AggregateStats, TradeDirection, TradeRecord
from backend_buybot.solana_listener.parser import format_number

SOLSCAN_TX_URL = "https://solscan.io/tx/{signature}"

# base-asset amount tiers for the headline emoji (large trades get the whale)
_EMOJI_TIERS = ((1.0, "🚀"), (0.1, "💎"))


def _md(text: object) -> str:
    return escape_markdown(str(text), version=1)


def trade_emoji(trade: TradeRecord) -> str:
    if trade.direction == TradeDirection.SELL:
        return "🔴"
    if trade.is_large_trade:
        return "🐋"
    for floor, emoji in _EMOJI_TIERS:
        if trade.base_amount >= floor:
            return emoji
    return "🟢"


def _usd_value(trade: TradeRecord, sol_price: float) -> float:
    if trade.base_symbol in ("USDC", "USDT"):
        return trade.base_amount
    return trade.base_amount * sol_price


def format_trade_message(
    trade: TradeRecord,
    *,
    token_symbol: str,
    stats: AggregateStats,
    sol_price: float = 0.0,
) -> str:
    action = {TradeDirection.BUY: "PURCHASE", TradeDirection.SELL: "SALE"}.get(trade.direction, "TRADE")
    whale = " - WHALE ALERT!" if trade.is_large_trade else ""
    usd = _usd_value(trade, sol_price)
    usd_part = f" (${format_number(usd)})" if usd > 0 else ""
    lines = [
        f"{trade_emoji(trade)} *NEW {_md(token_symbol)} {action}{whale}*",
        "",
        f"💰 *Amount*: {trade.base_amount:.4f} {trade.base_symbol}{usd_part}",
        f"🪙 *Tokens*: {format_number(trade.token_amount)} {_md(token_symbol)}",
        f"💵 *Price*: {trade.price_per_token:.8f} {trade.base_symbol}",
        f"📊 *Total Volume*: {format_number(stats.total_volume)} {trade.base_symbol}",
        f"👥 *Holders*: {format_number(stats.total_holders, 0)}",
        f"🔄 *DEX*: {_md(trade.venue)}",
        f"⏰ *Time*: {trade.occurred_at.strftime('%H:%M:%S')} UTC",
        "",
        f"🔗 [View Transaction]({SOLSCAN_TX_URL.format(signature=trade.signature)})",
    ]
    if trade.is_large_trade:
        lines += ["", "🚨 *WHALE ALERT* 🚨"]
    return "\n".join(lines)


def format_batch_message(summary: BatchSummary, *, token_symbol: str) -> str:
    base_symbols = {t.base_symbol for t in summary.preview}
    base = base_symbols.pop() if len(base_symbols) == 1 else "SOL"
    lines = [
        f"📦 *Batch Summary ({summary.count} transactions)*",
        "",
        f"💰 *Total Volume*: {summary.total_base:.4f} {base}",
        f"🪙 *Total Tokens*: {format_number(summary.total_tokens)} {_md(token_symbol)}",
        f"🐋 *Whales*: {summary.large_trade_count}",
        f"⏰ *Window*: {summary.window_sec}s",
        "",
    ]
    lines += [
        f"• {t.direction.value} {t.base_amount:.2f} {t.base_symbol} ({_md(t.venue)})"
        for t in summary.preview
    ]
    if summary.remaining:
        lines += ["", f"... and {summary.remaining} more"]
    return "\n".join(lines)


def format_startup_message(token_symbol: str, mode: str) -> str:
    return f"🤖 *{_md(token_symbol)} Bot Started*\n\nMonitoring for new trades ({mode} mode)..."


def format_error_alert(message: str, now: datetime | None = None) -> str:
    ts = (now or datetime.now(timezone.utc)).isoformat()
    return f"🚨 *Bot Error*\n\n{_md(message)}\n\nTime: {ts}"


TEST_MESSAGE = "🧪 *Test Message*\n\nBot is working correctly!"
