"""
Solana swap parsing package.

Normalizes Helius enhanced-transaction payloads into canonical swap events
and extracts buy/sell TradeRecords for the tracked token.
"""

from backend_buybot.solana_listener.models import (
    AggregateStats,
    SwapEvent,
    SwapLeg,
    TradeDirection,
    TradeRecord,
)
from backend_buybot.solana_listener.parser import (
    extract_trade,
    format_number,
    normalize_swap_events,
    resolve_venue,
)

__all__ = [
    "AggregateStats",
    "SwapEvent",
    "SwapLeg",
    "TradeDirection",
    "TradeRecord",
    "extract_trade",
    "format_number",
    "normalize_swap_events",
    "resolve_venue",
]
