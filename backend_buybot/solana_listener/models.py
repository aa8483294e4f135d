"""
Data models for swap ingestion.

- SwapLeg / SwapEvent: canonical form of a Helius swap event, whatever shape
  the payload used (single object, array, or nested innerSwaps).
- TradeRecord: one qualifying buy or sell of the tracked token.
- AggregateStats: process-lifetime counters shown in alerts and /stats.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from enum import Enum
from typing import Any

# Wrapped SOL (native asset); native lamport legs are mapped onto this mint
WSOL_MINT = "So11111111111111111111111111111111111111112"
USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
USDT_MINT = "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB"

# mint -> decimals for recognized base assets
DEFAULT_BASE_ASSETS: dict[str, int] = {
    WSOL_MINT: 9,
    USDC_MINT: 6,
    USDT_MINT: 6,
}

BASE_ASSET_SYMBOLS: dict[str, str] = {
    WSOL_MINT: "SOL",
    USDC_MINT: "USDC",
    USDT_MINT: "USDT",
}

UNKNOWN_VENUE = "Unknown DEX"
UNKNOWN_COUNTERPARTY = "Unknown"


class TradeDirection(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class SwapLeg:
    """
    One side of a swap for a single mint.

    raw_amount is in base units when decimals is None (scale with the mint's
    known decimals) or when decimals is given; ui_amount is set instead when
    the payload already carried a human-readable amount.
    """

    mint: str
    raw_amount: int | None = None
    decimals: int | None = None
    ui_amount: float | None = None

    def amount(self, fallback_decimals: int) -> float:
        """Whole-unit amount, scaling raw units by the leg's or the fallback decimals."""
        if self.ui_amount is not None:
            return self.ui_amount
        if self.raw_amount is None:
            return 0.0
        dec = self.decimals if self.decimals is not None else fallback_decimals
        return self.raw_amount / (10 ** dec)


@dataclass(frozen=True)
class SwapEvent:
    """Normalized swap: top-level legs plus any nested inner swaps."""

    inputs: tuple[SwapLeg, ...] = ()
    outputs: tuple[SwapLeg, ...] = ()
    inner: tuple["SwapEvent", ...] = ()

    def references(self, mint: str) -> bool:
        """True if mint appears on either side here or in any inner swap."""
        if any(leg.mint == mint for leg in self.inputs + self.outputs):
            return True
        return any(s.references(mint) for s in self.inner)


@dataclass(frozen=True)
class TradeRecord:
    """
    Canonical buy/sell of the tracked token.

    Only built when a tracked-token leg and a recognized base-asset leg sit on
    opposite sides of the same swap.
    """

    signature: str
    direction: TradeDirection
    base_amount: float
    """Base asset paid or received, in whole units (e.g. SOL)."""
    token_amount: float
    """Tracked token amount, normalized by token decimals."""
    price_per_token: float
    venue: str
    is_large_trade: bool
    occurred_at: datetime
    counterparty: str = UNKNOWN_COUNTERPARTY
    base_mint: str = WSOL_MINT
    base_symbol: str = "SOL"

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        out["direction"] = self.direction.value
        out["occurred_at"] = self.occurred_at.isoformat()
        return out


@dataclass
class AggregateStats:
    """Process-lifetime totals; reset only on restart."""

    total_volume: float = 0.0
    """Total base-asset volume notified."""
    total_holders: int = 0
    """Last known holder count."""
    transaction_count: int = 0

    def record(self, trade: TradeRecord, holders: int | None = None) -> None:
        self.total_volume += trade.base_amount
        self.transaction_count += 1
        if holders:
            self.total_holders = holders

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_volume": self.total_volume,
            "total_holders": self.total_holders,
            "transaction_count": self.transaction_count,
        }
