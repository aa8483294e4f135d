"""
Pytest fixtures for buy bot tests. Fakes stand in for Helius and Telegram; no network.
"""

from __future__ import annotations

from typing import Any

import pytest

from backend_buybot.config.settings import Settings
from backend_buybot.solana_listener.models import WSOL_MINT

TOKEN_MINT = "TokenMint1111111111111111111111111111111111"


def make_swap_tx(
    signature: str,
    *,
    base_raw: int = 2_000_000_000,
    token_raw: int = 500_000_000,
    sell: bool = False,
    mint: str = TOKEN_MINT,
    base_mint: str = WSOL_MINT,
    source: str | None = "RAYDIUM",
    timestamp: int = 1_700_000_000,
) -> dict[str, Any]:
    """Helius enhanced transaction with one swap of mint against base_mint (raw amounts)."""
    base_leg = {"mint": base_mint, "tokenAmount": base_raw}
    token_leg = {"mint": mint, "tokenAmount": token_raw}
    swap = (
        {"tokenInputs": [token_leg], "tokenOutputs": [base_leg]}
        if sell
        else {"tokenInputs": [base_leg], "tokenOutputs": [token_leg]}
    )
    tx: dict[str, Any] = {
        "signature": signature,
        "timestamp": timestamp,
        "feePayer": "Payer111",
        "events": {"swap": swap},
    }
    if source is not None:
        tx["source"] = source
    return tx


class FakeSource:
    """TransactionSource + HolderEnrichment double."""

    def __init__(self, transactions: list[dict[str, Any]] | None = None, holders: int = 42) -> None:
        self.transactions = transactions or []
        self.holders = holders
        self.fetch_calls = 0
        self.holder_calls = 0
        self.webhooks_created: list[tuple[str, str | None]] = []
        self.fetch_error: Exception | None = None
        self.holder_error: Exception | None = None

    async def fetch_recent_transactions(self, limit: int = 5) -> list[dict[str, Any]]:
        self.fetch_calls += 1
        if self.fetch_error is not None:
            raise self.fetch_error
        return self.transactions[:limit]

    async def fetch_holder_count(self, mint: str | None = None, *, gate: Any = None) -> int:
        self.holder_calls += 1

        async def _lookup() -> int:
            if self.holder_error is not None:
                raise self.holder_error
            return self.holders

        return await (gate(_lookup) if gate is not None else _lookup())

    async def create_webhook(self, webhook_url: str, filters: Any = None, *, auth_header: str | None = None) -> dict[str, Any]:
        self.webhooks_created.append((webhook_url, auth_header))
        return {"webhookID": "wh-1", "webhookURL": webhook_url}

    async def list_webhooks(self) -> list[dict[str, Any]]:
        return [{"webhookID": "wh-1"}]

    async def delete_webhook(self, webhook_id: str) -> bool:
        return True


class FakeNotifier:
    """Records everything the bot service would send to Telegram."""

    channel_id = "@test_channel"

    def __init__(self) -> None:
        self.trades: list[Any] = []
        self.holders_seen: list[int] = []
        self.batches: list[Any] = []
        self.startup_modes: list[str] = []
        self.test_messages = 0

    async def send_trade_notification(self, trade: Any, stats: Any) -> bool:
        self.trades.append(trade)
        self.holders_seen.append(stats.total_holders)
        return True

    async def send_batch_summary(self, summary: Any) -> bool:
        self.batches.append(summary)
        return True

    async def send_startup_message(self, mode: str) -> bool:
        self.startup_modes.append(mode)
        return True

    async def send_test_message(self) -> bool:
        self.test_messages += 1
        return True


def build_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "telegram_bot_token": "123:abc",
        "telegram_channel_id": "@test_channel",
        "helius_api_key": "test-key",
        "token_mint": TOKEN_MINT,
        "token_symbol": "TEST",
        "token_decimals": 6,
        "helius_rpc_url": "https://rpc.example/?api-key=test-key",
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def fake_source() -> FakeSource:
    return FakeSource()


@pytest.fixture
def fake_notifier() -> FakeNotifier:
    return FakeNotifier()


def make_trade(signature: str, base_amount: float = 1.0, token_amount: float = 100.0, *, large: bool = False):
    """TradeRecord built directly, for components downstream of extraction."""
    from datetime import datetime, timezone

    from backend_buybot.solana_listener.models import TradeDirection, TradeRecord

    return TradeRecord(
        signature=signature,
        direction=TradeDirection.BUY,
        base_amount=base_amount,
        token_amount=token_amount,
        price_per_token=base_amount / token_amount if token_amount else 0.0,
        venue="Raydium",
        is_large_trade=large,
        occurred_at=datetime(2024, 1, 1, 12, 30, 45, tzinfo=timezone.utc),
    )
