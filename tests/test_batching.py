"""
BatchWindow bucketing and flush; summarize_batch aggregation.
"""

from __future__ import annotations

import asyncio

import pytest

from backend_buybot.ingestion.batching import BatchWindow, summarize_batch
from conftest import make_trade


def test_trades_in_same_window_share_a_bucket():
    async def scenario():
        flushed: list[list] = []

        async def on_flush(trades):
            flushed.append(list(trades))

        now = [100.0]
        window = BatchWindow(5, on_flush, clock=lambda: now[0])
        t1, t2, t3 = make_trade("a"), make_trade("b"), make_trade("c")

        k1 = window.add(t1)
        now[0] = 103.0
        k2 = window.add(t2)
        now[0] = 106.0
        k3 = window.add(t3)

        assert k1 == k2 == 20
        assert k3 == 21
        assert window.bucket_count == 2
        assert window.pending(k1) == [t1, t2]

        assert await window.flush(k1) == 2
        assert flushed == [[t1, t2]]
        # already flushed: no-op
        assert await window.flush(k1) == 0
        assert await window.flush_all() == 1
        assert flushed == [[t1, t2], [t3]]
        assert window.bucket_count == 0
        window.close()

    asyncio.run(scenario())


def test_scheduled_flush_fires_after_window():
    async def scenario():
        flushed: list[list] = []

        async def on_flush(trades):
            flushed.append(list(trades))

        window = BatchWindow(1, on_flush)
        window.add(make_trade("a"))
        await asyncio.sleep(1.3)
        assert len(flushed) == 1
        assert window.bucket_count == 0

    asyncio.run(scenario())


def test_flush_error_is_contained():
    async def scenario():
        async def on_flush(trades):
            raise RuntimeError("telegram down")

        window = BatchWindow(5, on_flush, clock=lambda: 50.0)
        key = window.add(make_trade("a"))
        assert await window.flush(key) == 1
        assert window.bucket_count == 0
        window.close()

    asyncio.run(scenario())


def test_disabled_window_rejects_add():
    async def noop(trades):
        return None

    window = BatchWindow(0, noop)
    assert window.enabled is False
    with pytest.raises(RuntimeError):
        window.add(make_trade("a"))


def test_summarize_batch_preview_and_remainder():
    trades = [make_trade(f"s{i}", base_amount=1.5, token_amount=10.0, large=(i == 0)) for i in range(5)]
    summary = summarize_batch(trades, window_sec=30)
    assert summary.count == 5
    assert summary.total_base == pytest.approx(7.5)
    assert summary.total_tokens == pytest.approx(50.0)
    assert summary.large_trade_count == 1
    assert [t.signature for t in summary.preview] == ["s0", "s1", "s2"]
    assert summary.remaining == 2
    assert summary.window_sec == 30
