"""
RequestQueue: per-window ceiling, FIFO, single in-flight call, close semantics.
"""

from __future__ import annotations

import asyncio

import pytest

from backend_buybot.core.exceptions import QueueClosedError
from backend_buybot.ingestion.request_queue import RequestQueue


async def _spin(n: int = 20) -> None:
    for _ in range(n):
        await asyncio.sleep(0)


def test_ceiling_holds_until_window_reset():
    async def scenario():
        q = RequestQueue(3, window_sec=60, inter_task_delay_sec=0)
        ran: list[int] = []

        def make(i):
            async def task():
                ran.append(i)
                return i * 10
            return task

        futures = [asyncio.ensure_future(q.enqueue(make(i))) for i in range(5)]
        await _spin()
        assert ran == [0, 1, 2]
        assert q.calls_this_window == 3
        assert q.pending_count == 2

        q.reset_window()
        results = await asyncio.gather(*futures)
        assert results == [0, 10, 20, 30, 40]
        assert ran == [0, 1, 2, 3, 4]
        await q.close()

    asyncio.run(scenario())


def test_one_call_in_flight_in_fifo_order():
    async def scenario():
        q = RequestQueue(10, window_sec=60, inter_task_delay_sec=0)
        active = 0
        max_active = 0
        order: list[int] = []

        def make(i):
            async def task():
                nonlocal active, max_active
                active += 1
                max_active = max(max_active, active)
                await asyncio.sleep(0.01)
                order.append(i)
                active -= 1
            return task

        await asyncio.gather(*(q.enqueue(make(i)) for i in range(4)))
        assert max_active == 1
        assert order == [0, 1, 2, 3]
        await q.close()

    asyncio.run(scenario())


def test_task_error_reaches_caller():
    async def scenario():
        q = RequestQueue(5, inter_task_delay_sec=0)

        async def boom():
            raise ValueError("upstream broke")

        with pytest.raises(ValueError, match="upstream broke"):
            await q.enqueue(boom)
        await q.close()

    asyncio.run(scenario())


def test_cancelled_caller_costs_no_budget():
    async def scenario():
        q = RequestQueue(1, window_sec=60, inter_task_delay_sec=0)

        async def ok():
            return "ok"

        assert await q.enqueue(ok) == "ok"
        skipped = asyncio.ensure_future(q.enqueue(ok))
        kept = asyncio.ensure_future(q.enqueue(ok))
        await _spin()
        assert q.pending_count == 2
        skipped.cancel()
        await _spin()

        q.reset_window()
        assert await kept == "ok"
        assert q.calls_this_window == 1
        await q.close()

    asyncio.run(scenario())


def test_close_rejects_pending_and_new_calls():
    async def scenario():
        q = RequestQueue(5, inter_task_delay_sec=0)
        release = asyncio.Event()

        async def slow():
            await release.wait()
            return "done"

        async def fast():
            return "fast"

        first = asyncio.ensure_future(q.enqueue(slow))
        second = asyncio.ensure_future(q.enqueue(fast))
        await _spin()
        closer = asyncio.ensure_future(q.close())
        await _spin()
        release.set()
        await closer

        assert await first == "done"
        with pytest.raises(QueueClosedError):
            await second
        with pytest.raises(QueueClosedError):
            await q.enqueue(fast)

    asyncio.run(scenario())


def test_window_timer_resets_counter():
    async def scenario():
        q = RequestQueue(1, window_sec=0.05, inter_task_delay_sec=0)

        async def ok():
            return 1

        results = await asyncio.wait_for(asyncio.gather(q.enqueue(ok), q.enqueue(ok)), timeout=2)
        assert results == [1, 1]
        await q.close()

    asyncio.run(scenario())
