"""
retry_async: backoff schedule, retryable predicate, give-up.
"""

from __future__ import annotations

import asyncio

import pytest

from backend_buybot.core.exceptions import RateLimitedError, UpstreamError
from backend_buybot.core.retry import RetryPolicy, retry_async


class _Recorder:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def test_delay_doubles_and_caps():
    policy = RetryPolicy(base_delay_sec=1.0, max_delay_sec=3.0)
    assert [policy.delay_for(i) for i in range(4)] == [1.0, 2.0, 3.0, 3.0]


def test_succeeds_after_transient_failures():
    calls = 0

    async def flaky():
        nonlocal calls
        calls += 1
        if calls < 3:
            raise UpstreamError("503", status_code=503)
        return "ok"

    sleep = _Recorder()
    result = asyncio.run(retry_async(flaky, RetryPolicy(max_attempts=3, base_delay_sec=0.5), sleep=sleep))
    assert result == "ok"
    assert calls == 3
    assert sleep.delays == [0.5, 1.0]


def test_gives_up_and_reraises_last_error():
    async def always_fails():
        raise UpstreamError("down")

    sleep = _Recorder()
    with pytest.raises(UpstreamError, match="down"):
        asyncio.run(retry_async(always_fails, RetryPolicy(max_attempts=2), sleep=sleep))
    assert len(sleep.delays) == 1


def test_non_retryable_errors_fail_fast():
    calls = 0

    async def limited():
        nonlocal calls
        calls += 1
        raise RateLimitedError(retry_after=30)

    sleep = _Recorder()
    with pytest.raises(RateLimitedError) as info:
        asyncio.run(retry_async(limited, RetryPolicy(max_attempts=5), sleep=sleep))
    assert info.value.retry_after == 30
    assert calls == 1
    assert sleep.delays == []


def test_custom_predicate():
    calls = 0

    async def fails():
        nonlocal calls
        calls += 1
        raise KeyError("x")

    policy = RetryPolicy(max_attempts=4, is_retryable=lambda e: False)
    with pytest.raises(KeyError):
        asyncio.run(retry_async(fails, policy, sleep=_Recorder()))
    assert calls == 1


def test_requested_delay_raises_backoff():
    attempts = 0

    async def throttled():
        nonlocal attempts
        attempts += 1
        if attempts < 3:
            raise RateLimitedError("slow down", retry_after=4.0)
        return "done"

    policy = RetryPolicy(
        max_attempts=3,
        base_delay_sec=0.5,
        is_retryable=lambda e: True,
        requested_delay=lambda e: getattr(e, "retry_after", None),
    )
    sleep = _Recorder()
    assert asyncio.run(retry_async(throttled, policy, sleep=sleep)) == "done"
    assert sleep.delays == [4.0, 4.0]
    assert policy.delay_after(ValueError("x"), 2) == 2.0
