"""
SOL/USD price with a short cache.

Jupiter price API first, CoinGecko as fallback. A failed refresh keeps the
last known price (0.0 if none was ever fetched); price lookups never raise.
"""

from __future__ import annotations

import time
from typing import Callable

import httpx

from backend_buybot.buybot_logging import get_logger
from backend_buybot.core.exceptions import UpstreamError
from backend_buybot.core.retry import RetryPolicy, retry_async
from backend_buybot.solana_listener.models import WSOL_MINT

logger = get_logger(__name__)

JUPITER_PRICE_URL = "https://lite-api.jup.ag/price/v2"
COINGECKO_PRICE_URL = "https://api.coingecko.com/api/v3/simple/price"
DEFAULT_UPDATE_INTERVAL_SEC = 60.0
_PRICE_TIMEOUT_SEC = 5.0


class PriceService:
    """Cached SOL price in USD."""

    def __init__(
        self,
        *,
        update_interval_sec: float = DEFAULT_UPDATE_INTERVAL_SEC,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._update_interval = update_interval_sec
        self._transport = transport
        self._clock = clock
        self._price = 0.0
        self._last_update: float | None = None

    @property
    def last_price(self) -> float:
        return self._price

    async def get_sol_price(self) -> float:
        now = self._clock()
        if self._last_update is None or now - self._last_update > self._update_interval:
            await self.update_price()
        return self._price

    async def update_price(self) -> None:
        try:
            price = await retry_async(
                self._fetch_price,
                RetryPolicy(max_attempts=2, base_delay_sec=1.0),
                context="price_fetch",
            )
        except Exception as e:
            logger.warning("sol_price_update_failed", error=str(e), last_price=self._price)
            return
        self._price = price
        self._last_update = self._clock()
        logger.debug("sol_price_updated", price_usd=price)

    async def _fetch_price(self) -> float:
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(_PRICE_TIMEOUT_SEC),
            transport=self._transport,
        ) as client:
            try:
                resp = await client.get(JUPITER_PRICE_URL, params={"ids": WSOL_MINT})
                resp.raise_for_status()
                entry = (resp.json().get("data") or {}).get(WSOL_MINT) or {}
                price = float(entry.get("price") or 0)
                if price > 0:
                    return price
            except (httpx.HTTPError, ValueError, TypeError, AttributeError) as e:
                logger.debug("jupiter_price_failed", error=str(e))
            try:
                resp = await client.get(
                    COINGECKO_PRICE_URL,
                    params={"ids": "solana", "vs_currencies": "usd"},
                )
                resp.raise_for_status()
                return float((resp.json().get("solana") or {}).get("usd") or 0)
            except (httpx.HTTPError, ValueError, TypeError, AttributeError) as e:
                raise UpstreamError(f"price_fetch: {e}", retryable=True) from e
