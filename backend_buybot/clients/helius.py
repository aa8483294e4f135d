"""
Helius API client: recent swaps, holder counts, webhook registration.

Uses Solana JSON-RPC (getSignaturesForAddress, DAS getTokenAccounts) on the
Helius RPC endpoint and the Helius REST API (/v0/transactions, /v0/webhooks).
HTTP 429 is surfaced as RateLimitedError so the poller can pause; transport
errors and 5xx are retried with exponential backoff by retry_async.
"""

from __future__ import annotations

import email.utils
import time
from typing import Any, Awaitable, Callable, Mapping, TypeVar

import httpx

from backend_buybot.buybot_logging import get_logger, short_id
from backend_buybot.config.env import HELIUS_API_BASE_URL, mask_api_key
from backend_buybot.core.exceptions import RateLimitedError, UpstreamError
from backend_buybot.core.retry import RetryPolicy, retry_async

logger = get_logger(__name__)

DEFAULT_REQUEST_TIMEOUT_SEC = 10.0
TRANSACTIONS_TIMEOUT_SEC = 15.0
HOLDERS_PAGE_LIMIT = 1000
HOLDERS_MAX_PAGES = 10
HOLDERS_CACHE_TTL_SEC = 30.0
# JSON-RPC error codes Helius uses for quota exhaustion
_RPC_RATE_LIMIT_CODES = (429, -32429)

T = TypeVar("T")
# Runs one upstream request, e.g. RequestQueue.enqueue
Gate = Callable[[Callable[[], Awaitable[T]]], Awaitable[T]]


async def _direct(factory: Callable[[], Awaitable[T]]) -> T:
    return await factory()


def _parse_retry_after(value: str | None) -> float | None:
    """Retry-After header: delta-seconds or HTTP date."""
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        ts = email.utils.parsedate_to_datetime(value).timestamp()
    except (TypeError, ValueError):
        return None
    return max(0.0, ts - time.time())


def _raise_for_status(resp: httpx.Response, context: str) -> None:
    status = resp.status_code
    if status == 429:
        raise RateLimitedError(
            f"{context}: rate limited (429)",
            retry_after=_parse_retry_after(resp.headers.get("Retry-After")),
        )
    if status >= 500:
        raise UpstreamError(f"{context}: HTTP {status}", status_code=status, retryable=True)
    if status >= 400:
        raise UpstreamError(f"{context}: HTTP {status} {resp.text[:200]}", status_code=status, retryable=False)


class HeliusClient:
    """
    Thin async client over Helius RPC + REST for one tracked token.

    A fresh httpx.AsyncClient is opened per call; pass transport to stub the
    network in tests (httpx.MockTransport).
    """

    def __init__(
        self,
        api_key: str,
        rpc_url: str,
        token_mint: str,
        *,
        api_base_url: str = HELIUS_API_BASE_URL,
        retry_policy: RetryPolicy | None = None,
        request_timeout_sec: float = DEFAULT_REQUEST_TIMEOUT_SEC,
        transport: httpx.AsyncBaseTransport | None = None,
        holders_cache_ttl_sec: float = HOLDERS_CACHE_TTL_SEC,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if not api_key.strip():
            raise ValueError("api_key must be non-empty")
        if not rpc_url.strip():
            raise ValueError("rpc_url must be non-empty")
        self._api_key = api_key.strip()
        self._rpc_url = rpc_url.strip()
        self._token_mint = token_mint
        self._api_base_url = api_base_url.rstrip("/")
        self._retry_policy = retry_policy or RetryPolicy(max_attempts=3, base_delay_sec=2.0)
        self._request_timeout = request_timeout_sec
        self._transport = transport
        self._next_rpc_id = 0
        self._holders_cache_ttl = holders_cache_ttl_sec
        self._clock = clock
        self._holders_cache: dict[str, tuple[float, int]] = {}

    def _client(self, timeout: float | None = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(timeout or self._request_timeout),
            transport=self._transport,
        )

    def _next_id(self) -> int:
        self._next_rpc_id += 1
        return self._next_rpc_id

    async def _rest(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        timeout: float | None = None,
        context: str,
    ) -> Any:
        """Call the Helius REST API; api-key goes in the query string."""
        url = f"{self._api_base_url}{path}"
        async with self._client(timeout) as client:
            try:
                resp = await client.request(method, url, params={"api-key": self._api_key}, json=json)
            except httpx.HTTPError as e:
                raise UpstreamError(f"{context}: {type(e).__name__}: {e}", retryable=True) from e
        _raise_for_status(resp, context)
        if not resp.content:
            return None
        return resp.json()

    async def _rpc(self, method: str, params: Any, *, context: str) -> Any:
        """Perform a JSON-RPC call; raise on transport, HTTP or RPC error."""
        body = {"jsonrpc": "2.0", "id": self._next_id(), "method": method, "params": params}
        async with self._client() as client:
            try:
                resp = await client.post(self._rpc_url, json=body)
            except httpx.HTTPError as e:
                raise UpstreamError(f"{context}: {type(e).__name__}: {e}", retryable=True) from e
        _raise_for_status(resp, context)
        data = resp.json()
        err = data.get("error") if isinstance(data, dict) else None
        if err:
            code = err.get("code") if isinstance(err, dict) else None
            message = err.get("message", err) if isinstance(err, dict) else err
            if code in _RPC_RATE_LIMIT_CODES:
                raise RateLimitedError(f"{context}: {message}")
            raise UpstreamError(f"{context}: RPC error {message} (code={code})", retryable=True)
        if not isinstance(data, dict) or "result" not in data:
            raise UpstreamError(f"{context}: RPC returned no result", retryable=True)
        return data["result"]

    async def fetch_recent_transactions(self, limit: int = 5) -> list[dict[str, Any]]:
        """
        Latest enhanced transactions touching the tracked mint, newest first.

        getSignaturesForAddress(mint, limit) followed by POST /v0/transactions.
        """

        async def _fetch() -> list[dict[str, Any]]:
            items = await self._rpc(
                "getSignaturesForAddress",
                [self._token_mint, {"limit": limit}],
                context="get_signatures",
            )
            signatures = [
                item["signature"]
                for item in (items if isinstance(items, list) else [])
                if isinstance(item, dict) and item.get("signature") and item.get("err") is None
            ]
            if not signatures:
                return []
            data = await self._rest(
                "POST",
                "/v0/transactions",
                json={"transactions": signatures},
                timeout=TRANSACTIONS_TIMEOUT_SEC,
                context="parse_transactions",
            )
            return data if isinstance(data, list) else []

        txs = await retry_async(_fetch, self._retry_policy, context="fetch_transactions")
        logger.debug("helius_transactions_fetched", count=len(txs), limit=limit)
        return txs

    async def fetch_holder_count(self, mint: str | None = None, *, gate: Gate | None = None) -> int:
        """
        Distinct owners with a non-zero balance of mint (DAS getTokenAccounts).

        Every upstream request, retries included, is passed through gate so a
        request queue can charge each page against its budget. Pages are capped
        at HOLDERS_MAX_PAGES; the count is a lower bound for tokens with more
        holders than that. Results are cached for holders_cache_ttl_sec.
        """
        target = mint or self._token_mint
        cached = self._holders_cache.get(target)
        if cached is not None and self._clock() - cached[0] < self._holders_cache_ttl:
            return cached[1]

        run = gate or _direct
        policy = RetryPolicy(max_attempts=2, base_delay_sec=1.0)
        owners: set[str] = set()
        for page in range(1, HOLDERS_MAX_PAGES + 1):

            async def _page(page: int = page) -> Any:
                return await self._rpc(
                    "getTokenAccounts",
                    {"mint": target, "page": page, "limit": HOLDERS_PAGE_LIMIT},
                    context="get_token_accounts",
                )

            result = await retry_async(lambda: run(_page), policy, context="holder_count")
            accounts = (result or {}).get("token_accounts") or []
            for acc in accounts:
                if not isinstance(acc, dict):
                    continue
                try:
                    amount = int(acc.get("amount") or 0)
                except (TypeError, ValueError):
                    continue
                if amount > 0 and acc.get("owner"):
                    owners.add(acc["owner"])
            if len(accounts) < HOLDERS_PAGE_LIMIT:
                break
        self._holders_cache[target] = (self._clock(), len(owners))
        return len(owners)

    async def create_webhook(
        self,
        webhook_url: str,
        filters: Mapping[str, Any] | None = None,
        *,
        auth_header: str | None = None,
    ) -> dict[str, Any]:
        """
        Register an enhanced SWAP webhook for the tracked mint.

        filters overrides the defaults (transactionTypes, accountAddresses, webhookType).
        """
        body: dict[str, Any] = {
            "webhookURL": webhook_url,
            "transactionTypes": ["SWAP"],
            "accountAddresses": [self._token_mint],
            "webhookType": "enhanced",
        }
        if filters:
            body.update(filters)
        if auth_header:
            body["authHeader"] = auth_header

        async def _create() -> dict[str, Any]:
            return await self._rest("POST", "/v0/webhooks", json=body, context="create_webhook") or {}

        result = await retry_async(_create, self._retry_policy, context="create_webhook")
        logger.info(
            "helius_webhook_created",
            webhook_id=result.get("webhookID"),
            webhook_url=mask_api_key(webhook_url),
            mint=short_id(self._token_mint),
        )
        return result

    async def list_webhooks(self) -> list[dict[str, Any]]:
        async def _list() -> list[dict[str, Any]]:
            data = await self._rest("GET", "/v0/webhooks", context="list_webhooks")
            return data if isinstance(data, list) else []

        return await retry_async(_list, RetryPolicy(max_attempts=2, base_delay_sec=1.0), context="list_webhooks")

    async def delete_webhook(self, webhook_id: str) -> bool:
        async def _delete() -> bool:
            await self._rest("DELETE", f"/v0/webhooks/{webhook_id}", context="delete_webhook")
            return True

        deleted = await retry_async(_delete, RetryPolicy(max_attempts=2, base_delay_sec=1.0), context="delete_webhook")
        logger.info("helius_webhook_deleted", webhook_id=webhook_id)
        return deleted
