"""
FastAPI server: Helius webhook receiver plus status and admin endpoints.

create_app() builds the app; the lifespan wires HeliusClient, PriceService,
TelegramNotifier and BotService from Settings and runs BotService.initialize()
(webhook registration or polling start). A pre-built BotService can be injected
instead, in which case the caller owns its lifecycle.
"""

from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from backend_buybot import __version__
from backend_buybot.alerts.notifier import TelegramNotifier
from backend_buybot.api_server.middleware import (
    InboundRateLimiter,
    log_requests,
    verify_webhook_auth,
    webhook_rate_limit,
)
from backend_buybot.buybot_logging import get_logger
from backend_buybot.clients.helius import HeliusClient
from backend_buybot.clients.price import PriceService
from backend_buybot.config.settings import Settings, get_settings
from backend_buybot.core.exceptions import InvalidPayloadError
from backend_buybot.core.retry import RetryPolicy
from backend_buybot.ingestion.orchestrator import BotService
from backend_buybot.solana_listener.models import WSOL_MINT
from backend_buybot.solana_listener.parser import extract_trade

logger = get_logger(__name__)

AVAILABLE_ENDPOINTS = [
    "GET /health",
    "GET /stats",
    "GET /webhooks",
    "GET /test",
    "GET /metrics",
    "POST /webhook",
    "POST /setup-webhook",
    "DELETE /webhook/{webhook_id}",
    "POST /simulate (dev only)",
]
# Raydium AMM v4, used as the venue of simulated swaps
SIMULATED_PROGRAM_ID = "675kPX9MHTjS2zt1qfr1NYHuzeLXfQM9H24wFSUt1Mp8"


# -----------------------------------------------------------------------------
# Request / response models
# -----------------------------------------------------------------------------

class WebhookResponse(BaseModel):
    """POST /webhook response."""

    success: bool = True
    processed: int = Field(..., description="Transactions accepted as trades")
    total: int = Field(..., description="Transactions in the delivery")
    duration_ms: float


class SimulateRequest(BaseModel):
    """POST /simulate body; both amounts optional."""

    sol_amount: int = Field(1_000_000_000, alias="solAmount", ge=0, description="WSOL input in lamports")
    token_amount: float = Field(1_000_000, alias="tokenAmount", ge=0, description="Token output in whole tokens")


class SimulateResponse(BaseModel):
    success: bool = True
    processed: bool
    transaction: str
    trade: dict[str, Any] | None = Field(None, description="Trade extracted from the synthetic swap")


# -----------------------------------------------------------------------------
# Wiring
# -----------------------------------------------------------------------------

def build_bot(settings: Settings) -> tuple[BotService, TelegramNotifier, HeliusClient]:
    """Construct the production object graph from settings."""
    helius = HeliusClient(
        settings.helius_api_key,
        settings.helius_rpc_url,
        settings.token_mint,
        retry_policy=RetryPolicy(max_attempts=settings.helius_retry_attempts, base_delay_sec=2.0),
    )
    notifier = TelegramNotifier(settings, price_service=PriceService())
    bot = BotService(settings, source=helius, notifier=notifier, enrichment=helius)
    return bot, notifier, helius


def build_simulated_transaction(settings: Settings, body: SimulateRequest, now: float | None = None) -> dict[str, Any]:
    """Synthetic WSOL -> tracked-token swap in Helius enhanced-transaction shape."""
    ts = time.time() if now is None else now
    return {
        "signature": f"mock_{int(ts * 1000)}",
        "timestamp": int(ts),
        "feePayer": "MockBuyer123...",
        "events": {
            "swap": [{
                "tokenInputs": [{"mint": WSOL_MINT, "tokenAmount": body.sol_amount}],
                "tokenOutputs": [{
                    "mint": settings.token_mint,
                    "tokenAmount": int(body.token_amount * 10 ** settings.token_decimals),
                }],
            }]
        },
        "instructions": [{"programId": SIMULATED_PROGRAM_ID}],
    }


def render_metrics(status: dict[str, Any], uptime_sec: float) -> str:
    """Prometheus text exposition of bot status."""
    stats = status.get("stats") or {}
    series = [
        ("bot_processed_transactions_total", "counter", "Total processed transactions", stats.get("transaction_count", 0)),
        ("bot_total_volume", "gauge", "Total base-asset volume notified", stats.get("total_volume", 0.0)),
        ("bot_total_holders", "gauge", "Last known token holder count", stats.get("total_holders", 0)),
        ("bot_cache_size", "gauge", "Signatures in the dedup cache", status.get("processed_transactions", 0)),
        ("bot_cache_capacity", "gauge", "Dedup cache capacity", status.get("dedup_capacity", 0)),
        ("bot_queued_requests", "gauge", "Outbound requests waiting in the queue", status.get("queued_requests", 0)),
        ("bot_batch_queue_size", "gauge", "Open batch buckets", status.get("batch_queue_size", 0)),
        ("bot_polling", "gauge", "1 while polling is active", 1 if status.get("is_polling") else 0),
        ("bot_uptime_seconds", "gauge", "Bot uptime in seconds", round(uptime_sec, 3)),
    ]
    lines: list[str] = []
    for name, kind, help_text, value in series:
        lines += [f"# HELP {name} {help_text}", f"# TYPE {name} {kind}", f"{name} {value}"]
    return "\n".join(lines) + "\n"


def _loop_exception_handler(loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
    """Log failures of background tasks and timer callbacks; the process keeps running."""
    exc = context.get("exception")
    logger.error(
        "background_task_failed",
        message=context.get("message"),
        error=str(exc) if exc else None,
        error_type=type(exc).__name__ if exc else None,
    )


def _bot(request: Request) -> BotService:
    bot = request.app.state.bot
    if bot is None:
        raise HTTPException(status_code=503, detail="Bot service not initialized")
    return bot


# -----------------------------------------------------------------------------
# App factory
# -----------------------------------------------------------------------------

def create_app(
    settings: Settings | None = None,
    bot: BotService | None = None,
    *,
    notifier: TelegramNotifier | None = None,
    helius: HeliusClient | None = None,
) -> FastAPI:
    """
    Build the FastAPI app.

    With bot=None the lifespan builds and initializes the full service from
    settings (or get_settings()) and shuts it down on exit.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        asyncio.get_running_loop().set_exception_handler(_loop_exception_handler)
        owned = app.state.bot is None
        if owned:
            s = app.state.settings or get_settings()
            app.state.settings = s
            app.state.bot, app.state.notifier, app.state.helius = build_bot(s)
            await app.state.bot.initialize()
        logger.info("api_started", mode=app.state.settings.mode if app.state.settings else None)
        try:
            yield
        finally:
            if owned:
                await app.state.bot.shutdown()
            logger.info("api_stopped")

    app = FastAPI(title="Solana Buy Bot", version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.bot = bot
    app.state.notifier = notifier
    app.state.helius = helius
    app.state.started_at = time.monotonic()
    app.state.webhook_limiter = InboundRateLimiter()
    app.middleware("http")(log_requests)

    @app.get("/health")
    def health(request: Request) -> dict[str, Any]:
        """Liveness probe plus current bot status."""
        s: Settings | None = request.app.state.settings
        body: dict[str, Any] = {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "uptime": round(time.monotonic() - request.app.state.started_at, 3),
        }
        if s is not None:
            body["config"] = {
                "token": s.token_symbol,
                "polling": s.enable_polling,
                "webhook": bool(s.webhook_url),
                "environment": s.environment,
            }
        if request.app.state.bot is not None:
            body.update(request.app.state.bot.get_status())
        return body

    @app.post(
        "/webhook",
        response_model=WebhookResponse,
        dependencies=[Depends(webhook_rate_limit), Depends(verify_webhook_auth)],
    )
    async def webhook(request: Request) -> WebhookResponse:
        """Receive a Helius enhanced-transaction delivery (JSON array)."""
        bot = _bot(request)
        try:
            payload = await request.json()
        except ValueError as e:
            raise HTTPException(status_code=400, detail="Invalid payload format") from e
        if not isinstance(payload, list):
            logger.warning("webhook_invalid_payload", payload_type=type(payload).__name__)
            raise HTTPException(status_code=400, detail="Invalid payload format")

        start = time.perf_counter()
        try:
            processed = await bot.process_webhook_data(payload)
        except InvalidPayloadError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        except Exception as e:
            logger.exception("webhook_processing_failed", error=str(e), transaction_count=len(payload))
            return JSONResponse(status_code=500, content={"error": "Processing failed", "message": str(e)})
        duration_ms = round((time.perf_counter() - start) * 1000, 2)
        return WebhookResponse(processed=processed, total=len(payload), duration_ms=duration_ms)

    @app.get("/test")
    async def send_test(request: Request) -> dict[str, Any]:
        """Send a test message to the main channel."""
        notifier: TelegramNotifier | None = request.app.state.notifier
        if notifier is None:
            raise HTTPException(status_code=503, detail="Notifier not initialized")
        if not await notifier.send_test_message():
            raise HTTPException(status_code=500, detail="Test message failed")
        logger.info("test_message_sent")
        return {"success": True, "message": "Test message sent to channel", "channel_id": notifier.channel_id}

    @app.get("/webhooks")
    async def list_webhooks(request: Request) -> dict[str, Any]:
        helius: HeliusClient | None = request.app.state.helius
        if helius is None:
            raise HTTPException(status_code=503, detail="Helius client not initialized")
        try:
            webhooks = await helius.list_webhooks()
        except Exception as e:
            logger.error("list_webhooks_failed", error=str(e))
            raise HTTPException(status_code=500, detail=str(e)) from e
        return {"success": True, "webhooks": webhooks, "count": len(webhooks)}

    @app.get("/stats")
    def stats(request: Request) -> dict[str, Any]:
        return {
            "success": True,
            "bot": _bot(request).get_status(),
            "system": {
                "uptime": round(time.monotonic() - request.app.state.started_at, 3),
                "version": __version__,
            },
        }

    @app.post("/setup-webhook")
    async def setup_webhook(request: Request) -> dict[str, Any]:
        s: Settings | None = request.app.state.settings
        if s is None or not s.webhook_url:
            raise HTTPException(status_code=400, detail="WEBHOOK_URL not configured")
        try:
            result = await _bot(request).setup_webhook()
        except HTTPException:
            raise
        except Exception as e:
            logger.error("setup_webhook_failed", error=str(e))
            raise HTTPException(status_code=500, detail=str(e)) from e
        return {"success": True, "message": "Webhook created successfully", "webhook": result}

    @app.delete("/webhook/{webhook_id}")
    async def delete_webhook(webhook_id: str, request: Request) -> dict[str, Any]:
        helius: HeliusClient | None = request.app.state.helius
        if helius is None:
            raise HTTPException(status_code=503, detail="Helius client not initialized")
        try:
            await helius.delete_webhook(webhook_id)
        except Exception as e:
            logger.error("delete_webhook_failed", webhook_id=webhook_id, error=str(e))
            raise HTTPException(status_code=500, detail=str(e)) from e
        return {"success": True, "message": f"Webhook {webhook_id} deleted"}

    @app.post("/simulate", response_model=SimulateResponse)
    async def simulate(request: Request, body: SimulateRequest | None = None) -> SimulateResponse:
        """Push a synthetic buy through the pipeline (disabled in production)."""
        s: Settings | None = request.app.state.settings
        if s is None or s.is_production:
            raise HTTPException(status_code=403, detail="Simulation not allowed in production")
        tx = build_simulated_transaction(s, body or SimulateRequest())
        trade = extract_trade(tx, s.token_mint, s.base_assets, s.token_decimals, large_trade_threshold=s.whale_threshold)
        processed = await _bot(request).process_transaction(tx)
        logger.info("simulated_transaction", signature=tx["signature"], processed=processed)
        return SimulateResponse(
            processed=processed,
            transaction=tx["signature"],
            trade=trade.to_dict() if trade else None,
        )

    @app.get("/metrics", response_class=PlainTextResponse)
    def metrics(request: Request) -> str:
        status = _bot(request).get_status()
        return render_metrics(status, time.monotonic() - request.app.state.started_at)

    @app.exception_handler(StarletteHTTPException)
    def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        """Consistent JSON errors; unknown routes list the available endpoints."""
        content: dict[str, Any] = {"success": False, "error": exc.detail}
        if exc.status_code == 404:
            content = {
                "success": False,
                "error": "Endpoint not found",
                "path": request.url.path,
                "available_endpoints": AVAILABLE_ENDPOINTS,
            }
        return JSONResponse(status_code=exc.status_code, content=content)

    @app.exception_handler(Exception)
    def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        s: Settings | None = request.app.state.settings
        logger.error(
            "unhandled_error",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            error_type=type(exc).__name__,
        )
        message = str(exc) if s is not None and not s.is_production else "Something went wrong"
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "Internal server error", "message": message},
        )

    return app
