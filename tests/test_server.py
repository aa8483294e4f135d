"""
FastAPI routes with an injected BotService built on fakes (lifespan not run).
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from backend_buybot.api_server.middleware import InboundRateLimiter
from backend_buybot.api_server.server import create_app, render_metrics
from backend_buybot.ingestion import BotService, RequestQueue
from conftest import FakeNotifier, FakeSource, build_settings, make_swap_tx


def _app(**overrides):
    settings = build_settings(**overrides)
    source = FakeSource()
    notifier = FakeNotifier()
    bot = BotService(
        settings,
        source=source,
        notifier=notifier,
        enrichment=source,
        request_queue=RequestQueue(100, inter_task_delay_sec=0),
    )
    app = create_app(settings, bot, notifier=notifier, helius=source)
    return app, bot, notifier


@pytest.fixture
def client():
    app, _, _ = _app()
    return TestClient(app)


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "healthy"
    assert body["config"]["token"] == "TEST"
    assert body["polling_state"] == "stopped"
    assert body["processed_transactions"] == 0


def test_webhook_processes_delivery():
    app, bot, notifier = _app()
    client = TestClient(app)
    resp = client.post("/webhook", json=[make_swap_tx("w1"), {"signature": "junk"}])
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["processed"] == 1
    assert body["total"] == 2
    assert [t.signature for t in notifier.trades] == ["w1"]
    assert bot.dedup.has("w1")


def test_webhook_rejects_non_array(client):
    resp = client.post("/webhook", json={"signature": "x"})
    assert resp.status_code == 400
    assert resp.json()["success"] is False


def test_webhook_rejects_invalid_json(client):
    resp = client.post("/webhook", content=b"{not json", headers={"content-type": "application/json"})
    assert resp.status_code == 400


def test_webhook_auth_header():
    app, _, _ = _app(webhook_auth_token="secret")
    client = TestClient(app)
    assert client.post("/webhook", json=[]).status_code == 401
    assert client.post("/webhook", json=[], headers={"Authorization": "wrong"}).status_code == 401
    assert client.post("/webhook", json=[], headers={"Authorization": "secret"}).status_code == 200


def test_webhook_inbound_rate_limit():
    app, _, _ = _app()
    app.state.webhook_limiter = InboundRateLimiter(max_requests=2)
    client = TestClient(app)
    codes = [client.post("/webhook", json=[]).status_code for _ in range(3)]
    assert codes == [200, 200, 429]


def test_inbound_limiter_window_resets():
    now = [0.0]
    limiter = InboundRateLimiter(max_requests=1, window_sec=60, clock=lambda: now[0])
    assert limiter.allow("1.2.3.4") is True
    assert limiter.allow("1.2.3.4") is False
    assert limiter.allow("5.6.7.8") is True
    now[0] = 61.0
    assert limiter.allow("1.2.3.4") is True


def test_simulate_in_development():
    app, _, notifier = _app()
    client = TestClient(app)
    resp = client.post("/simulate", json={"solAmount": 3_000_000_000, "tokenAmount": 1000})
    assert resp.status_code == 200
    body = resp.json()
    assert body["processed"] is True
    assert body["transaction"].startswith("mock_")
    assert body["trade"]["direction"] == "BUY"
    assert body["trade"]["base_amount"] == 3.0
    assert body["trade"]["signature"] == body["transaction"]
    trade = notifier.trades[0]
    assert trade.base_amount == 3.0
    assert trade.token_amount == 1000.0
    assert trade.venue == "Raydium"


def test_simulate_forbidden_in_production():
    app, _, _ = _app(environment="production")
    resp = TestClient(app).post("/simulate")
    assert resp.status_code == 403


def test_stats_and_metrics():
    app, bot, _ = _app()
    client = TestClient(app)
    client.post("/webhook", json=[make_swap_tx("m1")])
    stats = client.get("/stats").json()
    assert stats["bot"]["stats"]["transaction_count"] == 1
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/plain")
    assert "bot_processed_transactions_total 1" in resp.text
    assert "bot_cache_capacity 1000" in resp.text
    assert "# TYPE bot_total_holders gauge" in resp.text


def test_render_metrics_defaults():
    text = render_metrics({}, 1.5)
    assert "bot_cache_size 0" in text
    assert "bot_uptime_seconds 1.5" in text


def test_webhook_management_routes():
    app, _, _ = _app(webhook_url="https://bot.test/webhook")
    client = TestClient(app)
    assert client.get("/webhooks").json()["count"] == 1
    created = client.post("/setup-webhook").json()
    assert created["webhook"]["webhookID"] == "wh-1"
    assert client.delete("/webhook/wh-1").json()["success"] is True


def test_setup_webhook_requires_url(client):
    assert client.post("/setup-webhook").status_code == 400


def test_test_message(client):
    body = client.get("/test").json()
    assert body["success"] is True
    assert body["channel_id"] == "@test_channel"


def test_unknown_route_lists_endpoints(client):
    resp = client.get("/nope")
    assert resp.status_code == 404
    body = resp.json()
    assert body["error"] == "Endpoint not found"
    assert "POST /webhook" in body["available_endpoints"]


def test_unhandled_error_returns_json_500():
    app, bot, _ = _app()

    def broken_status():
        raise RuntimeError("status exploded")

    bot.get_status = broken_status
    client = TestClient(app, raise_server_exceptions=False)
    resp = client.get("/stats")
    assert resp.status_code == 500
    assert resp.json()["error"] == "Internal server error"
    assert resp.json()["message"] == "status exploded"
