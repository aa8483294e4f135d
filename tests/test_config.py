"""
Settings loading from an explicit env mapping.
"""

from __future__ import annotations

import pytest

from backend_buybot.config import load_settings
from backend_buybot.config.env import mask_api_key, resolve_helius_rpc_url
from backend_buybot.core.exceptions import ConfigError
from backend_buybot.solana_listener.models import DEFAULT_BASE_ASSETS, USDC_MINT, WSOL_MINT

REQUIRED = {
    "TELEGRAM_BOT_TOKEN": "123:abc",
    "TELEGRAM_CHANNEL_ID": "@chan",
    "HELIUS_API_KEY": "key123",
    "TOKEN_MINT_ADDRESS": "Mint111",
}


def test_defaults():
    s = load_settings(dict(REQUIRED))
    assert s.token_symbol == "TOKEN"
    assert s.token_decimals == 6
    assert s.port == 3000
    assert s.poll_interval_sec == 30.0
    assert s.poll_limit == 5
    assert s.whale_threshold == 10.0
    assert s.batch_window_sec == 0
    assert s.batching_enabled is False
    assert s.max_cache_size == 1000
    assert s.max_requests_per_minute == 50
    assert dict(s.base_assets) == DEFAULT_BASE_ASSETS
    assert s.helius_rpc_url == "https://mainnet.helius-rpc.com/?api-key=key123"
    assert s.mode == "none"


def test_missing_required_key():
    env = dict(REQUIRED)
    del env["HELIUS_API_KEY"]
    with pytest.raises(ConfigError, match="HELIUS_API_KEY"):
        load_settings(env)


def test_non_numeric_value_is_config_error():
    with pytest.raises(ConfigError, match="POLL_INTERVAL_SEC"):
        load_settings({**REQUIRED, "POLL_INTERVAL_SEC": "soon"})


def test_webhook_url_forces_polling_off():
    s = load_settings({**REQUIRED, "WEBHOOK_URL": "https://bot.example/webhook", "ENABLE_POLLING": "true"})
    assert s.enable_polling is False
    assert s.mode == "webhook"


def test_polling_mode():
    s = load_settings({**REQUIRED, "ENABLE_POLLING": "true", "BATCH_WINDOW_SEC": "30"})
    assert s.mode == "polling"
    assert s.batching_enabled is True


def test_base_asset_mints_parsing():
    s = load_settings({**REQUIRED, "BASE_ASSET_MINTS": f"{WSOL_MINT}, {USDC_MINT}, Custom111:8"})
    assert dict(s.base_assets) == {WSOL_MINT: 9, USDC_MINT: 6, "Custom111": 8}


def test_production_flag():
    assert load_settings({**REQUIRED, "ENVIRONMENT": "production"}).is_production is True


def test_rpc_url_helpers():
    assert resolve_helius_rpc_url("k", "https://custom.rpc") == "https://custom.rpc"
    assert mask_api_key("https://x/?api-key=secret") == "https://x/?api-key=***"


def test_older_interval_and_window_keys():
    s = load_settings({**REQUIRED, "POLLING_INTERVAL": "15000", "BATCH_WINDOW": "20"})
    assert s.poll_interval_sec == 15.0
    assert s.batch_window_sec == 20


def test_current_keys_win_over_older_ones():
    s = load_settings({
        **REQUIRED,
        "POLL_INTERVAL_SEC": "5",
        "POLLING_INTERVAL": "15000",
        "BATCH_WINDOW_SEC": "10",
        "BATCH_WINDOW": "20",
    })
    assert s.poll_interval_sec == 5.0
    assert s.batch_window_sec == 10
