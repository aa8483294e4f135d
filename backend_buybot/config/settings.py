"""
Application settings and environment configuration.

Responsibilities:
- Load configuration from environment variables and the project .env file.
- Validate required settings (fatal ConfigError) and provide defaults for optional ones.
- Expose a typed Settings dataclass for the ingestion core, clients and API server.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Mapping

from backend_buybot.config.env import load_buybot_env, resolve_helius_rpc_url
from backend_buybot.core.exceptions import ConfigError
from backend_buybot.solana_listener.models import DEFAULT_BASE_ASSETS

REQUIRED_KEYS = (
    "TELEGRAM_BOT_TOKEN",
    "TELEGRAM_CHANNEL_ID",
    "HELIUS_API_KEY",
    "TOKEN_MINT_ADDRESS",
)

_TRUE_VALUES = ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    """All runtime configuration; values only, loading lives in load_settings()."""

    telegram_bot_token: str
    telegram_channel_id: str
    helius_api_key: str
    token_mint: str
    telegram_error_channel_id: str | None = None
    telegram_retry_attempts: int = 3
    telegram_retry_delay_sec: float = 1.0
    helius_rpc_url: str = ""
    helius_retry_attempts: int = 3
    webhook_url: str | None = None
    webhook_auth_token: str | None = None
    token_symbol: str = "TOKEN"
    token_decimals: int = 6
    base_assets: Mapping[str, int] = field(default_factory=lambda: dict(DEFAULT_BASE_ASSETS))
    """Recognized base-asset mints -> decimals."""
    port: int = 3000
    environment: str = "development"
    enable_polling: bool = False
    poll_interval_sec: float = 30.0
    poll_limit: int = 5
    poll_pause_sec: float = 120.0
    whale_threshold: float = 10.0
    batch_window_sec: int = 0
    max_cache_size: int = 1000
    max_requests_per_minute: int = 50

    @property
    def batching_enabled(self) -> bool:
        return self.batch_window_sec > 0

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def mode(self) -> str:
        """webhook | polling | none."""
        if self.webhook_url:
            return "webhook"
        if self.enable_polling:
            return "polling"
        return "none"


def _get(env: Mapping[str, str], key: str, default: str = "") -> str:
    return (env.get(key) or default).strip()


def _int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = _get(env, key)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigError(f"{key} must be a valid integer, got {raw!r}") from e


def _float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = _get(env, key)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigError(f"{key} must be a valid number, got {raw!r}") from e


def _poll_interval_sec(env: Mapping[str, str]) -> float:
    """POLL_INTERVAL_SEC, else the older POLLING_INTERVAL in milliseconds."""
    if _get(env, "POLL_INTERVAL_SEC") or not _get(env, "POLLING_INTERVAL"):
        return _float(env, "POLL_INTERVAL_SEC", 30.0)
    return _float(env, "POLLING_INTERVAL", 30_000.0) / 1000.0


def _batch_window_sec(env: Mapping[str, str]) -> int:
    """BATCH_WINDOW_SEC, else the older BATCH_WINDOW (also seconds)."""
    key = "BATCH_WINDOW_SEC" if _get(env, "BATCH_WINDOW_SEC") else "BATCH_WINDOW"
    return _int(env, key, 0)


def _base_assets(env: Mapping[str, str]) -> dict[str, int]:
    """
    BASE_ASSET_MINTS: comma-separated mints, optionally mint:decimals.
    Known mints keep their decimals; unknown mints without a suffix default to 9.
    """
    raw = _get(env, "BASE_ASSET_MINTS")
    if not raw:
        return dict(DEFAULT_BASE_ASSETS)
    out: dict[str, int] = {}
    for item in raw.split(","):
        item = item.strip()
        if not item:
            continue
        mint, _, dec = item.partition(":")
        mint = mint.strip()
        if dec.strip():
            try:
                out[mint] = int(dec)
            except ValueError as e:
                raise ConfigError(f"BASE_ASSET_MINTS has invalid decimals for {mint}: {dec!r}") from e
        else:
            out[mint] = DEFAULT_BASE_ASSETS.get(mint, 9)
    if not out:
        raise ConfigError("BASE_ASSET_MINTS must list at least one mint")
    return out


def load_settings(env: Mapping[str, str] | None = None) -> Settings:
    """
    Build Settings from env (defaults to os.environ after loading .env).

    Raises ConfigError for missing required keys or non-numeric values.
    """
    if env is None:
        load_buybot_env()
        env = os.environ

    missing = [k for k in REQUIRED_KEYS if not _get(env, k)]
    if missing:
        raise ConfigError(f"Missing required config: {', '.join(missing)}")

    api_key = _get(env, "HELIUS_API_KEY")
    webhook_url = _get(env, "WEBHOOK_URL") or None
    # Webhook and polling are never both active for the same token
    enable_polling = False if webhook_url else _get(env, "ENABLE_POLLING").lower() in _TRUE_VALUES

    decimals = _int(env, "TOKEN_DECIMALS", 6)
    if decimals < 0:
        raise ConfigError("TOKEN_DECIMALS must be non-negative")
    max_rpm = _int(env, "MAX_REQUESTS_PER_MINUTE", 50)
    if max_rpm <= 0:
        raise ConfigError("MAX_REQUESTS_PER_MINUTE must be positive")

    return Settings(
        telegram_bot_token=_get(env, "TELEGRAM_BOT_TOKEN"),
        telegram_channel_id=_get(env, "TELEGRAM_CHANNEL_ID"),
        helius_api_key=api_key,
        token_mint=_get(env, "TOKEN_MINT_ADDRESS"),
        telegram_error_channel_id=_get(env, "TELEGRAM_ERROR_CHANNEL_ID") or None,
        telegram_retry_attempts=_int(env, "TELEGRAM_RETRY_ATTEMPTS", 3),
        telegram_retry_delay_sec=_float(env, "TELEGRAM_RETRY_DELAY_SEC", 1.0),
        helius_rpc_url=resolve_helius_rpc_url(api_key, _get(env, "HELIUS_RPC_URL")),
        helius_retry_attempts=_int(env, "HELIUS_RETRY_ATTEMPTS", 3),
        webhook_url=webhook_url,
        webhook_auth_token=_get(env, "WEBHOOK_AUTH_TOKEN") or None,
        token_symbol=_get(env, "TOKEN_SYMBOL", "TOKEN"),
        token_decimals=decimals,
        base_assets=_base_assets(env),
        port=_int(env, "PORT", 3000),
        environment=_get(env, "ENVIRONMENT", "development"),
        enable_polling=enable_polling,
        poll_interval_sec=_poll_interval_sec(env),
        poll_limit=_int(env, "POLL_LIMIT", 5),
        poll_pause_sec=_float(env, "POLL_PAUSE_SEC", 120.0),
        whale_threshold=_float(env, "WHALE_THRESHOLD", 10.0),
        batch_window_sec=_batch_window_sec(env),
        max_cache_size=_int(env, "MAX_CACHE_SIZE", 1000),
        max_requests_per_minute=max_rpm,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide settings, loaded once from the environment."""
    return load_settings()
