"""
Environment variable loading for BuyBot.

- Loads .env from project root when available (real env vars win).
- HELIUS_RPC_URL: explicit RPC endpoint; falls back to the Helius mainnet
  RPC built from HELIUS_API_KEY.
"""

from __future__ import annotations

from pathlib import Path

from dotenv import load_dotenv

# Project root: config is backend_buybot/config/, root is 2 levels up
_CONFIG_DIR = Path(__file__).resolve().parent
_BACKEND_DIR = _CONFIG_DIR.parent
_ROOT = _BACKEND_DIR.parent
_ENV_PATH = _ROOT / ".env"

HELIUS_API_BASE_URL = "https://api.helius.xyz"
HELIUS_MAINNET_URL_TEMPLATE = "https://mainnet.helius-rpc.com/?api-key={key}"


def load_buybot_env() -> None:
    """Load .env from project root. Safe to call multiple times."""
    load_dotenv(_ENV_PATH, override=False)


def resolve_helius_rpc_url(api_key: str, explicit_url: str | None = None) -> str:
    """Explicit HELIUS_RPC_URL wins; otherwise the mainnet RPC for api_key."""
    url = (explicit_url or "").strip()
    if url:
        return url
    return HELIUS_MAINNET_URL_TEMPLATE.format(key=api_key.strip())


def mask_api_key(url: str) -> str:
    """Hide the api-key query value for logging."""
    if "api-key=" in url:
        return url.split("api-key=")[0] + "api-key=***"
    return url
