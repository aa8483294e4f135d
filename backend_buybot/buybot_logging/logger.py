"""
Structured logging for the buy bot: one JSON line per event.

Every line carries event_type, level, logger, an ISO timestamp and the
service name. Base58 ids (signatures, mints, owners) are shortened and
credential-like keys are masked by processors, so call sites can pass raw
values as keyword context.

Depends only on stdlib logging and structlog; nothing from backend_buybot
is imported here, so any module can import it first.
"""

from __future__ import annotations

import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

import structlog

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_LEVEL_VALUE = getattr(logging, LOG_LEVEL, logging.INFO)

# json (default) or console
LOG_FORMAT = os.getenv("LOG_FORMAT", "json").strip().lower()

SERVICE_NAME = "backend_buybot"
SHORT_ID_LEN = 16
ID_KEYS = frozenset({"signature", "mint", "token_mint", "owner", "webhook_id"})
SECRET_KEYS = frozenset({"api_key", "bot_token", "auth_header", "authorization"})


def short_id(value: str | None, keep: int = SHORT_ID_LEN) -> str:
    """Shorten long base58 ids for log lines."""
    if not value:
        return ""
    return value[:keep] + "..." if len(value) > keep else value


def _stamp(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    event_dict.setdefault("timestamp", datetime.now(timezone.utc).isoformat())
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def _event_type(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """structlog's 'event' becomes event_type."""
    if "event" in event_dict and "event_type" not in event_dict:
        event_dict["event_type"] = event_dict.pop("event")
    return event_dict


def _shorten_ids(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    for key in ID_KEYS.intersection(event_dict):
        value = event_dict[key]
        if isinstance(value, str):
            event_dict[key] = short_id(value)
    return event_dict


def _mask_secrets(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    for key in SECRET_KEYS.intersection(event_dict):
        if event_dict[key]:
            event_dict[key] = "***"
    return event_dict


def build_processors(log_format: str = LOG_FORMAT) -> list[Any]:
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        _stamp,
        _event_type,
        _shorten_ids,
        _mask_secrets,
    ]
    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer(default=str))
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))
    return processors


def configure_structlog() -> None:
    structlog.configure(
        processors=build_processors(),
        wrapper_class=structlog.make_filtering_bound_logger(LOG_LEVEL_VALUE),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )


if not structlog.is_configured():
    configure_structlog()


def get_logger(name: str) -> structlog.BoundLogger:
    """
    Structured logger for a module.

        logger = get_logger(__name__)
        logger.info("trade_notified", signature=sig, base_amount=2.0, direction="BUY")

    renders as {"event_type": "trade_notified", "signature": "5abc...", ...}.
    """
    return structlog.get_logger(name).bind(logger=name)


def bind_signature(signature: str) -> structlog.BoundLogger:
    """Logger with the transaction signature bound to every call."""
    return get_logger("backend_buybot.trade").bind(signature=signature)
