"""
Main entrypoint: load settings, then run the FastAPI server (webhook receiver + bot lifecycle).

The bot service starts inside the app lifespan: webhook registration when
WEBHOOK_URL is set, polling when ENABLE_POLLING is true. Missing or invalid
configuration exits with status 1 before the server starts.

Env: TELEGRAM_BOT_TOKEN, TELEGRAM_CHANNEL_ID, HELIUS_API_KEY, TOKEN_MINT_ADDRESS (required), PORT, LOG_LEVEL, etc.
"""

import os
import sys
import time

# Configure structured JSON logging before other imports that may log
from backend_buybot.buybot_logging import get_logger

logger = get_logger("main")

# Grace period so log lines reach stdout before an abnormal exit
EXIT_FLUSH_DELAY_SEC = 1.0


def _excepthook(exc_type, exc, tb) -> None:
    logger.critical(
        "main_uncaught_exception",
        error=str(exc),
        error_type=exc_type.__name__,
        exc_info=(exc_type, exc, tb),
    )
    time.sleep(EXIT_FLUSH_DELAY_SEC)
    sys.exit(1)


def main() -> None:
    """Validate configuration, then run uvicorn in the main thread."""
    from backend_buybot.config import load_settings
    from backend_buybot.core.exceptions import ConfigError

    sys.excepthook = _excepthook
    try:
        settings = load_settings()
    except ConfigError as e:
        logger.error("main_config_error", message=str(e))
        sys.exit(1)

    logger.info(
        "main_settings_loaded",
        mode=settings.mode,
        token=settings.token_symbol,
        environment=settings.environment,
        batch_window_sec=settings.batch_window_sec,
    )

    from backend_buybot.api_server.server import create_app
    import uvicorn

    app = create_app(settings)
    api_host = os.getenv("API_HOST", "0.0.0.0").strip()
    logger.info("main_server_starting", host=api_host, port=settings.port)
    uvicorn.run(app, host=api_host, port=settings.port, log_level=os.getenv("LOG_LEVEL", "info").lower())


if __name__ == "__main__":
    main()
