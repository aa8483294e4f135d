"""
Structured logging for Backend BuyBot.

JSON logs with timestamp, event_type and trade context.
Use get_logger() in all modules for aggregation-friendly output.
"""

from backend_buybot.buybot_logging.logger import bind_signature, get_logger, short_id

__all__ = ["bind_signature", "get_logger", "short_id"]
