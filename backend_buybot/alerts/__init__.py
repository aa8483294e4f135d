"""
Alerting: Telegram message formatting and the notifier that sends them.
"""

from backend_buybot.alerts.notifier import TelegramNotifier, is_retryable_telegram_error, telegram_retry_after

__all__ = ["TelegramNotifier", "is_retryable_telegram_error", "telegram_retry_after"]
