"""
External API clients: Helius (transactions, holders, webhooks) and SOL price.
"""

from backend_buybot.clients.helius import HeliusClient
from backend_buybot.clients.price import PriceService

__all__ = ["HeliusClient", "PriceService"]
