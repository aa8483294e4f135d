"""
Backend BuyBot: swap-event relay for a single Solana token.

Listens for swaps of the tracked token (Helius webhook push or polling),
extracts buy/sell trades, deduplicates and rate-limits them, optionally
batches them, and posts formatted alerts to a Telegram channel.
"""

__version__ = "0.1.0"
