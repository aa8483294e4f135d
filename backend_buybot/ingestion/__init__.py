"""
Ingestion: dedup, outbound request queue, batching and the bot service that ties them together.
"""

from backend_buybot.ingestion.batching import BatchSummary, BatchWindow, summarize_batch
from backend_buybot.ingestion.dedup import DedupCache
from backend_buybot.ingestion.orchestrator import BotService, PollState
from backend_buybot.ingestion.request_queue import RequestQueue

__all__ = [
    "BatchSummary",
    "BatchWindow",
    "BotService",
    "DedupCache",
    "PollState",
    "RequestQueue",
    "summarize_batch",
]
