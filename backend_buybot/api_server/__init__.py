"""
API server package: HTTP interface for Helius webhook deliveries and bot administration.

Receives pushed transactions, exposes health/stats/metrics, and offers manual
webhook management and (outside production) swap simulation.
"""
