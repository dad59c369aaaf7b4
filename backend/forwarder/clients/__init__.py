"""Ledger clients."""

from forwarder.clients.tron_rest import RateLimiter, TronRestClient

__all__ = [
    "RateLimiter",
    "TronRestClient",
]
