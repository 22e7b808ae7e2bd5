"""HTTP surface - webhook submission, stats and metrics."""

from telehook.server.api import RelayServer, split_identifier
from telehook.server.ratelimit import ClientRateLimiter, rate_limit_middleware

__all__ = [
    "ClientRateLimiter",
    "RelayServer",
    "rate_limit_middleware",
    "split_identifier",
]
