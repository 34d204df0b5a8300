"""
Retry backoff bounds for the routing retry queue.

fail_routing computes the delay in SQL from these bounds:
min(base * 2^(attempt-1), cap) scaled by a random factor in [0.5, 1.0].
"""

from dataclasses import dataclass, field

from leadrouter.config import settings


@dataclass
class RetryBackoffPolicy:
    base_seconds: int = field(default_factory=lambda: settings.ROUTING_RETRY_BASE_SECONDS)
    max_seconds: int = field(default_factory=lambda: settings.ROUTING_RETRY_MAX_SECONDS)
