"""
Rate limiter configuration using SlowAPI.

Counters share Redis with the arena when REDIS_URL is set, so limits hold
across instances; otherwise (or while Redis is down) they are per process.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

import settings

# Create a limiter instance that uses the client's IP address
limiter = Limiter(
    key_func=get_remote_address,
    storage_uri=settings.REDIS_URL or "memory://",
    in_memory_fallback_enabled=bool(settings.REDIS_URL),
    enabled=settings.RATE_LIMIT_ENABLED,
)
