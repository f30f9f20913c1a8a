"""Fixed-window, in-memory request limiter for the view-tracking endpoints."""

import logging
from datetime import timedelta

from throttled import RateLimiterType, Throttled, rate_limiter, store

logger = logging.getLogger(__name__)


class RateLimiter:
    def __init__(self, max_requests: int = 30, window: int = 60):
        self.max_requests = max_requests
        self.window = window
        # Each limiter owns its store; expired windows are dropped by the store itself
        self._throttle = Throttled(
            using=RateLimiterType.FIXED_WINDOW.value,
            quota=rate_limiter.per_duration(timedelta(seconds=window), limit=max_requests),
            store=store.MemoryStore(),
        )

    def hit(self, key: str) -> bool:
        """Count a request; False once `key` has used up its current window."""
        result = self._throttle.limit(key, cost=1)
        if result.limited:
            logger.debug("Rate limit reached for %s", key)
        return not result.limited
