"""
Rate limiter for provider calls.

Token-bucket limiter shared by all concurrent callers of one client.
"""

import asyncio
import logging
import time
from typing import Any, Dict, Optional


logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Token bucket rate limiter.

    The bucket holds up to ``burst_size`` tokens and refills at
    ``requests_per_minute / 60`` tokens per second. Callers wait on
    :meth:`acquire` until a token is available.
    """

    def __init__(self, requests_per_minute: int = 60, burst_size: Optional[int] = None):
        self.requests_per_minute = requests_per_minute
        self.burst_size = burst_size or requests_per_minute
        self.tokens = float(self.burst_size)
        self.last_refill = time.monotonic()

        self.total_requests = 0
        self.delayed_requests = 0

        self._lock = asyncio.Lock()

        logger.info(f"RateLimiter initialized: {requests_per_minute}/min, burst {self.burst_size}")

    async def acquire(self):
        """Wait until a request may be made, then consume one token."""
        async with self._lock:
            self._refill(time.monotonic())

            if self.tokens < 1:
                wait_time = (1 - self.tokens) / self._refill_rate()
                self.delayed_requests += 1
                logger.debug(f"Rate limit reached, waiting {wait_time:.2f} seconds")
                await asyncio.sleep(wait_time)
                self._refill(time.monotonic())

            self.tokens -= 1
            self.total_requests += 1

    def _refill_rate(self) -> float:
        return self.requests_per_minute / 60.0

    def _refill(self, now: float):
        elapsed = now - self.last_refill
        self.tokens = min(float(self.burst_size), self.tokens + elapsed * self._refill_rate())
        self.last_refill = now

    def get_stats(self) -> Dict[str, Any]:
        """Get rate limiter statistics."""
        return {
            "total_requests": self.total_requests,
            "delayed_requests": self.delayed_requests,
            "tokens_remaining": max(0.0, self.tokens),
            "requests_per_minute_limit": self.requests_per_minute,
            "burst_size": self.burst_size
        }
