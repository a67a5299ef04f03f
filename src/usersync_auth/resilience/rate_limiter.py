"""
Permit bucket limiter for identity-provider token requests.

Spaces out direct client-credentials exchanges so bursts of renewals,
credential checks and foreground acquisitions never trip the provider's
rate limits. Each request takes one permit; permits refill continuously
at ``calls_per_second`` up to ``burst_capacity``.

Usage:
    limiter = RateLimiter(RateLimiterConfig(calls_per_second=20, name="token_endpoint"))

    await limiter.acquire()
    response = await session.post(token_url, ...)
"""

import asyncio
import logging
import time
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class RateLimiterConfig:
    # 20/s leaves 50ms between token requests
    calls_per_second: float = 20.0
    # None means one second's worth of permits
    burst_capacity: float | None = 1.0
    enabled: bool = True
    name: str = "token_endpoint"


class RateLimiter:
    """
    Async permit bucket shared by every direct exchange of one coordinator.

    Callers are served one at a time under an asyncio lock, so concurrent
    acquisitions queue in arrival order.
    """

    def __init__(self, config: RateLimiterConfig | None = None):
        self.config = config or RateLimiterConfig()
        if self.config.calls_per_second <= 0:
            raise ValueError("calls_per_second must be positive")

        self._rate = self.config.calls_per_second
        self._capacity = self.config.burst_capacity or self._rate
        self._permits = self._capacity
        self._refilled_at = time.monotonic()
        self._lock = asyncio.Lock()

        self._waits = 0
        self._waited_seconds = 0.0

        if not self.config.enabled:
            logger.debug(f"Rate limiter '{self.config.name}' disabled")

    def _refill(self) -> None:
        now = time.monotonic()
        self._permits = min(self._capacity, self._permits + (now - self._refilled_at) * self._rate)
        self._refilled_at = now

    async def acquire(self, permits: float = 1.0) -> None:
        """
        Take ``permits`` from the bucket, sleeping until they are available.

        Raises:
            ValueError: If more permits are requested than the bucket holds
        """
        if not self.config.enabled:
            return
        if permits > self._capacity:
            raise ValueError(
                f"Requested permits ({permits}) exceeds burst capacity ({self._capacity})"
            )

        async with self._lock:
            self._refill()
            shortfall = permits - self._permits
            if shortfall <= 0:
                self._permits -= permits
                return

            delay = shortfall / self._rate
            logger.debug(
                f"Token endpoint rate limit reached, waiting {delay:.3f}s",
                extra={"rate_limiter": self.config.name, "wait_seconds": delay},
            )
            await asyncio.sleep(delay)

            self._waits += 1
            self._waited_seconds += delay
            self._permits = 0
            self._refilled_at = time.monotonic()

    def get_stats(self) -> dict:
        return {
            "name": self.config.name,
            "enabled": self.config.enabled,
            "calls_per_second": self._rate,
            "burst_capacity": self._capacity,
            "permits_available": self._permits,
            "waits": self._waits,
            "waited_seconds": round(self._waited_seconds, 3),
        }


__all__ = ["RateLimiter", "RateLimiterConfig"]
