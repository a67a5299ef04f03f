"""Resilience primitives for outbound identity-provider calls."""

from usersync_auth.resilience.rate_limiter import RateLimiter, RateLimiterConfig

__all__ = ["RateLimiter", "RateLimiterConfig"]
