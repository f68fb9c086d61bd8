"""Per-endpoint admission control with Redis storage and in-memory fallback.

Uses a moving (sliding) window from the ``limits`` engine. Redis storage makes
the counters shared and atomic across every worker process; if Redis is not
configured or unreachable at startup the limiter falls back to in-memory
storage (limits won't be shared across workers in that case).

The limiter is handed to the webhook route through the get_rate_limiter
dependency, so tests and alternative deployments can swap it out.
"""

import time
from dataclasses import dataclass

from limits import parse
from limits.storage import storage_from_string
from limits.strategies import MovingWindowRateLimiter
from loguru import logger

from .config import settings

KEY_NAMESPACE = "calrouter:ratelimit"


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_ms: int  # epoch milliseconds when the oldest hit leaves the window


def _resolve_storage() -> str:
    """Try Redis for distributed rate limiting; fall back to in-memory."""
    if settings.rate_limit_backend != "redis" or not settings.redis_url:
        return "memory://"
    try:
        import redis as redis_lib

        r = redis_lib.from_url(settings.redis_url, socket_connect_timeout=2)
        r.ping()
        logger.info("Rate limiter using Redis storage")
        return settings.redis_url
    except Exception:
        logger.warning(
            "Redis unavailable — rate limiter using in-memory storage "
            "(limits won't be shared across workers)"
        )
        return "memory://"


class RateLimiter:
    """Atomic test-and-increment admission, keyed per endpoint."""

    def __init__(self, limit: str | None = None, storage_uri: str | None = None):
        self.item = parse(limit or settings.webhook_rate_limit)
        self.storage = storage_from_string(storage_uri or _resolve_storage())
        self.strategy = MovingWindowRateLimiter(self.storage)

    @property
    def limit(self) -> int:
        return self.item.amount

    def check(self, endpoint_id: str) -> RateLimitDecision:
        """Count one admission for endpoint_id, or deny if the window is full."""
        key = f"endpoint:{endpoint_id}"
        allowed = self.strategy.hit(self.item, KEY_NAMESPACE, key)
        stats = self.strategy.get_window_stats(self.item, KEY_NAMESPACE, key)
        reset_at = stats.reset_time or time.time() + self.item.get_expiry()
        return RateLimitDecision(
            allowed=allowed,
            limit=self.limit,
            remaining=max(0, stats.remaining),
            reset_ms=int(reset_at * 1000),
        )

    def reset(self) -> None:
        self.storage.reset()


_default_limiter: RateLimiter | None = None


def get_rate_limiter() -> RateLimiter:
    """FastAPI dependency: the process-wide limiter, created on first use."""
    global _default_limiter
    if _default_limiter is None:
        _default_limiter = RateLimiter()
    return _default_limiter
