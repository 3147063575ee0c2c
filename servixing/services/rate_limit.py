"""Fixed-window rate limiting.

Built once at startup by ``build_rate_limiter`` and kept on
``app.state.rate_limiter``. Without ``REDIS_URL`` the process gets a
``NullRateLimiter`` that lets everything through.
"""

from __future__ import annotations

import logging

import redis

from servixing.core.config import Settings

logger = logging.getLogger(__name__)

_KEY_PREFIX = "servixing:rl"


class RateLimiter:
    def hit(self, key: str, limit: int | None = None, window_seconds: int | None = None) -> bool:
        """Count one attempt for ``key``; False once the window is exhausted.

        ``limit`` and ``window_seconds`` override the limiter defaults for this key.
        """
        raise NotImplementedError


class NullRateLimiter(RateLimiter):
    def hit(self, key, limit=None, window_seconds=None) -> bool:
        return True


class RedisRateLimiter(RateLimiter):
    def __init__(self, client: "redis.Redis", limit: int, window_seconds: int, prefix: str = _KEY_PREFIX):
        self.client = client
        self.limit = limit
        self.window_seconds = window_seconds
        self.prefix = prefix

    def hit(self, key, limit=None, window_seconds=None) -> bool:
        k = f"{self.prefix}:{key}"
        try:
            count = self.client.incr(k)
            if count == 1:
                self.client.expire(k, window_seconds or self.window_seconds)
        except redis.RedisError:
            # Redis down: fail open so logins keep working.
            logger.warning("Rate limiter unavailable; allowing %s", key, exc_info=True)
            return True
        return count <= (limit or self.limit)


def build_rate_limiter(settings: Settings) -> RateLimiter:
    if not settings.REDIS_URL:
        logger.info("REDIS_URL not set; rate limiting disabled")
        return NullRateLimiter()
    client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    return RedisRateLimiter(client, settings.LOGIN_RATE_LIMIT, settings.LOGIN_RATE_WINDOW_SECONDS)
