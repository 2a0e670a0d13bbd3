"""
Rate Limiter
Fixed-window counter per client identity, kept in the shared cache so all
workers see the same counts.
"""

import logging
from typing import Optional

from redis.exceptions import RedisError

from app.core.config import settings
from app.core.errors import RateLimited
from app.services.cache_service import CacheService

logger = logging.getLogger(__name__)


class RateLimiter:
    """Counts operations per identity and window (INCR + EXPIRE)"""

    def __init__(
        self,
        cache: CacheService,
        max_requests: Optional[int] = None,
        window_seconds: Optional[int] = None
    ):
        self.cache = cache
        self.max_requests = max_requests or settings.RATE_LIMIT_MAX_REQUESTS
        self.window_seconds = window_seconds or settings.RATE_LIMIT_WINDOW_SECONDS

    @staticmethod
    def key_for(scope: str, identity: str) -> str:
        return f"ratelimit:{scope}:{identity}"

    async def check(self, scope: str, identity: str) -> int:
        """
        Count one operation and reject it when the window is exhausted.

        A cache outage does not block requests; it is logged and the call
        proceeds.

        Args:
            scope: Operation family (e.g. "analyze", "ask")
            identity: Client identity

        Returns:
            Number of operations in the current window (0 if the cache is down)

        Raises:
            RateLimited: If the limit is exceeded
        """
        key = self.key_for(scope, identity)
        try:
            count = await self.cache.increment(key, self.window_seconds)
        except RedisError as e:
            logger.error(f"Rate limiting unavailable for {key}: {e}")
            return 0

        if count > self.max_requests:
            retry_after = await self.cache.ttl(key)
            logger.warning(f"Rate limit exceeded for {scope}:{identity} ({count}/{self.max_requests})")
            raise RateLimited(
                f"Too many {scope} requests, please try again later.",
                retry_after=retry_after
            )
        return count
