"""
Cache Service
Thin JSON cache over redis.asyncio with TTLs, bounded-retry invalidation,
atomic counters and scoped upload staging.
"""

import asyncio
import base64
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Optional
from uuid import uuid4

from redis.asyncio import Redis
from redis.exceptions import RedisError

from app.core.config import settings
from app.core.errors import CacheUnavailable, ExtractionFailure

logger = logging.getLogger(__name__)


DELETED_MARKER = {"deleted": True}


def analysis_key(analysis_id: str) -> str:
    return f"analysis:{analysis_id}"


def owner_list_key(owner_id: str) -> str:
    return f"owner-analyses:{owner_id}"


def upload_key(owner_id: str) -> str:
    return f"upload:{owner_id}:{uuid4()}"


class CacheService:
    """
    JSON cache on top of a shared redis client.

    Reads and writes of cached values are best-effort: a cache outage only
    costs a trip to the durable store. Invalidation is not best-effort; it is
    retried and raises CacheUnavailable when it cannot complete.
    """

    INVALIDATION_RETRY_DELAY = 0.05  # seconds

    def __init__(self, client: Redis, invalidation_attempts: Optional[int] = None):
        """
        Initialize cache service.

        Args:
            client: redis.asyncio client created with decode_responses=True
            invalidation_attempts: Attempts per invalidation (defaults to CACHE_INVALIDATION_ATTEMPTS)
        """
        self.client = client
        self.invalidation_attempts = invalidation_attempts or settings.CACHE_INVALIDATION_ATTEMPTS

    async def get_json(self, key: str) -> Optional[Any]:
        try:
            raw = await self.client.get(key)
        except RedisError as e:
            logger.warning(f"Cache read failed for {key}: {e}")
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning(f"Discarding unreadable cache entry {key}")
            return None

    async def set_json(self, key: str, value: Any, ttl_seconds: int, only_if_absent: bool = False) -> None:
        try:
            await self.client.set(key, json.dumps(value, default=str), ex=ttl_seconds, nx=only_if_absent)
        except RedisError as e:
            logger.warning(f"Cache write failed for {key}: {e}")

    async def _retry(self, description: str, operation: Callable[[], Awaitable[Any]]) -> None:
        last_error: Optional[Exception] = None
        for attempt in range(1, self.invalidation_attempts + 1):
            try:
                await operation()
                return
            except RedisError as e:
                last_error = e
                logger.warning(
                    f"Cache invalidation attempt {attempt}/{self.invalidation_attempts} "
                    f"failed for {description}: {e}"
                )
                if attempt < self.invalidation_attempts:
                    await asyncio.sleep(self.INVALIDATION_RETRY_DELAY * attempt)
        raise CacheUnavailable(f"Could not invalidate cache keys {description}: {last_error}")

    async def invalidate(self, *keys: str) -> None:
        """
        Delete keys, retrying on cache errors.

        Raises:
            CacheUnavailable: If the keys could not be deleted
        """
        if not keys:
            return
        await self._retry(str(list(keys)), lambda: self.client.delete(*keys))

    async def mark_deleted(self, key: str, ttl_seconds: int) -> None:
        """
        Replace a cached value with a deletion marker, retrying on cache errors.

        Writes made with only_if_absent=True cannot overwrite the marker, so a
        read that loaded the record before it was deleted does not put it back.

        Raises:
            CacheUnavailable: If the marker could not be written
        """
        await self._retry(
            f"['{key}']",
            lambda: self.client.set(key, json.dumps(DELETED_MARKER), ex=ttl_seconds)
        )

    async def increment(self, key: str, ttl_seconds: int) -> int:
        """
        Atomically increment a counter and make sure it expires.

        INCR and TTL go out in one transaction. A counter found without an
        expiry (first hit, or an earlier EXPIRE that never landed) gets one.

        Raises:
            RedisError: If the cache is unreachable
        """
        async with self.client.pipeline(transaction=True) as pipe:
            count, remaining = await pipe.incr(key).ttl(key).execute()
        if remaining is None or remaining < 0:
            await self.client.expire(key, ttl_seconds)
        return count

    async def ttl(self, key: str) -> Optional[int]:
        try:
            remaining = await self.client.ttl(key)
        except RedisError:
            return None
        return remaining if remaining and remaining > 0 else None

    @asynccontextmanager
    async def staged_upload(self, owner_id: str, content: bytes) -> AsyncIterator[str]:
        """
        Stage an uploaded file under a temporary key for the duration of a request.

        The key is deleted on every exit path, including errors and cancellation.

        Args:
            owner_id: Uploading owner
            content: Raw file bytes

        Yields:
            The staging key
        """
        key = upload_key(owner_id)
        encoded = base64.b64encode(content).decode("ascii")
        await self.client.set(key, encoded, ex=settings.UPLOAD_STAGING_TTL_SECONDS)
        logger.debug(f"Staged upload {key} ({len(content)} bytes)")
        try:
            yield key
        finally:
            try:
                await self.client.delete(key)
                logger.debug(f"Released staged upload {key}")
            except RedisError as e:
                logger.error(f"Failed to release staged upload {key} (expires in TTL): {e}")

    async def read_staged(self, key: str) -> bytes:
        raw = await self.client.get(key)
        if raw is None:
            raise ExtractionFailure("Uploaded file is no longer available")
        return base64.b64decode(raw)
