"""
Redis-backed shared cache tier.

Values are whole JSON documents stored with a per-key expiry. Every call is
bounded by a timeout; driver errors and timeouts surface as CacheTierError so
callers can fall through to the next tier.
"""

import asyncio
import json
from typing import Any, Dict, List, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from shared.errors import CacheTierError
from shared.logging import get_logger
from .key_patterns import KeyPattern

DELETE_CHUNK_SIZE = 500
SCAN_COUNT = 1000


class RedisCache:
    """Shared cache tier visible to every process."""

    tier = "shared"

    def __init__(self, redis_url: str, timeout: float = 0.5, client: Optional[redis.Redis] = None):
        self.redis_url = redis_url
        self.timeout = timeout
        self.logger = get_logger("catalog.cache.redis")
        self.redis: Optional[redis.Redis] = client

    async def start(self) -> bool:
        """Connect and ping. An unreachable Redis is logged, not fatal."""
        if self.redis is None:
            self.redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
                health_check_interval=30
            )

        try:
            await self._call("ping", self.redis.ping())
        except CacheTierError as e:
            self.logger.warning("Redis cache unreachable at startup", error=e.message)
            return False

        self.logger.info("Redis cache started")
        return True

    async def stop(self):
        """Close the Redis connection."""
        if self.redis:
            await self.redis.aclose()
            self.logger.info("Redis cache stopped")

    async def _call(self, operation: str, awaitable) -> Any:
        try:
            return await asyncio.wait_for(awaitable, self.timeout)
        except asyncio.TimeoutError:
            raise CacheTierError(self.tier, f"{operation} timed out after {self.timeout}s")
        except (RedisError, OSError) as e:
            raise CacheTierError(self.tier, f"{operation} failed: {e}")

    def _client(self) -> redis.Redis:
        if self.redis is None:
            raise CacheTierError(self.tier, "not started")
        return self.redis

    async def get(self, key: str) -> Optional[Any]:
        """Deserialized value for ``key``, or None when absent."""
        cached_data = await self._call("get", self._client().get(key))
        if cached_data is None:
            return None

        try:
            return json.loads(cached_data)
        except (TypeError, ValueError):
            # A corrupt payload is as good as a miss; drop it so it gets refilled.
            self.logger.warning("Discarding undecodable cached payload", key=key)
            await self._call("delete", self._client().delete(key))
            return None

    async def set(self, key: str, value: Any, ttl: int) -> bool:
        """Serialize and store ``value`` with a ``ttl`` second expiry."""
        if value is None:
            return False
        payload = json.dumps(value, default=str)
        await self._call("set", self._client().set(key, payload, ex=max(1, int(ttl))))
        self.logger.debug("Cached shared value", key=key, ttl=ttl)
        return True

    async def delete(self, *keys: str) -> int:
        """Delete ``keys`` in chunks; returns how many existed."""
        deleted = 0
        client = self._client()
        for start in range(0, len(keys), DELETE_CHUNK_SIZE):
            chunk = keys[start:start + DELETE_CHUNK_SIZE]
            deleted += await self._call("delete", client.delete(*chunk))
        return deleted

    async def keys(self, pattern: KeyPattern) -> List[str]:
        """Enumerate keys covered by ``pattern`` with SCAN (non-blocking for the server).

        The timeout bounds each cursor round-trip, not the whole walk, so a
        large keyspace still enumerates completely.
        """
        client = self._client()
        keys: List[str] = []
        cursor = 0
        while True:
            cursor, page = await self._call(
                "scan", client.scan(cursor=cursor, match=pattern.redis_glob, count=SCAN_COUNT)
            )
            keys.extend(page)
            if int(cursor) == 0:
                return keys

    async def delete_matching(self, pattern: KeyPattern) -> int:
        """Delete every key the pattern covers."""
        if pattern.is_exact:
            return await self.delete(pattern.template)

        keys = await self.keys(pattern)
        if not keys:
            return 0

        deleted = await self.delete(*keys)
        self.logger.info("Invalidated shared keys", pattern=pattern.template, count=deleted)
        return deleted

    async def health_check(self) -> bool:
        """Check Redis health."""
        try:
            await self._call("ping", self._client().ping())
            return True
        except CacheTierError:
            return False

    async def get_cache_stats(self) -> Dict[str, Any]:
        """Server-side hit/miss counters."""
        info = await self._call("info", self._client().info())
        hits = info.get("keyspace_hits", 0)
        misses = info.get("keyspace_misses", 0)
        total = hits + misses
        return {
            "redis_version": info.get("redis_version"),
            "used_memory": info.get("used_memory_human"),
            "keyspace_hits": hits,
            "keyspace_misses": misses,
            "hit_rate": hits / total if total else 0.0,
        }
