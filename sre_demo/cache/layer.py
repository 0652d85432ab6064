import fnmatch
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from cachetools import TTLCache
from redis.asyncio import Redis, RedisError

from sre_demo.core.config import Settings, get_settings

logger = logging.getLogger(__name__)


class CacheStatus(str, Enum):
    HIT = "hit"
    MISS = "miss"
    # Transport failure; callers treat it exactly like a miss.
    ERROR = "error"


@dataclass(frozen=True)
class CacheResult:
    status: CacheStatus
    value: Any = None

    @property
    def hit(self) -> bool:
        return self.status is CacheStatus.HIT


MISS = CacheResult(CacheStatus.MISS)


class CacheLayer:
    """
    Two-tier cache that never fails its caller.

    L1: Process-local TTLCache (fast, limited size)
    L2: Redis (shared, larger capacity)

    Every Redis call is wrapped: a transport failure is logged, counted and
    reported as a miss (reads) or ignored (writes). When Redis cannot be
    reached at all the layer runs on L1 only and retries the connection on
    the next call.
    """

    def __init__(self, settings: Settings | None = None, redis: Redis | None = None):
        self._settings = settings
        self._redis = redis
        self.l1: TTLCache | None = None
        self._initialized = False

        # Stats tracking
        self.stats = {
            "l1_hits": 0,
            "l2_hits": 0,
            "misses": 0,
            "errors": 0,
        }

    async def init_cache(self):
        """Initialize settings, L1 cache, and Redis connection."""
        if self._initialized:
            return

        if self._settings is None:
            self._settings = get_settings()

        settings = self._settings

        # Initialize L1 Cache
        if self.l1 is None:
            self.l1 = TTLCache(maxsize=settings.l1_maxsize, ttl=settings.l1_ttl_seconds)

        try:
            # Initialize Redis connection with proper config
            if self._redis is None:
                self._redis = Redis.from_url(
                    settings.redis_connection_string,
                    encoding="utf-8",
                    decode_responses=True,
                    max_connections=settings.redis_pool_size,
                    socket_connect_timeout=5,
                    socket_keepalive=True,
                    health_check_interval=30,
                )

                # Verify connection
                await self._redis.ping()
                logger.info("Redis connection established")

            self._initialized = True
            logger.info("Cache layer initialized")

        except (RedisError, OSError) as e:
            logger.error(f"Redis initialization failed, running L1 only: {e}")
            await self._discard_redis()

    async def _discard_redis(self):
        redis, self._redis = self._redis, None
        if redis is not None:
            try:
                await redis.aclose()
            except (RedisError, OSError):
                pass

    def _l1_key(self, key: str) -> str:
        """Build namespaced L1 cache key."""
        return f"{self._settings.cache_namespace}l1:{key}"

    def _l2_key(self, key: str) -> str:
        """Build namespaced L2 cache key."""
        return f"{self._settings.cache_namespace}l2:{key}"

    def _serialize(self, value: Any) -> str:
        return json.dumps(value, default=str)

    def _deserialize(self, raw: str) -> Any:
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            # Return raw string if not valid JSON
            return raw

    async def get(self, key: str) -> CacheResult:
        """
        Look a key up in L1, then L2.

        Returns:
            CacheResult with status HIT (value set), MISS, or ERROR when
            Redis failed; ERROR carries no value and means "go to the store".
        """
        await self.init_cache()

        l1_key = self._l1_key(key)

        # 1) Check L1 (fast path)
        if l1_key in self.l1:
            self.stats["l1_hits"] += 1
            logger.debug(f"L1 hit: {key}")
            return CacheResult(CacheStatus.HIT, self.l1[l1_key])

        # 2) Check L2 (Redis)
        if self._redis:
            try:
                raw = await self._redis.get(self._l2_key(key))
            except RedisError as e:
                logger.error(f"Cache get error for key {key}: {e}")
                self.stats["errors"] += 1
                return CacheResult(CacheStatus.ERROR)

            if raw is not None:
                self.stats["l2_hits"] += 1
                logger.debug(f"L2 hit: {key}")
                value = self._deserialize(raw)
                # Populate L1
                self.l1[l1_key] = value
                return CacheResult(CacheStatus.HIT, value)

        self.stats["misses"] += 1
        return MISS

    async def set(self, key: str, value: Any, ttl: int):
        """
        Store a value in both cache layers.

        Args:
            key: Cache key (will be namespaced automatically)
            value: JSON-serialisable value
            ttl: Redis TTL in seconds; L1 entries expire on the L1 TTL
        """
        await self.init_cache()

        self.l1[self._l1_key(key)] = value

        if self._redis:
            try:
                await self._redis.set(self._l2_key(key), self._serialize(value), ex=ttl)
                logger.debug(f"Stored in L2: {key} (ttl={ttl}s)")
            except RedisError as e:
                logger.error(f"Cache set error for key {key}: {e}")
                self.stats["errors"] += 1

    async def delete(self, key: str):
        """
        Delete a key from both cache layers.

        Deleting from Redis is what prevents stale reads in other workers.
        """
        await self.init_cache()

        self.l1.pop(self._l1_key(key), None)

        if self._redis:
            try:
                await self._redis.delete(self._l2_key(key))
                logger.debug(f"Deleted from both layers: {key}")
            except RedisError as e:
                logger.error(f"Cache delete error for key {key}: {e}")
                self.stats["errors"] += 1

    async def delete_pattern(self, pattern: str):
        """Delete every key matching a glob pattern from both layers."""
        await self.init_cache()

        l1_pattern = self._l1_key(pattern)
        for l1_key in [k for k in list(self.l1.keys()) if fnmatch.fnmatchcase(k, l1_pattern)]:
            self.l1.pop(l1_key, None)

        if not self._redis:
            return

        try:
            l2_pattern = self._l2_key(pattern)
            cursor = 0
            deleted_count = 0

            while True:
                cursor, keys = await self._redis.scan(cursor, match=l2_pattern, count=100)
                if keys:
                    await self._redis.delete(*keys)
                    deleted_count += len(keys)
                if cursor == 0:
                    break

            logger.debug(f"Pattern delete completed: {pattern} ({deleted_count} keys)")

        except RedisError as e:
            logger.error(f"Cache delete pattern error for pattern {pattern}: {e}")
            self.stats["errors"] += 1

    async def exists(self, key: str) -> bool:
        await self.init_cache()

        if self._l1_key(key) in self.l1:
            return True

        if self._redis:
            try:
                return await self._redis.exists(self._l2_key(key)) == 1
            except RedisError as e:
                logger.error(f"Cache exists error for key {key}: {e}")
                self.stats["errors"] += 1
        return False

    async def ping(self) -> bool:
        """True only when Redis itself answers."""
        await self.init_cache()

        if not self._redis:
            return False
        try:
            return bool(await self._redis.ping())
        except RedisError as e:
            logger.error(f"Redis health check failed: {e}")
            return False

    async def close(self):
        """Graceful shutdown of cache connections."""
        if self._redis:
            try:
                await self._redis.aclose()
                logger.info("Redis connection closed")
            except RedisError as e:
                logger.error(f"Error closing Redis: {e}")
        self._redis = None
        self._initialized = False

    def get_stats(self) -> dict:
        total = sum([self.stats["l1_hits"], self.stats["l2_hits"], self.stats["misses"]])

        return {
            **self.stats,
            "l1_size": len(self.l1) if self.l1 else 0,
            "l1_maxsize": self.l1.maxsize if self.l1 else 0,
            "redis_connected": self._redis is not None,
            "hit_rate": (
                (self.stats["l1_hits"] + self.stats["l2_hits"]) / total
                if total > 0
                else 0
            ),
        }


# Cache layer instance (singleton per worker)
cache_layer = CacheLayer()


def get_cache() -> CacheLayer:
    return cache_layer
