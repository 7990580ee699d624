import json
import logging
from typing import Any, Callable, Optional

from cachetools import TTLCache
from redis.asyncio import Redis, RedisError

from tasktracker.core.config import Settings

logger = logging.getLogger(__name__)


class CacheLayer:
    """
    Two-tier response cache.

    L1: Process-local TTLCache (optional, disabled when l1_maxsize == 0)
    L2: Redis (shared across workers)

    One instance is built per process at start-up and handed to request
    handlers; nothing here is module-global.

    Features:
    - Get-or-populate with a fixed TTL around an async loader
    - Graceful degradation when Redis is unavailable (reads fall through to
      the loader, invalidations still succeed)
    - Automatic key namespacing

    L1 entries are not invalidated across workers. Leave it disabled when
    running more than one worker.
    """

    def __init__(self, settings: Settings, redis: Redis | None = None):
        self._settings = settings
        self._redis: Redis | None = redis
        self._connected = False
        self.l1: TTLCache | None = None
        self._initialized = False

        # Stats tracking
        self.stats = {
            "l1_hits": 0,
            "l2_hits": 0,
            "misses": 0,
            "errors": 0,
        }

    @property
    def redis_available(self) -> bool:
        return self._redis is not None and self._connected

    async def init_cache(self):
        """Initialize L1 cache and Redis connection."""
        if self._initialized:
            return

        settings = self._settings

        if self.l1 is None and settings.l1_maxsize > 0:
            self.l1 = TTLCache(maxsize=settings.l1_maxsize, ttl=settings.l1_ttl_seconds)

        try:
            if self._redis is None:
                self._redis = Redis.from_url(
                    settings.redis_dsn,
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

        except RedisError as e:
            # Stay uninitialized so the next call retries the connection.
            logger.error(f"Redis initialization failed, caching degraded: {e}")
            self._connected = False
            return

        self._connected = True
        self._initialized = True
        logger.info("Cache layer initialized")

    def _l1_key(self, key: str) -> str:
        """Build namespaced L1 cache key."""
        return f"{self._settings.cache_namespace}l1:{key}"

    def _l2_key(self, key: str) -> str:
        """Build namespaced L2 cache key."""
        return f"{self._settings.cache_namespace}l2:{key}"

    def _serialize(self, value: Any) -> str:
        """Serialize value for storage."""
        try:
            return json.dumps(value, default=str)
        except (TypeError, ValueError) as e:
            logger.error(f"Serialization failed: {e}")
            raise

    def _deserialize(self, raw: str) -> Any:
        """Deserialize value from storage."""
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            # Return raw string if not valid JSON
            return raw

    async def get(
        self,
        key: str,
        loader: Optional[Callable[[], Any]] = None,
        l2_ttl: Optional[int] = None,
    ):
        """
        Retrieve value from cache hierarchy: L1 -> L2 -> loader.

        Args:
            key: Cache key (will be namespaced automatically)
            loader: Async function to load value on cache miss
            l2_ttl: TTL for L2 cache in seconds (uses default if None)

        Returns:
            Cached value or loaded value, or None if not found
        """
        await self.init_cache()

        l1_key = self._l1_key(key)
        l2_key = self._l2_key(key)

        # 1) Check L1 (fast path)
        if self.l1 is not None and l1_key in self.l1:
            self.stats["l1_hits"] += 1
            logger.debug(f"L1 hit key={key}")
            return self.l1[l1_key]

        # 2) Check L2 (Redis). Errors count as a miss.
        if self.redis_available:
            try:
                raw = await self._redis.get(l2_key)
                if raw is not None:
                    self.stats["l2_hits"] += 1
                    logger.debug(f"L2 hit key={key}")
                    value = self._deserialize(raw)
                    if self.l1 is not None:
                        self.l1[l1_key] = value
                    return value
            except RedisError as e:
                logger.error(f"Redis GET error key={key}: {e}")
                self.stats["errors"] += 1

        # 3) Load from source
        self.stats["misses"] += 1
        if loader is None:
            logger.debug(f"Cache miss, no loader key={key}")
            return None

        logger.debug(f"Loading from source key={key}")
        value = await loader()

        if value is None:
            return None

        await self._set_both_layers(key, value, l2_ttl)
        return value

    async def _set_both_layers(self, key: str, value: Any, l2_ttl: int | None = None):
        """Internal method to set both cache layers."""
        if self.l1 is not None:
            self.l1[self._l1_key(key)] = value

        if self.redis_available:
            try:
                ttl = l2_ttl or self._settings.l2_ttl_seconds
                data = self._serialize(value)
                await self._redis.set(self._l2_key(key), data, ex=ttl)
                logger.debug(f"Stored in L2 key={key} ttl={ttl}")
            except RedisError as e:
                logger.error(f"Redis SET error key={key}: {e}")
                self.stats["errors"] += 1

    async def set(self, key: str, value: Any, l2_ttl: Optional[int] = None):
        """
        Explicitly set a value in both cache layers.

        Args:
            key: Cache key (will be namespaced automatically)
            value: Value to cache
            l2_ttl: TTL for L2 cache in seconds
        """
        await self.init_cache()
        await self._set_both_layers(key, value, l2_ttl)

    async def delete(self, key: str):
        """
        Delete a key from both cache layers.

        A Redis failure is logged and swallowed: the write that triggered the
        invalidation has already been committed and must still succeed.
        """
        await self.init_cache()

        if self.l1 is not None:
            self.l1.pop(self._l1_key(key), None)

        if self.redis_available:
            try:
                await self._redis.delete(self._l2_key(key))
                logger.debug(f"Invalidated key={key}")
            except RedisError as e:
                logger.error(f"Redis DELETE error key={key}: {e}")
                self.stats["errors"] += 1

    async def ping(self) -> bool:
        """True when Redis answers a PING."""
        await self.init_cache()
        if not self.redis_available:
            return False
        try:
            return bool(await self._redis.ping())
        except RedisError as e:
            logger.warning(f"Redis ping failed: {e}")
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
        self._connected = False
        self._initialized = False

    def get_stats(self) -> dict:
        """Get cache statistics."""
        total = sum(
            [self.stats["l1_hits"], self.stats["l2_hits"], self.stats["misses"]]
        )

        return {
            **self.stats,
            "redis": self.redis_available,
            "l1_size": len(self.l1) if self.l1 is not None else 0,
            "l1_maxsize": self.l1.maxsize if self.l1 is not None else 0,
            "hit_rate": (
                (self.stats["l1_hits"] + self.stats["l2_hits"]) / total
                if total > 0
                else 0
            ),
        }
