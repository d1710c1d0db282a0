# coding: utf-8
"""
Redis Manager for locks and conversation state

Provides async Redis client with connection pooling and graceful degradation:
when Redis is unreachable and CACHE_FALLBACK_TO_MEMORY is on, every call is
served by an in-process MemoryStore instead.
"""
from typing import Any, Optional

from redis.asyncio import Redis, ConnectionPool
from redis.exceptions import RedisError, ConnectionError as RedisConnectionError
from loguru import logger

from config.cache_config import CacheConfig, CacheTTL
from src.cache.memory_store import MemoryStore, serialize, deserialize


class RedisManager:
    """
    Redis key-value manager with connection pooling

    Features:
    - Async Redis operations
    - SET NX EX for idempotency locks
    - JSON serialization
    - In-memory fallback when Redis is unavailable

    Usage:
        >>> redis_mgr = RedisManager()
        >>> await redis_mgr.initialize()
        >>> await redis_mgr.set_if_absent("lock", "1", ttl=5)
        True
        >>> await redis_mgr.close()
    """

    def __init__(self, url: Optional[str] = None, fallback_to_memory: Optional[bool] = None):
        """Initialize Redis manager"""
        self._url = url or CacheConfig.REDIS_URL
        self._fallback_enabled = (
            CacheConfig.CACHE_FALLBACK_TO_MEMORY if fallback_to_memory is None else fallback_to_memory
        )
        self._pool: Optional[ConnectionPool] = None
        self._client: Optional[Redis] = None
        self._fallback: Optional[MemoryStore] = None
        self._is_available = False
        self._stats = {
            "errors": 0,
            "sets": 0,
            "deletes": 0,
            "locks_acquired": 0,
            "locks_rejected": 0,
        }

    async def initialize(self) -> bool:
        """
        Initialize Redis connection pool

        Returns:
            True if Redis is available, False otherwise (fallback in use)
        """
        try:
            self._pool = ConnectionPool.from_url(
                self._url,
                max_connections=CacheConfig.REDIS_MAX_CONNECTIONS,
                decode_responses=True,
                socket_connect_timeout=CacheConfig.REDIS_SOCKET_CONNECT_TIMEOUT,
                socket_timeout=CacheConfig.REDIS_SOCKET_TIMEOUT,
            )
            self._client = Redis(connection_pool=self._pool)
            await self._client.ping()

            self._is_available = True
            logger.info(
                f"Redis initialized successfully (max_connections={CacheConfig.REDIS_MAX_CONNECTIONS})"
            )
            return True

        except RedisConnectionError as e:
            logger.warning(f"Redis connection failed: {e}")
        except Exception as e:
            logger.error(f"Unexpected error initializing Redis: {e}")

        self._is_available = False
        if self._fallback_enabled:
            self._fallback = MemoryStore()
            logger.warning("Using in-memory store instead of Redis (single process only)")
        return False

    async def close(self):
        """Close Redis connections gracefully"""
        if self._client:
            try:
                await self._client.aclose()
                logger.info("Redis connection closed")
            except Exception as e:
                logger.error(f"Error closing Redis connection: {e}")

        if self._pool:
            try:
                await self._pool.aclose()
                logger.debug("Redis connection pool closed")
            except Exception as e:
                logger.error(f"Error closing Redis pool: {e}")

        self._is_available = False

    async def get(self, key: str, default: Any = None) -> Any:
        """
        Get value from the store

        Args:
            key: Cache key
            default: Default value if key not found

        Returns:
            Stored value (deserialized from JSON) or default
        """
        if not self._is_available:
            if self._fallback is not None:
                return await self._fallback.get(key, default)
            return default

        try:
            value = await self._client.get(key)
            if value is None:
                return default
            return deserialize(value)

        except RedisError as e:
            self._stats["errors"] += 1
            logger.warning(f"Redis GET error for key '{key}': {e}")
            return default

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """
        Set value with TTL

        Args:
            key: Cache key
            value: Value to store (JSON-serialized unless already a string)
            ttl: Time-to-live in seconds (default: CacheTTL.DEFAULT)

        Returns:
            True if successful, False otherwise
        """
        if ttl is None:
            ttl = CacheTTL.DEFAULT

        if not self._is_available:
            if self._fallback is not None:
                return await self._fallback.set(key, value, ttl)
            return False

        try:
            await self._client.setex(key, ttl, serialize(value))
            self._stats["sets"] += 1
            logger.debug(f"Cache SET: {key} (TTL={ttl}s)")
            return True

        except RedisError as e:
            self._stats["errors"] += 1
            logger.warning(f"Redis SET error for key '{key}': {e}")
            return False

    async def set_if_absent(self, key: str, value: Any, ttl: int) -> bool:
        """
        Atomically set key only if it does not exist (SET NX EX)

        Args:
            key: Lock key
            value: Marker value
            ttl: Lock lifetime in seconds

        Returns:
            True if the key was set (lock acquired), False if it already existed.
            Without Redis and without fallback the lock is granted; the
            database constraints still apply.
        """
        if not self._is_available:
            if self._fallback is not None:
                return await self._fallback.set_if_absent(key, value, ttl)
            logger.warning(f"Lock store unavailable, granting '{key}' without lock")
            return True

        try:
            acquired = await self._client.set(key, serialize(value), ex=ttl, nx=True)
            if acquired:
                self._stats["locks_acquired"] += 1
                return True
            self._stats["locks_rejected"] += 1
            return False

        except RedisError as e:
            self._stats["errors"] += 1
            logger.warning(f"Redis SET NX error for key '{key}': {e}")
            return True

    async def delete(self, key: str) -> bool:
        """
        Delete key

        Args:
            key: Cache key to delete

        Returns:
            True if key was deleted, False otherwise
        """
        if not self._is_available:
            if self._fallback is not None:
                return await self._fallback.delete(key)
            return False

        try:
            result = await self._client.delete(key)
            self._stats["deletes"] += 1
            return result > 0

        except RedisError as e:
            self._stats["errors"] += 1
            logger.warning(f"Redis DELETE error for key '{key}': {e}")
            return False

    async def exists(self, key: str) -> bool:
        """Check if key exists"""
        if not self._is_available:
            if self._fallback is not None:
                return await self._fallback.exists(key)
            return False

        try:
            return await self._client.exists(key) > 0
        except RedisError as e:
            logger.warning(f"Redis EXISTS error for key '{key}': {e}")
            return False

    async def get_ttl(self, key: str) -> Optional[int]:
        """
        Get remaining TTL for a key

        Returns:
            Remaining TTL in seconds, or None if key doesn't exist or has no TTL
        """
        if not self._is_available:
            if self._fallback is not None:
                return await self._fallback.get_ttl(key)
            return None

        try:
            ttl = await self._client.ttl(key)
            return ttl if ttl > 0 else None
        except RedisError as e:
            logger.warning(f"Redis TTL error for key '{key}': {e}")
            return None

    def get_stats(self) -> dict:
        """Lock and error counters"""
        return {
            **self._stats,
            "is_available": self._is_available,
            "fallback": self._fallback is not None,
        }

    def is_available(self) -> bool:
        """Check if Redis is available"""
        return self._is_available


# Global Redis manager instance
_redis_manager: Optional[RedisManager] = None


def get_redis_manager() -> RedisManager:
    """
    Get global Redis manager instance (singleton)

    Only the process entry point uses this; engine components receive the
    store through their constructor.
    """
    global _redis_manager
    if _redis_manager is None:
        _redis_manager = RedisManager()
    return _redis_manager
