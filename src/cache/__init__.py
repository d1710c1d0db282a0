# coding: utf-8
"""
Cache module: Redis-backed locks and conversation state
"""

from src.cache.redis_manager import RedisManager, get_redis_manager
from src.cache.memory_store import MemoryStore, KeyValueStore
from src.cache.cache_keys import CacheKeyBuilder

__all__ = ["RedisManager", "get_redis_manager", "MemoryStore", "KeyValueStore", "CacheKeyBuilder"]
