# coding: utf-8
"""
In-process key-value store with TTL

Same interface as RedisManager. Used as the fallback when Redis is down
(CACHE_FALLBACK_TO_MEMORY) and as the store in tests. Only safe within a
single process: every operation runs without awaiting, so it is atomic with
respect to other coroutines on the same event loop.
"""
import json
import time
from typing import Any, Callable, Dict, Optional, Protocol, Tuple


class KeyValueStore(Protocol):
    """What the engine needs from a lock/state store."""

    async def get(self, key: str, default: Any = None) -> Any: ...

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool: ...

    async def set_if_absent(self, key: str, value: Any, ttl: int) -> bool: ...

    async def delete(self, key: str) -> bool: ...

    async def exists(self, key: str) -> bool: ...


def serialize(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False, default=str)


def deserialize(value: str) -> Any:
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return value


class MemoryStore:
    """
    Dict-backed store with lazy TTL eviction

    Usage:
        >>> store = MemoryStore()
        >>> await store.set_if_absent("lock", "1", ttl=5)
        True
        >>> await store.set_if_absent("lock", "1", ttl=5)
        False
    """

    DEFAULT_TTL = 300

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._data: Dict[str, Tuple[str, float]] = {}
        self._clock = clock

    def _alive(self, key: str) -> Optional[str]:
        item = self._data.get(key)
        if item is None:
            return None
        value, expires_at = item
        if expires_at <= self._clock():
            del self._data[key]
            return None
        return value

    async def get(self, key: str, default: Any = None) -> Any:
        value = self._alive(key)
        if value is None:
            return default
        return deserialize(value)

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        ttl = ttl or self.DEFAULT_TTL
        self._data[key] = (serialize(value), self._clock() + ttl)
        return True

    async def set_if_absent(self, key: str, value: Any, ttl: int) -> bool:
        if self._alive(key) is not None:
            return False
        self._data[key] = (serialize(value), self._clock() + ttl)
        return True

    async def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    async def exists(self, key: str) -> bool:
        return self._alive(key) is not None

    async def get_ttl(self, key: str) -> Optional[int]:
        if self._alive(key) is None:
            return None
        return max(int(self._data[key][1] - self._clock()), 0)

    def clear(self) -> None:
        self._data.clear()

    def __len__(self) -> int:
        return len([k for k in list(self._data) if self._alive(k) is not None])
