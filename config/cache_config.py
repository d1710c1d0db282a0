# coding: utf-8
"""
Cache configuration for Redis TTL (Time To Live) settings

Locks and conversation drafts are the only things kept in Redis; everything
with money attached lives in the database.
"""
import os


class CacheTTL:
    """
    Time-to-live (TTL) settings for different key types in seconds
    """

    SEND_LOCK = int(os.getenv("CACHE_TTL_SEND_LOCK", "5"))
    """Double-submit window for identical packet creation requests"""

    CLAIM_LOCK = int(os.getenv("CACHE_TTL_CLAIM_LOCK", "3"))
    """Per (packet, claimant) lock against doubled button taps"""

    CALLBACK_DEDUP = int(os.getenv("CACHE_TTL_CALLBACK_DEDUP", "30"))
    """Telegram callback query ids already handled"""

    CONVERSATION = int(os.getenv("CACHE_TTL_CONVERSATION", "300"))
    """Creation dialogue draft - 5 minutes of inactivity"""

    DEFAULT = int(os.getenv("CACHE_TTL_DEFAULT", "300"))
    """Default TTL for unspecified data - 5 minutes"""


class CacheConfig:
    """
    Redis connection and behavior configuration
    """

    REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    """Redis connection URL"""

    REDIS_MAX_CONNECTIONS = int(os.getenv("REDIS_MAX_CONNECTIONS", "50"))
    """Maximum connections in pool"""

    REDIS_SOCKET_TIMEOUT = int(os.getenv("REDIS_SOCKET_TIMEOUT", "5"))
    """Socket timeout in seconds"""

    REDIS_SOCKET_CONNECT_TIMEOUT = int(os.getenv("REDIS_SOCKET_CONNECT_TIMEOUT", "5"))
    """Socket connect timeout in seconds"""

    CACHE_NAMESPACE = os.getenv("CACHE_NAMESPACE", "luckymoney")
    """Namespace prefix for all cache keys"""

    CACHE_KEY_SEPARATOR = ":"
    """Separator for cache key components"""

    CACHE_FALLBACK_TO_MEMORY = os.getenv("CACHE_FALLBACK_TO_MEMORY", "true").lower() == "true"
    """Use the in-process store if Redis is unavailable (single process only)"""


def get_ttl(key_type: str) -> int:
    """
    Get TTL for a specific key type

    Args:
        key_type: Key type identifier (e.g., 'send_lock', 'conversation')

    Returns:
        TTL in seconds, CacheTTL.DEFAULT for unknown types
    """
    return getattr(CacheTTL, key_type.upper(), CacheTTL.DEFAULT)
