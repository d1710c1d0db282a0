# coding: utf-8
"""
Cache key generation utilities

Provides consistent, namespaced keys for locks and conversation state.
"""
import hashlib
import json
from typing import Any, Dict, List, Optional, Union

from config.cache_config import CacheConfig


class CacheKeyBuilder:
    """
    Utility class for building consistent cache keys

    Key format: {namespace}:{group}:{kind}:{params}

    Examples:
        luckymoney:lock:send:5e0c1a9d27bf
        luckymoney:lock:claim:RP20260101120000123456_42
        luckymoney:conversation:draft:-1001234567890
    """

    SEPARATOR = CacheConfig.CACHE_KEY_SEPARATOR
    NAMESPACE = CacheConfig.CACHE_NAMESPACE

    @classmethod
    def build(
        cls,
        group: str,
        kind: str,
        params: Optional[Union[Dict[str, Any], List[Any], str, int]] = None,
    ) -> str:
        """
        Build a cache key from components

        Args:
            group: Key group (e.g., 'lock', 'conversation')
            kind: Key kind within the group (e.g., 'claim', 'draft')
            params: Parameters (dict values are joined in sorted key order)

        Returns:
            Cache key string
        """
        key_parts = [cls.NAMESPACE, group, kind]

        if params is not None and params != "":
            key_parts.append(cls._serialize_params(params))

        return cls.SEPARATOR.join(key_parts)

    @classmethod
    def _serialize_params(cls, params: Union[Dict[str, Any], List[Any], str, int]) -> str:
        if isinstance(params, dict):
            return "_".join(str(v) for _, v in sorted(params.items()))
        if isinstance(params, (list, tuple)):
            return "_".join(str(item) for item in params)
        return str(params)

    @classmethod
    def build_hashed(
        cls,
        group: str,
        kind: str,
        params: Union[Dict[str, Any], List[Any], str],
    ) -> str:
        """
        Build a key with SHA256-hashed parameters (for free-text params like titles)

        Returns:
            Cache key with the first 12 hex chars of the hash
        """
        params_json = json.dumps(params, sort_keys=True, ensure_ascii=False, default=str)
        params_hash = hashlib.sha256(params_json.encode()).hexdigest()[:12]
        return cls.SEPARATOR.join([cls.NAMESPACE, group, kind, params_hash])

    @classmethod
    def send_lock(cls, actor_id: int, amount: Any, count: int, title: str) -> str:
        """Fingerprint lock of one creation request"""
        return cls.build_hashed(
            "lock", "send",
            {"actor": actor_id, "amount": str(amount), "count": count, "title": title},
        )

    @classmethod
    def claim_lock(cls, packet_id: str, claimant_id: int) -> str:
        return cls.build("lock", "claim", [packet_id, claimant_id])

    @classmethod
    def callback_seen(cls, callback_id: str) -> str:
        return cls.build("lock", "callback", callback_id)

    @classmethod
    def conversation(cls, chat_id: int) -> str:
        return cls.build("conversation", "draft", chat_id)
