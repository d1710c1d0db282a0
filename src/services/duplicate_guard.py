# coding: utf-8
"""
Duplicate / replay control

Short-lived idempotency locks in the injected key-value store:
- send-guard: (actor, amount, count, title) fingerprint around packet creation
- claim-guard: (packet, claimant) around a claim attempt
- callback dedup: Telegram callback query ids already handled

A lock is taken before the attempt and released only on success; after a
failure it is left to expire so an immediate identical retry is still caught.
The claim-guard sits in front of the unique (packet_id, claimant_id)
constraint, it does not replace it.
"""
import asyncio
from typing import Any

from loguru import logger

from config.redpacket_config import RedPacketConfig
from config.cache_config import CacheTTL
from src.cache.cache_keys import CacheKeyBuilder
from src.cache.memory_store import KeyValueStore


CLAIM_WAIT_POLL_SECONDS = 0.02


class DuplicateGuard:
    """
    Usage:
        >>> guard = DuplicateGuard(store, config)
        >>> if not await guard.acquire_send(user_id, amount, count, title):
        ...     return  # probable double submit
        >>> ok = await create(...)
        >>> if ok:
        ...     await guard.release_send(user_id, amount, count, title)
    """

    def __init__(self, store: KeyValueStore, config: RedPacketConfig):
        self.store = store
        self.config = config

    async def acquire_send(self, actor_id: int, amount: Any, count: int, title: str) -> bool:
        key = CacheKeyBuilder.send_lock(actor_id, amount, count, title)
        acquired = await self.store.set_if_absent(
            key, "1", ttl=self.config.concurrency.send_lock_seconds
        )
        if not acquired:
            logger.info(f"Duplicate send blocked for user {actor_id} ({amount}/{count})")
        return acquired

    async def release_send(self, actor_id: int, amount: Any, count: int, title: str) -> None:
        await self.store.delete(CacheKeyBuilder.send_lock(actor_id, amount, count, title))

    async def acquire_claim(self, packet_id: str, claimant_id: int) -> bool:
        key = CacheKeyBuilder.claim_lock(packet_id, claimant_id)
        acquired = await self.store.set_if_absent(
            key, "1", ttl=self.config.concurrency.claim_lock_seconds
        )
        if not acquired:
            logger.debug(f"Claim on {packet_id} by {claimant_id} already in flight")
        return acquired

    async def release_claim(self, packet_id: str, claimant_id: int) -> None:
        await self.store.delete(CacheKeyBuilder.claim_lock(packet_id, claimant_id))

    async def wait_for_claim(self, packet_id: str, claimant_id: int) -> bool:
        """
        Wait while another attempt by the same claimant holds the claim-guard

        Returns:
            True once the lock is gone, False if it was still held after
            claim_lock_seconds (a failed attempt leaves it to expire)
        """
        key = CacheKeyBuilder.claim_lock(packet_id, claimant_id)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.concurrency.claim_lock_seconds
        while await self.store.exists(key):
            if loop.time() >= deadline:
                return False
            await asyncio.sleep(CLAIM_WAIT_POLL_SECONDS)
        return True

    async def first_seen_callback(self, callback_id: str) -> bool:
        """True the first time a callback query id is seen within the dedup window."""
        return await self.store.set_if_absent(
            CacheKeyBuilder.callback_seen(callback_id), "1", ttl=CacheTTL.CALLBACK_DEDUP
        )
