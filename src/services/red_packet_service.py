# coding: utf-8
"""
Lucky Money Engine

Facade over the engine parts, built once at startup and injected into the
bot handlers:

- gate: ValidationGate (balance, bounds, chat permission, quota)
- guard: DuplicateGuard (send/claim locks, callback dedup)
- ledger: PacketLedger (create, claim, expire, revoke)
- conversation: CreationConversation (multi-turn creation dialogue)
- queries: PacketQueryService (detail, leaderboard, history, rankings)
"""
import random
from datetime import datetime
from typing import Optional

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config.redpacket_config import RedPacketConfig
from src.cache.memory_store import KeyValueStore
from src.core.enums import ClaimOutcome, CreateOutcome, ValidationReason
from src.core.errors import InvalidAllocationRequest
from src.services.conversation import ConversationStore, CreationConversation
from src.services.duplicate_guard import DuplicateGuard
from src.services.packet_ledger import PacketLedger
from src.services.packet_query import PacketQueryService
from src.services.results import ClaimResult, CreateResult, RevokeResult
from src.services.validation_gate import CreationRequest, ValidationGate, ValidationResult


class LuckyMoneyEngine:
    """
    Usage:
        >>> engine = LuckyMoneyEngine(get_session_maker(), get_redis_manager(), get_config())
        >>> created = await engine.create(request)
        >>> claimed = await engine.claim(created.packet.packet_id, user_id, chat_id)
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        store: KeyValueStore,
        config: RedPacketConfig,
        rng: Optional[random.Random] = None,
    ):
        self.session_maker = session_maker
        self.store = store
        self.config = config

        self.gate = ValidationGate(config)
        self.guard = DuplicateGuard(store, config)
        self.ledger = PacketLedger(session_maker, config, rng=rng)
        self.queries = PacketQueryService(session_maker, self.ledger)
        self.conversation = CreationConversation(
            ConversationStore(store, config.conversation.ttl_seconds),
            self.gate,
            config,
            creator=self.create,
        )

    async def create(self, request: CreationRequest, now: Optional[datetime] = None) -> CreateResult:
        """
        Validate and create a packet behind the send-guard

        Returns:
            CreateResult; the send-guard is released only when the packet
            was created

        Raises:
            StorageFailure: database error, nothing was written
        """
        guard_args = (request.sender_id, request.amount, request.count, request.title)
        if not await self.guard.acquire_send(*guard_args):
            return CreateResult(CreateOutcome.DUPLICATE, message="duplicate send")

        async with self.session_maker() as session:
            validation = await self.gate.validate(session, request, now)
        if not validation.ok:
            return CreateResult(
                CreateOutcome.VALIDATION_FAILED,
                validation=validation,
                error_field=validation.target_field,
            )

        try:
            packet = await self.ledger.create_packet(
                request.sender_id,
                request.chat_id,
                request.amount,
                request.count,
                request.title,
                mode=request.mode,
                now=now,
            )
        except InvalidAllocationRequest as e:
            logger.info(f"Allocation rejected for user {request.sender_id}: {e}")
            return CreateResult(
                CreateOutcome.INVALID_ALLOCATION,
                validation=ValidationResult.failed(
                    ValidationReason.SHARE_TOO_SMALL if e.field == "count" else ValidationReason.AMOUNT_INVALID,
                    detail={"min_share": self.config.limits.min_share},
                ),
                error_field=e.field,
                message=str(e),
            )

        if packet is None:
            # balance dropped between validation and debit
            return CreateResult(
                CreateOutcome.VALIDATION_FAILED,
                validation=ValidationResult.failed(ValidationReason.INSUFFICIENT_BALANCE),
                error_field="amount",
            )

        await self.guard.release_send(*guard_args)
        return CreateResult(CreateOutcome.CREATED, packet=packet)

    async def claim(
        self,
        packet_id: str,
        claimant_id: int,
        chat_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> ClaimResult:
        """
        Claim behind the claim-guard

        A second tap while the first is in flight waits for it, then gets the
        ledger's answer (normally ALREADY_CLAIMED). The lock is released only
        after a successful claim.
        """
        if not await self.guard.acquire_claim(packet_id, claimant_id):
            if not await self.guard.wait_for_claim(packet_id, claimant_id):
                logger.debug(f"Claim lock on {packet_id} for {claimant_id} still held, asking the ledger")
            return await self.ledger.claim(packet_id, claimant_id, chat_id, now)

        result = await self.ledger.claim(packet_id, claimant_id, chat_id, now)
        if result.outcome == ClaimOutcome.CLAIMED:
            await self.guard.release_claim(packet_id, claimant_id)
        return result

    async def revoke(self, packet_id: str, actor_id: int, now: Optional[datetime] = None) -> RevokeResult:
        return await self.ledger.revoke_packet(packet_id, actor_id, now)

    async def expire_overdue(self, now: Optional[datetime] = None) -> int:
        return await self.ledger.expire_overdue(now)
