# coding: utf-8
"""
Packet Ledger

Transactional core of the lucky money engine.

- create_packet: allocate shares, debit the sender, persist packet + shares
- claim: exactly-once claim of the next share, balance credit in the same
  transaction, bounded retries on write conflicts
- expire_packet / expire_overdue: active packets past TTL become expired,
  unclaimed remainder refunded to the sender
- revoke_packet: sender cancels an active packet, remainder refunded

Every packet mutation is a compare-and-swap on RedPacket.version (plus a row
lock where the database supports SELECT ... FOR UPDATE). Each attempt runs
in its own session; nothing is shared in process between handlers.
"""
import asyncio
import random
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, List, Optional, Sequence

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config.logging import ledger_logger
from config.redpacket_config import RedPacketConfig
from src.core.enums import (
    ClaimOutcome,
    PacketMode,
    PacketStatus,
    RevokeOutcome,
    UnavailableReason,
)
from src.core.errors import ConcurrencyConflict, StorageFailure
from src.database.models import (
    BalanceTransactionType,
    ClaimRecord,
    PacketShare,
    RedPacket,
)
from src.services.allocation import allocate, best_share_position, describe_shares
from src.services.balance_service import BalanceService
from src.services.results import ClaimResult, RevokeResult
from src.utils.time_utils import ensure_utc, utcnow


LOCK_ERROR_MARKERS = (
    "database is locked",        # sqlite busy timeout
    "could not serialize",       # postgres serialization failure
    "deadlock detected",
    "lock timeout",
)


def generate_packet_id(now: datetime, rng: random.Random) -> str:
    """RP + YYYYMMDDHHMMSS + 6 random digits"""
    return f"RP{now.strftime('%Y%m%d%H%M%S')}{rng.randint(0, 999999):06d}"


def is_lock_conflict(error: DBAPIError) -> bool:
    message = str(getattr(error, "orig", error)).lower()
    return any(marker in message for marker in LOCK_ERROR_MARKERS)


class PacketLedger:
    """
    Usage:
        >>> ledger = PacketLedger(session_maker, config)
        >>> packet = await ledger.create_packet(sender_id, chat_id, Decimal("50"), 5, "Happy")
        >>> result = await ledger.claim(packet.packet_id, claimant_id, chat_id)
        >>> result.amount, result.claim_order, result.is_best_luck
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        config: RedPacketConfig,
        rng: Optional[random.Random] = None,
    ):
        self.session_maker = session_maker
        self.config = config
        self.rng = rng or random.SystemRandom()

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_packet(
        self,
        sender_id: int,
        chat_id: int,
        amount: Decimal,
        count: int,
        title: str,
        mode: PacketMode = PacketMode.RANDOM,
        custom_shares: Optional[Sequence[Any]] = None,
        now: Optional[datetime] = None,
    ) -> Optional[RedPacket]:
        """
        Allocate shares, debit the sender and persist the packet atomically

        Args:
            sender_id: Telegram user ID of the sender
            chat_id: Chat the packet is claimable in
            amount: Total amount
            count: Number of shares
            title: Display title
            mode: PacketMode
            custom_shares: Share list for custom mode
            now: Creation time (defaults to current UTC time)

        Returns:
            The persisted RedPacket, or None if the sender balance is insufficient

        Raises:
            InvalidAllocationRequest: amount/count/floor cannot be allocated
            StorageFailure: database error, nothing was written
        """
        limits = self.config.limits
        shares = allocate(
            amount, count, mode, limits.min_share,
            rng=self.rng, custom_shares=custom_shares, precision=limits.precision,
        )
        now = now or utcnow()

        for _ in range(3):
            packet_id = generate_packet_id(now, self.rng)
            try:
                packet = await self._insert_packet(
                    packet_id, sender_id, chat_id, amount, count, title, mode, shares, now
                )
            except IntegrityError:
                logger.warning(f"Packet id collision on {packet_id}, regenerating")
                continue
            except SQLAlchemyError as e:
                logger.error(f"Failed to create packet for user {sender_id}: {e}")
                raise StorageFailure(str(e)) from e

            if packet is not None:
                logger.info(
                    f"Packet {packet_id} created by {sender_id} in chat {chat_id}: "
                    f"{describe_shares(shares)}"
                )
            return packet

        raise StorageFailure("Could not generate a unique packet id")

    async def _insert_packet(
        self,
        packet_id: str,
        sender_id: int,
        chat_id: int,
        amount: Decimal,
        count: int,
        title: str,
        mode: PacketMode,
        shares: List[Decimal],
        now: datetime,
    ) -> Optional[RedPacket]:
        async with self.session_maker() as session:
            tx = await BalanceService.debit(
                session,
                sender_id,
                amount,
                BalanceTransactionType.PACKET_SEND,
                description=f"Lucky money {packet_id}",
                transaction_id=f"send:{packet_id}",
            )
            if tx is None:
                await session.rollback()
                return None

            packet = RedPacket(
                packet_id=packet_id,
                sender_id=sender_id,
                origin_chat_id=chat_id,
                total_amount=amount,
                total_count=count,
                title=title,
                mode=PacketMode(mode).value,
                status=PacketStatus.ACTIVE.value,
                claimed_count=0,
                claimed_amount=Decimal("0.00"),
                version=0,
                best_share_position=best_share_position(shares),
                created_at=now,
                expires_at=now + timedelta(hours=self.config.packet_ttl_hours),
            )
            session.add(packet)
            session.add_all([
                PacketShare(packet_id=packet_id, position=i, amount=share)
                for i, share in enumerate(shares)
            ])
            await session.commit()
            return packet

    async def set_message_id(self, packet_id: str, message_id: int) -> None:
        """Remember which chat message displays the packet"""
        async with self.session_maker() as session:
            await session.execute(
                update(RedPacket).where(RedPacket.packet_id == packet_id).values(message_id=message_id)
            )
            await session.commit()

    # ------------------------------------------------------------------
    # Claim
    # ------------------------------------------------------------------

    async def claim(
        self,
        packet_id: str,
        claimant_id: int,
        chat_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> ClaimResult:
        """
        Claim the next share of a packet

        Args:
            packet_id: Public packet id
            claimant_id: Telegram user ID of the claimant
            chat_id: Chat the claim comes from (None skips the chat check)
            now: Claim time (defaults to current UTC time)

        Returns:
            ClaimResult; CLAIMED, ALREADY_CLAIMED, UNAVAILABLE, SELF_CLAIM, or
            CONFLICT when every retry lost the race

        Raises:
            StorageFailure: database error, the attempt was rolled back
        """
        concurrency = self.config.concurrency
        for attempt in range(concurrency.claim_max_retries):
            try:
                return await self._claim_once(packet_id, claimant_id, chat_id, now or utcnow())
            except ConcurrencyConflict:
                delay = concurrency.retry_base_delay * (2 ** min(attempt, 5)) * (1 + self.rng.random())
                logger.debug(
                    f"Claim conflict on {packet_id} for {claimant_id} "
                    f"(attempt {attempt + 1}), retrying in {delay:.3f}s"
                )
                await asyncio.sleep(delay)

        logger.warning(f"Claim on {packet_id} by {claimant_id} gave up after {concurrency.claim_max_retries} conflicts")
        return ClaimResult(ClaimOutcome.CONFLICT, packet_id)

    async def _claim_once(
        self, packet_id: str, claimant_id: int, chat_id: Optional[int], now: datetime
    ) -> ClaimResult:
        async with self.session_maker() as session:
            try:
                return await self._claim_in_session(session, packet_id, claimant_id, chat_id, now)
            except IntegrityError as e:
                # a parallel attempt inserted the same claim or balance row first
                await session.rollback()
                raise ConcurrencyConflict(str(e)) from e
            except DBAPIError as e:
                await session.rollback()
                if is_lock_conflict(e):
                    raise ConcurrencyConflict(str(e)) from e
                logger.error(f"Claim on {packet_id} by {claimant_id} failed: {e}")
                raise StorageFailure(str(e)) from e
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error(f"Claim on {packet_id} by {claimant_id} failed: {e}")
                raise StorageFailure(str(e)) from e

    async def _claim_in_session(
        self,
        session: AsyncSession,
        packet_id: str,
        claimant_id: int,
        chat_id: Optional[int],
        now: datetime,
    ) -> ClaimResult:
        packet = await self._load_for_update(session, packet_id)
        if packet is None:
            return ClaimResult(ClaimOutcome.UNAVAILABLE, packet_id, reason=UnavailableReason.NOT_FOUND)

        existing = (await session.execute(
            select(ClaimRecord).where(
                ClaimRecord.packet_id == packet_id,
                ClaimRecord.claimant_id == claimant_id,
            )
        )).scalar_one_or_none()
        if existing is not None:
            return ClaimResult(
                ClaimOutcome.ALREADY_CLAIMED,
                packet_id,
                amount=existing.amount,
                claim_order=existing.claim_order,
                is_best_luck=existing.is_best_luck,
            )

        if chat_id is not None and packet.origin_chat_id != chat_id:
            return ClaimResult(ClaimOutcome.UNAVAILABLE, packet_id, reason=UnavailableReason.WRONG_CHAT)

        if packet.status != PacketStatus.ACTIVE:
            return ClaimResult(
                ClaimOutcome.UNAVAILABLE, packet_id,
                reason=UnavailableReason.from_status(packet.status),
            )

        if now > ensure_utc(packet.expires_at):
            await self._finish_with_refund(session, packet, PacketStatus.EXPIRED, now)
            await session.commit()
            return ClaimResult(ClaimOutcome.UNAVAILABLE, packet_id, reason=UnavailableReason.EXPIRED)

        if claimant_id == packet.sender_id and not self.config.permissions.allow_self_claim:
            return ClaimResult(ClaimOutcome.SELF_CLAIM, packet_id)

        if packet.claimed_count >= packet.total_count:
            return ClaimResult(ClaimOutcome.UNAVAILABLE, packet_id, reason=UnavailableReason.COMPLETED)

        position = packet.claimed_count
        share = (await session.execute(
            select(PacketShare).where(
                PacketShare.packet_id == packet_id,
                PacketShare.position == position,
            )
        )).scalar_one()

        claim_order = position + 1
        completed = claim_order == packet.total_count
        values = {
            "claimed_count": claim_order,
            "claimed_amount": packet.claimed_amount + share.amount,
            "version": packet.version + 1,
        }
        if completed:
            values["status"] = PacketStatus.COMPLETED.value
            values["finished_at"] = now

        await self._compare_and_swap(session, packet, values)

        taken = await session.execute(
            update(PacketShare)
            .where(PacketShare.id == share.id, PacketShare.claimed_by.is_(None))
            .values(claimed_by=claimant_id, claimed_at=now)
            .execution_options(synchronize_session=False)
        )
        if taken.rowcount != 1:
            raise ConcurrencyConflict(f"Share {position} of {packet_id} already taken")

        is_best_luck = position == packet.best_share_position
        session.add(ClaimRecord(
            packet_id=packet_id,
            claimant_id=claimant_id,
            amount=share.amount,
            claim_order=claim_order,
            is_best_luck=is_best_luck,
            claimed_at=now,
        ))
        await session.flush()

        await BalanceService.credit(
            session,
            claimant_id,
            share.amount,
            BalanceTransactionType.PACKET_CLAIM,
            description=f"Lucky money {packet_id}",
            transaction_id=f"claim:{packet_id}:{claimant_id}",
        )
        await session.commit()

        ledger_logger.info(
            f"claim packet={packet_id} user={claimant_id} amount={share.amount} "
            f"order={claim_order}/{packet.total_count} best={is_best_luck}"
        )
        if completed:
            logger.info(f"Packet {packet_id} fully claimed")

        return ClaimResult(
            ClaimOutcome.CLAIMED,
            packet_id,
            amount=share.amount,
            claim_order=claim_order,
            is_best_luck=is_best_luck,
            completed=completed,
        )

    # ------------------------------------------------------------------
    # Expiry and revocation
    # ------------------------------------------------------------------

    async def expire_packet(self, packet_id: str, now: Optional[datetime] = None) -> bool:
        """
        Expire one active packet past its TTL and refund the remainder

        Returns:
            True if this call expired the packet
        """
        now = now or utcnow()
        async with self.session_maker() as session:
            try:
                packet = await self._load_for_update(session, packet_id)
                if (
                    packet is None
                    or packet.status != PacketStatus.ACTIVE
                    or now <= ensure_utc(packet.expires_at)
                ):
                    return False
                await self._finish_with_refund(session, packet, PacketStatus.EXPIRED, now)
                await session.commit()
                return True
            except ConcurrencyConflict:
                await session.rollback()
                return False
            except DBAPIError as e:
                await session.rollback()
                if is_lock_conflict(e):
                    return False
                raise StorageFailure(str(e)) from e
            except SQLAlchemyError as e:
                await session.rollback()
                raise StorageFailure(str(e)) from e

    async def expire_overdue(self, now: Optional[datetime] = None, limit: int = 100) -> int:
        """
        Expire every active packet past its TTL

        Returns:
            Number of packets expired by this call
        """
        now = now or utcnow()
        async with self.session_maker() as session:
            result = await session.execute(
                select(RedPacket.packet_id)
                .where(RedPacket.status == PacketStatus.ACTIVE.value, RedPacket.expires_at < now)
                .order_by(RedPacket.expires_at)
                .limit(limit)
            )
            packet_ids = list(result.scalars().all())

        expired = 0
        for packet_id in packet_ids:
            if await self.expire_packet(packet_id, now):
                expired += 1
        if expired:
            logger.info(f"Expired {expired} overdue packets")
        return expired

    async def revoke_packet(self, packet_id: str, actor_id: int, now: Optional[datetime] = None) -> RevokeResult:
        """
        Revoke an active packet; only its sender may do this

        Returns:
            RevokeResult with the refunded remainder
        """
        now = now or utcnow()
        async with self.session_maker() as session:
            try:
                packet = await self._load_for_update(session, packet_id)
                if packet is None:
                    return RevokeResult(RevokeOutcome.NOT_FOUND, packet_id)
                if packet.sender_id != actor_id:
                    return RevokeResult(RevokeOutcome.NOT_SENDER, packet_id)
                if packet.status != PacketStatus.ACTIVE:
                    return RevokeResult(RevokeOutcome.NOT_ACTIVE, packet_id)

                refunded = await self._finish_with_refund(session, packet, PacketStatus.REVOKED, now)
                await session.commit()
                logger.info(f"Packet {packet_id} revoked by {actor_id}, refunded {refunded}")
                return RevokeResult(RevokeOutcome.REVOKED, packet_id, refunded)
            except ConcurrencyConflict:
                await session.rollback()
                return RevokeResult(RevokeOutcome.NOT_ACTIVE, packet_id)
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error(f"Revoke of {packet_id} failed: {e}")
                raise StorageFailure(str(e)) from e

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    async def _load_for_update(session: AsyncSession, packet_id: str) -> Optional[RedPacket]:
        result = await session.execute(
            select(RedPacket)
            .where(RedPacket.packet_id == packet_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def _compare_and_swap(session: AsyncSession, packet: RedPacket, values: dict) -> None:
        result = await session.execute(
            update(RedPacket)
            .where(
                RedPacket.id == packet.id,
                RedPacket.version == packet.version,
                RedPacket.status == PacketStatus.ACTIVE.value,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConcurrencyConflict(f"Packet {packet.packet_id} changed (version {packet.version})")

    async def _finish_with_refund(
        self, session: AsyncSession, packet: RedPacket, status: PacketStatus, now: datetime
    ) -> Decimal:
        """Move an active packet to expired/revoked and refund what is left."""
        await self._compare_and_swap(session, packet, {
            "status": status.value,
            "finished_at": now,
            "version": packet.version + 1,
        })

        remainder = packet.total_amount - packet.claimed_amount
        if remainder > 0:
            await BalanceService.credit(
                session,
                packet.sender_id,
                remainder,
                BalanceTransactionType.PACKET_REFUND,
                description=f"Unclaimed lucky money {packet.packet_id} ({status.value})",
                transaction_id=f"refund:{packet.packet_id}",
            )
        ledger_logger.info(
            f"{status.value} packet={packet.packet_id} sender={packet.sender_id} refund={remainder}"
        )
        return remainder
