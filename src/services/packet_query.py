# coding: utf-8
"""
Packet Query Service

Read-only projections over the packet ledger: packet detail, claim
leaderboard, per-user history and statistics, active packets in a chat and
period rankings. Results are plain dicts for the handlers to render.
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from loguru import logger
from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.core.enums import PacketStatus
from src.database import crud
from src.database.models import ClaimRecord, RedPacket
from src.services.packet_ledger import PacketLedger
from src.utils.time_utils import ensure_utc, period_start, utcnow


CENT = Decimal("0.01")

RANKING_KINDS = ("amount", "count", "best_luck")


def _money(value: Any) -> Decimal:
    if value is None:
        return Decimal("0.00")
    return Decimal(str(value)).quantize(CENT)


def packet_to_dict(packet: RedPacket) -> Dict[str, Any]:
    total_count = packet.total_count or 0
    return {
        "packet_id": packet.packet_id,
        "sender_id": packet.sender_id,
        "chat_id": packet.origin_chat_id,
        "message_id": packet.message_id,
        "title": packet.title,
        "mode": packet.mode,
        "status": packet.status,
        "total_amount": _money(packet.total_amount),
        "total_count": total_count,
        "claimed_count": packet.claimed_count,
        "claimed_amount": _money(packet.claimed_amount),
        "remaining_count": packet.remaining_count,
        "remaining_amount": _money(packet.remaining_amount),
        "progress": round(packet.claimed_count / total_count, 4) if total_count else 0.0,
        "created_at": ensure_utc(packet.created_at),
        "expires_at": ensure_utc(packet.expires_at),
        "finished_at": ensure_utc(packet.finished_at),
    }


class PacketQueryService:
    """
    Usage:
        >>> queries = PacketQueryService(session_maker, ledger)
        >>> detail = await queries.get_packet_detail("RP20260101120000123456")
        >>> detail["remaining_amount"]
        Decimal('12.34')
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession], ledger: PacketLedger):
        self.session_maker = session_maker
        self.ledger = ledger

    async def get_packet_detail(self, packet_id: str, now: Optional[datetime] = None) -> Optional[Dict[str, Any]]:
        """
        Packet fields with progress; an active packet past its TTL is expired
        (and refunded) before being returned

        Returns:
            Detail dict, or None if the packet does not exist
        """
        now = now or utcnow()
        async with self.session_maker() as session:
            packet = await crud.get_packet(session, packet_id)
            if packet is None:
                return None
            overdue = packet.status == PacketStatus.ACTIVE and now > ensure_utc(packet.expires_at)

        if overdue:
            await self.ledger.expire_packet(packet_id, now)

        async with self.session_maker() as session:
            packet = await crud.get_packet(session, packet_id)
            detail = packet_to_dict(packet)
            detail["sender_name"] = (await crud.get_display_names(session, [packet.sender_id]))[packet.sender_id]
            return detail

    async def get_leaderboard(self, packet_id: str) -> List[Dict[str, Any]]:
        """Claims of a packet in claim order, best luck marked."""
        async with self.session_maker() as session:
            result = await session.execute(
                select(ClaimRecord)
                .where(ClaimRecord.packet_id == packet_id)
                .order_by(ClaimRecord.claim_order)
            )
            claims = list(result.scalars().all())
            names = await crud.get_display_names(session, [c.claimant_id for c in claims])

        return [
            {
                "claim_order": claim.claim_order,
                "claimant_id": claim.claimant_id,
                "name": names.get(claim.claimant_id, f"user_{claim.claimant_id}"),
                "amount": _money(claim.amount),
                "is_best_luck": claim.is_best_luck,
                "claimed_at": ensure_utc(claim.claimed_at),
            }
            for claim in claims
        ]

    async def get_user_history(self, user_id: int, page: int = 1, limit: int = 10) -> Dict[str, Any]:
        """
        Packets sent and shares received by a user, newest first

        Args:
            user_id: Telegram user ID
            page: 1-based page number
            limit: Items per page and per list

        Returns:
            Dict with "sent" and "received" lists
        """
        page = max(page, 1)
        offset = (page - 1) * limit
        async with self.session_maker() as session:
            sent = (await session.execute(
                select(RedPacket)
                .where(RedPacket.sender_id == user_id)
                .order_by(RedPacket.created_at.desc(), RedPacket.id.desc())
                .limit(limit)
                .offset(offset)
            )).scalars().all()

            received = (await session.execute(
                select(ClaimRecord, RedPacket.title, RedPacket.sender_id)
                .join(RedPacket, RedPacket.packet_id == ClaimRecord.packet_id)
                .where(ClaimRecord.claimant_id == user_id)
                .order_by(ClaimRecord.claimed_at.desc(), ClaimRecord.id.desc())
                .limit(limit)
                .offset(offset)
            )).all()

        return {
            "page": page,
            "sent": [packet_to_dict(p) for p in sent],
            "received": [
                {
                    "packet_id": claim.packet_id,
                    "title": title,
                    "sender_id": sender_id,
                    "amount": _money(claim.amount),
                    "claim_order": claim.claim_order,
                    "is_best_luck": claim.is_best_luck,
                    "claimed_at": ensure_utc(claim.claimed_at),
                }
                for claim, title, sender_id in received
            ],
        }

    async def get_user_stats(self, user_id: int) -> Dict[str, Any]:
        async with self.session_maker() as session:
            sent_count, sent_amount = (await session.execute(
                select(func.count(RedPacket.id), func.coalesce(func.sum(RedPacket.total_amount), 0))
                .where(RedPacket.sender_id == user_id)
            )).one()

            received_count, received_amount, best_luck = (await session.execute(
                select(
                    func.count(ClaimRecord.id),
                    func.coalesce(func.sum(ClaimRecord.amount), 0),
                    func.coalesce(func.sum(case((ClaimRecord.is_best_luck.is_(True), 1), else_=0)), 0),
                ).where(ClaimRecord.claimant_id == user_id)
            )).one()

        return {
            "user_id": user_id,
            "sent_count": int(sent_count),
            "sent_amount": _money(sent_amount),
            "received_count": int(received_count),
            "received_amount": _money(received_amount),
            "best_luck_count": int(best_luck),
        }

    async def get_active_packets(self, chat_id: int, limit: int = 10, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """Claimable packets in a chat; overdue ones are filtered out."""
        now = now or utcnow()
        async with self.session_maker() as session:
            packets = await crud.list_active_packets(session, chat_id, limit=limit)
        return [packet_to_dict(p) for p in packets if now <= ensure_utc(p.expires_at)]

    async def get_ranking(
        self, kind: str = "amount", period: str = "all", limit: int = 10, now: Optional[datetime] = None
    ) -> List[Dict[str, Any]]:
        """
        Claimant ranking over a period

        Args:
            kind: 'amount' (received total), 'count' (claims) or 'best_luck'
            period: 'today', 'week', 'month' or 'all'
            limit: Number of entries

        Returns:
            Ranked list of dicts with rank, user_id, name, value

        Raises:
            ValueError: Unknown kind or period
        """
        if kind not in RANKING_KINDS:
            raise ValueError(f"Unknown ranking kind: {kind}")
        since = period_start(period, now or utcnow())

        if kind == "amount":
            metric = func.sum(ClaimRecord.amount)
        else:
            metric = func.count(ClaimRecord.id)

        stmt = select(ClaimRecord.claimant_id, metric.label("value")).group_by(ClaimRecord.claimant_id)
        if kind == "best_luck":
            stmt = stmt.where(ClaimRecord.is_best_luck.is_(True))
        if since is not None:
            stmt = stmt.where(ClaimRecord.claimed_at >= since)
        stmt = stmt.order_by(metric.desc(), ClaimRecord.claimant_id).limit(limit)

        async with self.session_maker() as session:
            rows = (await session.execute(stmt)).all()
            names = await crud.get_display_names(session, [row.claimant_id for row in rows])

        logger.debug(f"Ranking {kind}/{period}: {len(rows)} entries")
        return [
            {
                "rank": rank,
                "user_id": row.claimant_id,
                "name": names.get(row.claimant_id, f"user_{row.claimant_id}"),
                "value": _money(row.value) if kind == "amount" else int(row.value),
            }
            for rank, row in enumerate(rows, start=1)
        ]
