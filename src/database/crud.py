"""
CRUD operations for the Lucky Money bot

Async database operations using SQLAlchemy 2.0. Functions here never commit
unless their name says so (get_or_create_*, upsert_*); the packet ledger
composes them inside its own transactions.
"""

from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from loguru import logger
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.enums import PacketStatus
from src.database.models import User, ChatGroup, RedPacket


# ===========================
# USER OPERATIONS
# ===========================


async def get_user_by_telegram_id(
    session: AsyncSession, telegram_id: int
) -> Optional[User]:
    """
    Get user by Telegram ID

    Args:
        session: Database session
        telegram_id: Telegram user ID

    Returns:
        User model or None
    """
    result = await session.execute(select(User).where(User.telegram_id == telegram_id))
    return result.scalar_one_or_none()


async def get_or_create_user(
    session: AsyncSession,
    telegram_id: int,
    username: Optional[str] = None,
    first_name: Optional[str] = None,
    language: Optional[str] = None,
) -> tuple[User, bool]:
    """
    Get existing user or create new one

    Args:
        session: Database session
        telegram_id: Telegram user ID
        username: Telegram username
        first_name: User first name
        language: Telegram language code

    Returns:
        Tuple of (User, created)
    """
    user = await get_user_by_telegram_id(session, telegram_id)
    if user:
        changed = False
        if username != user.username:
            user.username = username
            changed = True
        if first_name and first_name != user.first_name:
            user.first_name = first_name
            changed = True
        if changed:
            await session.commit()
        return user, False

    user = User(
        telegram_id=telegram_id,
        username=username,
        first_name=first_name,
        language=(language or "zh")[:2],
    )
    session.add(user)
    await session.commit()
    logger.info(f"User created: {telegram_id} (@{username})")
    return user, True


async def get_display_names(session: AsyncSession, telegram_ids: Iterable[int]) -> Dict[int, str]:
    """
    Map Telegram IDs to display names (missing users get "user_<id>")
    """
    ids = list(set(telegram_ids))
    if not ids:
        return {}
    result = await session.execute(select(User).where(User.telegram_id.in_(ids)))
    names = {u.telegram_id: u.display_name for u in result.scalars().all()}
    return {i: names.get(i, f"user_{i}") for i in ids}


# ===========================
# CHAT GROUP OPERATIONS
# ===========================


async def get_chat_group(session: AsyncSession, chat_id: int) -> Optional[ChatGroup]:
    result = await session.execute(select(ChatGroup).where(ChatGroup.chat_id == chat_id))
    return result.scalar_one_or_none()


async def upsert_chat_group(
    session: AsyncSession,
    chat_id: int,
    chat_type: str,
    title: Optional[str] = None,
    bot_status: Optional[str] = None,
) -> ChatGroup:
    """
    Create or update a chat group record and commit

    Args:
        session: Database session
        chat_id: Telegram chat ID
        chat_type: private / group / supergroup / channel
        title: Chat title
        bot_status: Bot's ChatMember status in this chat (None keeps the stored one)

    Returns:
        ChatGroup model
    """
    group = await get_chat_group(session, chat_id)
    if group is None:
        group = ChatGroup(chat_id=chat_id, chat_type=chat_type, title=title,
                          bot_status=bot_status or "member")
        session.add(group)
    else:
        group.chat_type = chat_type
        if title:
            group.title = title
        if bot_status:
            group.bot_status = bot_status
    group.is_active = group.bot_status not in ("left", "kicked")
    await session.commit()

    logger.info(f"Chat {chat_id} ({chat_type}) registered, bot status: {group.bot_status}")
    return group


# ===========================
# PACKET QUOTA QUERIES
# ===========================


async def count_packets_since(session: AsyncSession, sender_id: int, since: datetime) -> int:
    """Number of packets created by sender since the given time"""
    stmt = select(func.count(RedPacket.id)).where(
        RedPacket.sender_id == sender_id,
        RedPacket.created_at >= since,
    )
    return (await session.execute(stmt)).scalar_one()


async def sum_packets_since(session: AsyncSession, sender_id: int, since: datetime) -> Decimal:
    """Total amount put into packets by sender since the given time"""
    stmt = select(func.coalesce(func.sum(RedPacket.total_amount), 0)).where(
        RedPacket.sender_id == sender_id,
        RedPacket.created_at >= since,
    )
    return Decimal(str((await session.execute(stmt)).scalar_one())).quantize(Decimal("0.01"))


async def oldest_packet_since(
    session: AsyncSession, sender_id: int, since: datetime
) -> Optional[datetime]:
    """Creation time of the oldest packet by sender since the given time"""
    stmt = select(func.min(RedPacket.created_at)).where(
        RedPacket.sender_id == sender_id,
        RedPacket.created_at >= since,
    )
    return (await session.execute(stmt)).scalar_one()


async def get_packet(session: AsyncSession, packet_id: str) -> Optional[RedPacket]:
    result = await session.execute(select(RedPacket).where(RedPacket.packet_id == packet_id))
    return result.scalar_one_or_none()


async def list_active_packets(session: AsyncSession, chat_id: int, limit: int = 10) -> List[RedPacket]:
    stmt = (
        select(RedPacket)
        .where(RedPacket.origin_chat_id == chat_id, RedPacket.status == PacketStatus.ACTIVE.value)
        .order_by(RedPacket.created_at.desc())
        .limit(limit)
    )
    return list((await session.execute(stmt)).scalars().all())
