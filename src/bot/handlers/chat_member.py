# coding: utf-8
"""
Tracks the bot's own membership in chats

The validation gate only lets packets be sent in groups where the bot is an
administrator; this handler keeps ChatGroup.bot_status in sync from
my_chat_member updates.
"""

from aiogram import Router
from aiogram.types import ChatMemberUpdated
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from src.database.crud import upsert_chat_group

router = Router(name="chat_member")


@router.my_chat_member()
async def on_my_chat_member(event: ChatMemberUpdated, session: AsyncSession):
    """
    Bot added, promoted, demoted or removed

    Args:
        event: ChatMemberUpdated for the bot itself
        session: Database session (provided by DatabaseMiddleware)
    """
    chat = event.chat
    status = event.new_chat_member.status
    status = getattr(status, "value", status)

    try:
        await upsert_chat_group(
            session,
            chat_id=chat.id,
            chat_type=chat.type,
            title=chat.title,
            bot_status=status,
        )
    except Exception as e:
        logger.exception(f"Failed to record bot status {status} in chat {chat.id}: {e}")
        raise
