"""
Logging middleware - one log line per update, timing and a Sentry breadcrumb
"""

from typing import Callable, Dict, Any, Awaitable, Optional, Tuple

import time

from aiogram import BaseMiddleware
from aiogram.types import TelegramObject, Message, CallbackQuery, ChatMemberUpdated

from loguru import logger

from config.sentry import add_breadcrumb


def describe_update(event: TelegramObject) -> Tuple[Optional[int], Optional[int], str]:
    """(user_id, chat_id, short description) of an update"""
    if isinstance(event, Message):
        user_id = event.from_user.id if event.from_user else None
        text = event.text or event.caption or f"[{event.content_type}]"
        return user_id, event.chat.id, f"message: {text[:100]}"

    if isinstance(event, CallbackQuery):
        chat_id = event.message.chat.id if event.message else None
        # rp:<action>[:<packet_id>]
        return event.from_user.id, chat_id, f"button: {event.data}"

    if isinstance(event, ChatMemberUpdated):
        return (
            event.from_user.id,
            event.chat.id,
            f"member: {event.old_chat_member.status} -> {event.new_chat_member.status}",
        )

    return None, None, type(event).__name__


class LoggingMiddleware(BaseMiddleware):
    """
    Middleware that logs incoming updates with chat and user, and how long
    the handler chain took
    """

    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any],
    ) -> Any:
        user_id, chat_id, description = describe_update(event)
        logger.info(f"[chat {chat_id}] user {user_id} {description}")
        add_breadcrumb(description, category="update", chat_id=chat_id, user_id=user_id)

        started = time.perf_counter()
        try:
            result = await handler(event, data)
        except Exception as e:
            elapsed_ms = (time.perf_counter() - started) * 1000
            logger.error(f"[chat {chat_id}] update from {user_id} failed after {elapsed_ms:.0f}ms: {e}")
            raise

        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.debug(f"[chat {chat_id}] update from {user_id} handled in {elapsed_ms:.0f}ms")
        return result
