"""
Database middleware - provides database session and user object to handlers
"""

from typing import Callable, Dict, Any, Awaitable

from aiogram import BaseMiddleware
from aiogram.types import TelegramObject, Message, CallbackQuery
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from config.sentry import set_user_context
from src.database.engine import get_session_maker
from src.database.crud import get_or_create_user


class DatabaseMiddleware(BaseMiddleware):
    """
    Middleware that provides database session and user object to handlers.

    Usage in handler:
        async def my_handler(message: Message, user: User, session: AsyncSession):
            # Use session and user here
            pass
    """

    def __init__(self, session_maker=None):
        self.session_maker = session_maker

    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any],
    ) -> Any:
        """
        Open a session, load (or register) the Telegram user, pass both on

        Args:
            handler: Next handler in chain
            event: Update event (Message, CallbackQuery, ChatMemberUpdated)
            data: Handler data dict

        Returns:
            Handler result
        """
        session_maker = self.session_maker or get_session_maker()
        async with session_maker() as session:
            data["session"] = session

            telegram_user = None
            if isinstance(event, (Message, CallbackQuery)):
                telegram_user = event.from_user

            if telegram_user and not telegram_user.is_bot:
                try:
                    db_user, is_new_user = await get_or_create_user(
                        session,
                        telegram_id=telegram_user.id,
                        username=telegram_user.username,
                        first_name=telegram_user.first_name,
                        language=telegram_user.language_code,
                    )
                    data["user"] = db_user
                    data["is_new_user"] = is_new_user
                    set_user_context(telegram_user.id, telegram_user.username)
                    logger.debug(f"User telegram_id={telegram_user.id} loaded (is_new={is_new_user})")
                except SQLAlchemyError as e:
                    await session.rollback()
                    logger.error(f"Error getting user from database: {e}")

            try:
                result = await handler(event, data)
                await session.commit()
                return result
            except Exception as e:
                await session.rollback()
                logger.error(f"Database error in handler: {e}")
                raise
