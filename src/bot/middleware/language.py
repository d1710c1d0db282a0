"""
Language middleware - picks the reply language for each update
"""

from typing import Callable, Dict, Any, Awaitable

from aiogram import BaseMiddleware
from aiogram.types import TelegramObject

from src.utils.i18n import get_user_language


class LanguageMiddleware(BaseMiddleware):
    """
    Adds 'user_language' to handler data

    Saved user preference first (provided by DatabaseMiddleware as 'user'),
    then the Telegram client language, then the default.
    """

    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any],
    ) -> Any:
        telegram_user = getattr(event, "from_user", None)
        db_user = data.get("user")

        data["user_language"] = get_user_language(
            db_user.language if db_user else None,
            telegram_user.language_code if telegram_user else None,
        )
        return await handler(event, data)
