"""
Engine middleware - injects the lucky money engine into handler data
"""

from typing import Callable, Dict, Any, Awaitable

from aiogram import BaseMiddleware
from aiogram.types import TelegramObject

from src.services.red_packet_service import LuckyMoneyEngine


class EngineMiddleware(BaseMiddleware):
    """
    Handlers receive the engine as an argument instead of reaching for a
    module-level singleton.

    Usage in handler:
        async def my_handler(message: Message, engine: LuckyMoneyEngine):
            ...
    """

    def __init__(self, engine: LuckyMoneyEngine):
        self.engine = engine

    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any],
    ) -> Any:
        data["engine"] = self.engine
        return await handler(event, data)
