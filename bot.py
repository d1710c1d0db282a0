"""
Lucky Money Bot - Main Bot Entry Point
"""

import asyncio
import sys

from aiogram import Bot, Dispatcher
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode
from aiogram.types import BotCommand
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger

from config.config import BOT_TOKEN, validate_config
from config.logging import setup_logging
from config.redpacket_config import get_config
from config.sentry import init_sentry
from src.bot.handlers import chat_member, red_packet
from src.bot.middleware import (
    DatabaseMiddleware,
    EngineMiddleware,
    LanguageMiddleware,
    LoggingMiddleware,
)
from src.cache import get_redis_manager
from src.database.engine import check_connection, dispose_engine, get_session_maker
from src.services.red_packet_service import LuckyMoneyEngine
from src.tasks.expiry_scheduler import schedule_expiry_tasks

# Background tasks references
_scheduler = None
_engine = None


async def setup_bot_commands(bot: Bot) -> None:
    """
    Setup bot commands menu

    Args:
        bot: Bot instance
    """
    commands = [
        BotCommand(command="red", description="🧧 发红包 /red 金额 个数 [祝福语]"),
        BotCommand(command="luckymoney", description="🏠 红包菜单"),
        BotCommand(command="rank", description="🏆 红包排行榜"),
    ]

    await bot.set_my_commands(commands)
    logger.info("Bot commands menu initialized successfully")


async def on_startup(bot: Bot, **kwargs) -> None:
    """Actions to perform on bot startup"""
    global _scheduler

    logger.info("Starting Lucky Money Bot...")

    # NOTE: Database tables managed by Alembic migrations
    # Run: alembic upgrade head
    if not await check_connection():
        logger.error("Database unreachable, lucky money operations will fail")

    redis_mgr = get_redis_manager()
    redis_available = await redis_mgr.initialize()
    if redis_available:
        logger.info("Redis initialized successfully")
    else:
        logger.warning("Redis unavailable - locks and dialogue state kept in memory")

    await setup_bot_commands(bot)

    _scheduler = AsyncIOScheduler()
    schedule_expiry_tasks(_scheduler, _engine)
    _scheduler.start()
    logger.info("Packet expiry scheduler started")

    bot_info = await bot.get_me()
    logger.info(f"Bot started: @{bot_info.username} (ID: {bot_info.id})")


async def on_shutdown(bot: Bot, **kwargs) -> None:
    """Actions to perform on bot shutdown"""
    global _scheduler

    logger.info("Shutting down Lucky Money Bot...")

    if _scheduler:
        _scheduler.shutdown(wait=False)
        _scheduler = None
        logger.info("Packet expiry scheduler stopped")

    redis_mgr = get_redis_manager()
    await redis_mgr.close()
    logger.info("Redis closed")

    await dispose_engine()
    logger.info("Database connections closed")


async def main() -> None:
    """Main bot function"""
    global _engine

    setup_logging()
    init_sentry()

    try:
        validate_config()
    except ValueError as e:
        logger.error(f"Configuration validation failed: {e}. Please check your .env file.")
        sys.exit(1)

    logger.info("Configuration validated successfully")

    bot = Bot(
        token=BOT_TOKEN,
        default=DefaultBotProperties(
            parse_mode=ParseMode.HTML, link_preview_is_disabled=True
        ),
    )
    dp = Dispatcher()

    _engine = LuckyMoneyEngine(get_session_maker(), get_redis_manager(), get_config())

    # Register middleware (order matters!)
    # 1. Logging middleware (first to log everything)
    # 2. Database middleware (session + user)
    # 3. Language middleware (needs the user from 2)
    # 4. Engine middleware (engine services for handlers)
    for observer in (dp.message, dp.callback_query, dp.my_chat_member):
        observer.middleware(LoggingMiddleware())
        observer.middleware(DatabaseMiddleware())
        observer.middleware(LanguageMiddleware())
        observer.middleware(EngineMiddleware(_engine))

    dp.include_router(chat_member.router)
    dp.include_router(red_packet.router)  # catches plain text, must be last

    dp.startup.register(on_startup)
    dp.shutdown.register(on_shutdown)

    try:
        logger.info("Starting bot polling...")
        await dp.start_polling(
            bot,
            allowed_updates=dp.resolve_used_update_types(),
            drop_pending_updates=True,
        )
    except Exception as e:
        logger.exception(f"Critical error during bot operation: {e}")
        raise
    finally:
        await bot.session.close()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Bot stopped by user (KeyboardInterrupt)")
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        sys.exit(1)
