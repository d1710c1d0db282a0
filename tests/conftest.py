"""
Pytest configuration and fixtures for the lucky money tests
"""

import random
from decimal import Decimal
from typing import AsyncGenerator

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config.redpacket_config import (
    ConcurrencyConfig,
    QuotaConfig,
    RedPacketConfig,
)
from src.cache.memory_store import MemoryStore
from src.database.crud import upsert_chat_group
from src.database.engine import build_engine, init_db, make_session_maker
from src.services.balance_service import BalanceService
from src.services.red_packet_service import LuckyMoneyEngine


GROUP_ID = -1001234567890
OTHER_GROUP_ID = -1009876543210
SENDER_ID = 1001


@pytest.fixture(scope="function")
async def test_db_engine(tmp_path):
    """
    File-backed SQLite engine

    A file database (not :memory: + StaticPool) so that concurrent sessions
    get their own connections and really contend for the write lock.
    """
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'luckymoney.db'}")
    await init_db(engine)

    yield engine

    await engine.dispose()


@pytest.fixture(scope="function")
def session_maker(test_db_engine) -> async_sessionmaker[AsyncSession]:
    return make_session_maker(test_db_engine)


@pytest.fixture(scope="function")
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """
    Create test database session
    """
    async with session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture
def config() -> RedPacketConfig:
    """
    Engine configuration for tests: quotas off, generous claim retries so
    concurrent claim tests never give up on SQLite's single writer lock
    """
    return RedPacketConfig(
        quotas=QuotaConfig(hourly_send_count=0, daily_send_count=0, daily_send_amount=Decimal("0")),
        concurrency=ConcurrencyConfig(claim_lock_seconds=1, claim_max_retries=50, retry_base_delay=0.005),
    )


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def engine(session_maker, store, config) -> LuckyMoneyEngine:
    return LuckyMoneyEngine(session_maker, store, config, rng=random.Random(20240210))


@pytest.fixture
async def admin_group(session_maker):
    """A supergroup where the bot is an administrator."""
    async with session_maker() as session:
        return await upsert_chat_group(
            session, GROUP_ID, "supergroup", title="Lucky Group", bot_status="administrator"
        )


@pytest.fixture
def fund(session_maker):
    """Deposit money for a user: await fund(user_id, "100.00")"""
    async def _fund(user_id: int, amount) -> None:
        async with session_maker() as session:
            await BalanceService.deposit(
                session, user_id, Decimal(str(amount)), description="test deposit"
            )
    return _fund


@pytest.fixture
def balance_of(session_maker):
    async def _balance_of(user_id: int) -> Decimal:
        async with session_maker() as session:
            return await BalanceService.get_balance(session, user_id)
    return _balance_of
