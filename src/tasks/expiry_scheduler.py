"""
Packet Expiry Scheduler

Background task that periodically expires active packets past their TTL and
refunds the unclaimed remainder to the sender. Claims and detail views also
expire lazily; this job covers packets nobody touches again.
"""

from datetime import datetime

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger

from config.config import EXPIRY_CHECK_INTERVAL_MINUTES
from src.core.errors import StorageFailure
from src.services.red_packet_service import LuckyMoneyEngine


async def expire_overdue_packets(engine: LuckyMoneyEngine) -> int:
    """
    Expire every overdue packet

    Returns:
        Number of packets expired in this run
    """
    start_time = datetime.now()
    try:
        expired = await engine.expire_overdue()
    except StorageFailure as e:
        logger.error(f"Packet expiry run failed: {e}")
        return 0

    duration = (datetime.now() - start_time).total_seconds()
    logger.info(f"Packet expiry check completed in {duration:.2f}s: {expired} expired")
    return expired


def schedule_expiry_tasks(scheduler: AsyncIOScheduler, engine: LuckyMoneyEngine,
                          minutes: int = EXPIRY_CHECK_INTERVAL_MINUTES) -> None:
    """
    Schedule the packet expiry job

    Args:
        scheduler: APScheduler instance
        engine: Engine whose ledger does the expiry
        minutes: Interval between runs
    """
    scheduler.add_job(
        expire_overdue_packets,
        trigger="interval",
        minutes=minutes,
        args=[engine],
        id="expire_packets",
        name="Expire overdue lucky money packets",
        replace_existing=True,
        max_instances=1,
    )

    logger.info(f"Packet expiry scheduler configured: checking every {minutes} minutes")
