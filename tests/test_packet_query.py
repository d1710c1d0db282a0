"""
Tests for packet detail, leaderboard, history and rankings
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from src.core.enums import PacketStatus
from src.database.crud import get_or_create_user
from src.utils.time_utils import utcnow

from tests.conftest import GROUP_ID, OTHER_GROUP_ID, SENDER_ID


async def _packet(engine, fund, amount="10.00", count=3, title="Happy", now=None, chat_id=GROUP_ID):
    await fund(SENDER_ID, "1000.00")
    return await engine.ledger.create_packet(SENDER_ID, chat_id, Decimal(amount), count, title, now=now)


async def test_packet_detail_progress_and_sender_name(engine, fund, session_maker):
    async with session_maker() as session:
        await get_or_create_user(session, SENDER_ID, username="alice", first_name="Alice")
    packet = await _packet(engine, fund, amount="9.00", count=3)
    claim = await engine.ledger.claim(packet.packet_id, 2001, GROUP_ID)

    detail = await engine.queries.get_packet_detail(packet.packet_id)

    assert detail["status"] == PacketStatus.ACTIVE.value
    assert detail["claimed_count"] == 1
    assert detail["remaining_count"] == 2
    assert detail["remaining_amount"] == Decimal("9.00") - claim.amount
    assert detail["progress"] == round(1 / 3, 4)
    assert detail["sender_name"] == "@alice"


async def test_packet_detail_unknown(engine):
    assert await engine.queries.get_packet_detail("RPnope") is None


async def test_packet_detail_expires_overdue_packet(engine, fund, balance_of):
    packet = await _packet(engine, fund, now=utcnow() - timedelta(hours=25))

    detail = await engine.queries.get_packet_detail(packet.packet_id)

    assert detail["status"] == PacketStatus.EXPIRED.value
    assert await balance_of(SENDER_ID) == Decimal("1000.00")


async def test_leaderboard_in_claim_order_with_best_luck(engine, fund):
    packet = await _packet(engine, fund, amount="10.00", count=3)
    for uid in (2001, 2002, 2003):
        await engine.ledger.claim(packet.packet_id, uid, GROUP_ID)

    board = await engine.queries.get_leaderboard(packet.packet_id)

    assert [row["claimant_id"] for row in board] == [2001, 2002, 2003]
    assert [row["claim_order"] for row in board] == [1, 2, 3]
    assert sum(row["amount"] for row in board) == Decimal("10.00")
    assert sum(1 for row in board if row["is_best_luck"]) == 1
    assert board[0]["name"] == "user_2001"


async def test_user_history_and_stats(engine, fund):
    mine = await _packet(engine, fund, title="mine")
    await engine.ledger.claim(mine.packet_id, 2001, GROUP_ID)

    await fund(2001, "100.00")
    theirs = await engine.ledger.create_packet(2001, GROUP_ID, Decimal("5.00"), 1, "theirs")
    taken = await engine.ledger.claim(theirs.packet_id, SENDER_ID, GROUP_ID)

    history = await engine.queries.get_user_history(SENDER_ID)
    assert history["page"] == 1
    assert [p["title"] for p in history["sent"]] == ["mine"]
    assert history["received"][0]["title"] == "theirs"
    assert history["received"][0]["amount"] == Decimal("5.00")

    stats = await engine.queries.get_user_stats(SENDER_ID)
    assert stats["sent_count"] == 1
    assert stats["sent_amount"] == Decimal("10.00")
    assert stats["received_count"] == 1
    assert stats["received_amount"] == taken.amount
    # a single-share packet: its only claim is the best one
    assert stats["best_luck_count"] == 1


async def test_user_history_paging(engine, fund):
    for i in range(3):
        await _packet(engine, fund, title=f"p{i}", now=utcnow() - timedelta(minutes=10 - i))

    first = await engine.queries.get_user_history(SENDER_ID, page=1, limit=2)
    second = await engine.queries.get_user_history(SENDER_ID, page=2, limit=2)

    assert [p["title"] for p in first["sent"]] == ["p2", "p1"]
    assert [p["title"] for p in second["sent"]] == ["p0"]


async def test_active_packets_per_chat(engine, fund):
    active = await _packet(engine, fund, title="active")
    await _packet(engine, fund, title="stale", now=utcnow() - timedelta(hours=30))
    await _packet(engine, fund, title="elsewhere", chat_id=OTHER_GROUP_ID)

    packets = await engine.queries.get_active_packets(GROUP_ID)

    assert [p["packet_id"] for p in packets] == [active.packet_id]


async def test_ranking_kinds(engine, fund):
    first = await _packet(engine, fund, amount="4.00", count=2)
    second = await _packet(engine, fund, amount="6.00", count=1)
    await engine.ledger.claim(first.packet_id, 2001, GROUP_ID)
    await engine.ledger.claim(first.packet_id, 2002, GROUP_ID)
    await engine.ledger.claim(second.packet_id, 2002, GROUP_ID)

    by_count = await engine.queries.get_ranking("count", "all")
    assert by_count[0] == {"rank": 1, "user_id": 2002, "name": "user_2002", "value": 2}

    by_amount = await engine.queries.get_ranking("amount", "today")
    assert by_amount[0]["user_id"] == 2002
    assert sum(row["value"] for row in by_amount) == Decimal("10.00")

    best = await engine.queries.get_ranking("best_luck", "week")
    assert sum(row["value"] for row in best) == 2


async def test_ranking_period_excludes_old_claims(engine, fund):
    long_ago = utcnow() - timedelta(days=40)
    packet = await _packet(engine, fund, amount="2.00", count=1, now=long_ago)
    await engine.ledger.claim(packet.packet_id, 2001, GROUP_ID, now=long_ago + timedelta(minutes=1))

    assert await engine.queries.get_ranking("amount", "month") == []
    assert len(await engine.queries.get_ranking("amount", "all")) == 1


@pytest.mark.parametrize("kind, period", [("luck", "all"), ("amount", "year")])
async def test_ranking_rejects_unknown_arguments(engine, kind, period):
    with pytest.raises(ValueError):
        await engine.queries.get_ranking(kind, period)
