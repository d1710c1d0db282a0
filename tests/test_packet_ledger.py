"""
Tests for the packet ledger: creation, exactly-once claims, expiry and revoke
"""

import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from src.core.enums import ClaimOutcome, PacketStatus, RevokeOutcome, UnavailableReason
from src.core.errors import InvalidAllocationRequest
from src.database.crud import get_packet
from src.database.models import BalanceTransaction, ClaimRecord, PacketShare
from src.utils.time_utils import ensure_utc, utcnow

from tests.conftest import GROUP_ID, OTHER_GROUP_ID, SENDER_ID


async def _create(engine, fund, amount="50.00", count=5, title="Happy", now=None):
    await fund(SENDER_ID, "1000.00")
    packet = await engine.ledger.create_packet(
        SENDER_ID, GROUP_ID, Decimal(amount), count, title, now=now
    )
    assert packet is not None
    return packet


async def test_create_packet_debits_sender_and_stores_shares(engine, fund, balance_of, session_maker):
    packet = await _create(engine, fund)

    assert packet.packet_id.startswith("RP")
    assert len(packet.packet_id) == 22
    assert packet.status == PacketStatus.ACTIVE.value
    assert await balance_of(SENDER_ID) == Decimal("950.00")

    async with session_maker() as session:
        shares = (await session.execute(
            select(PacketShare).where(PacketShare.packet_id == packet.packet_id).order_by(PacketShare.position)
        )).scalars().all()

    assert [s.position for s in shares] == [0, 1, 2, 3, 4]
    assert sum(s.amount for s in shares) == Decimal("50.00")
    best = max(s.amount for s in shares)
    assert shares[packet.best_share_position].amount == best


async def test_create_packet_with_insufficient_balance_returns_none(engine, fund, balance_of):
    await fund(SENDER_ID, "10.00")

    packet = await engine.ledger.create_packet(SENDER_ID, GROUP_ID, Decimal("50.00"), 5, "Happy")

    assert packet is None
    assert await balance_of(SENDER_ID) == Decimal("10.00")


async def test_create_packet_rejects_unallocatable_request(engine, fund, balance_of):
    await fund(SENDER_ID, "10.00")

    with pytest.raises(InvalidAllocationRequest) as exc:
        await engine.ledger.create_packet(SENDER_ID, GROUP_ID, Decimal("0.05"), 6, "Happy")

    assert exc.value.field == "count"
    assert await balance_of(SENDER_ID) == Decimal("10.00")


async def test_claim_credits_claimant(engine, fund, balance_of):
    packet = await _create(engine, fund)

    result = await engine.ledger.claim(packet.packet_id, 2001, GROUP_ID)

    assert result.outcome == ClaimOutcome.CLAIMED
    assert result.claim_order == 1
    assert result.amount > 0
    assert await balance_of(2001) == result.amount


async def test_same_claimant_twice_is_already_claimed_and_credited_once(engine, fund, balance_of, session_maker):
    packet = await _create(engine, fund)

    first = await engine.ledger.claim(packet.packet_id, 2001, GROUP_ID)
    second = await engine.ledger.claim(packet.packet_id, 2001, GROUP_ID)

    assert first.outcome == ClaimOutcome.CLAIMED
    assert second.outcome == ClaimOutcome.ALREADY_CLAIMED
    assert second.amount == first.amount
    assert second.claim_order == first.claim_order
    assert await balance_of(2001) == first.amount

    async with session_maker() as session:
        credits = (await session.execute(
            select(func.count(BalanceTransaction.id)).where(BalanceTransaction.user_id == 2001)
        )).scalar_one()
    assert credits == 1


async def test_concurrent_attempts_by_one_claimant_claim_exactly_once(engine, fund, balance_of, session_maker):
    packet = await _create(engine, fund)

    results = await asyncio.gather(*[
        engine.ledger.claim(packet.packet_id, 2001, GROUP_ID) for _ in range(8)
    ])

    outcomes = [r.outcome for r in results]
    assert outcomes.count(ClaimOutcome.CLAIMED) == 1
    assert set(outcomes) <= {ClaimOutcome.CLAIMED, ClaimOutcome.ALREADY_CLAIMED}

    claimed = next(r for r in results if r.outcome == ClaimOutcome.CLAIMED)
    assert await balance_of(2001) == claimed.amount

    async with session_maker() as session:
        records = (await session.execute(
            select(func.count(ClaimRecord.id)).where(ClaimRecord.packet_id == packet.packet_id)
        )).scalar_one()
    assert records == 1


async def test_red_50_5_with_five_concurrent_claimants(engine, fund, balance_of, session_maker):
    """/red 50 5 Happy, five people grab at once, a sixth comes too late"""
    packet = await _create(engine, fund)
    claimants = [3001, 3002, 3003, 3004, 3005]

    results = await asyncio.gather(*[
        engine.ledger.claim(packet.packet_id, uid, GROUP_ID) for uid in claimants
    ])

    assert all(r.outcome == ClaimOutcome.CLAIMED for r in results)
    assert sorted(r.claim_order for r in results) == [1, 2, 3, 4, 5]
    assert sum(r.amount for r in results) == Decimal("50.00")
    assert sum(1 for r in results if r.completed) == 1

    late = await engine.ledger.claim(packet.packet_id, 3006, GROUP_ID)
    assert late.outcome == ClaimOutcome.UNAVAILABLE
    assert late.reason == UnavailableReason.COMPLETED

    async with session_maker() as session:
        stored = await get_packet(session, packet.packet_id)
        records = (await session.execute(
            select(ClaimRecord).where(ClaimRecord.packet_id == packet.packet_id)
        )).scalars().all()
        shares = (await session.execute(
            select(PacketShare).where(PacketShare.packet_id == packet.packet_id)
        )).scalars().all()

    assert stored.status == PacketStatus.COMPLETED.value
    assert stored.claimed_count == 5
    assert stored.claimed_amount == Decimal("50.00")
    assert stored.finished_at is not None
    assert all(s.claimed_by is not None for s in shares)

    best = [r for r in records if r.is_best_luck]
    assert len(best) == 1
    assert best[0].amount == max(s.amount for s in shares)

    for result, uid in zip(results, claimants):
        assert await balance_of(uid) == result.amount


async def test_more_claimants_than_shares_never_over_claims(engine, fund, session_maker):
    packet = await _create(engine, fund, amount="3.00", count=3)

    results = await asyncio.gather(*[
        engine.ledger.claim(packet.packet_id, 4000 + i, GROUP_ID) for i in range(8)
    ])

    claimed = [r for r in results if r.outcome == ClaimOutcome.CLAIMED]
    assert len(claimed) == 3
    assert sorted(r.claim_order for r in claimed) == [1, 2, 3]
    assert all(
        r.outcome == ClaimOutcome.UNAVAILABLE and r.reason == UnavailableReason.COMPLETED
        for r in results if r.outcome != ClaimOutcome.CLAIMED
    )


async def test_sender_cannot_claim_own_packet(engine, fund):
    packet = await _create(engine, fund)

    result = await engine.ledger.claim(packet.packet_id, SENDER_ID, GROUP_ID)

    assert result.outcome == ClaimOutcome.SELF_CLAIM


async def test_claim_from_another_chat_is_unavailable(engine, fund):
    packet = await _create(engine, fund)

    result = await engine.ledger.claim(packet.packet_id, 2001, OTHER_GROUP_ID)

    assert result.outcome == ClaimOutcome.UNAVAILABLE
    assert result.reason == UnavailableReason.WRONG_CHAT


async def test_claim_unknown_packet(engine):
    result = await engine.ledger.claim("RP00000000000000000000", 2001, GROUP_ID)

    assert result.outcome == ClaimOutcome.UNAVAILABLE
    assert result.reason == UnavailableReason.NOT_FOUND


async def test_claim_after_ttl_expires_and_refunds(engine, fund, balance_of):
    created_at = utcnow() - timedelta(hours=25)
    packet = await _create(engine, fund, now=created_at)
    await engine.ledger.claim(packet.packet_id, 2001, GROUP_ID, now=created_at + timedelta(minutes=1))
    claimed = await balance_of(2001)

    result = await engine.ledger.claim(packet.packet_id, 2002, GROUP_ID)

    assert result.outcome == ClaimOutcome.UNAVAILABLE
    assert result.reason == UnavailableReason.EXPIRED
    assert await balance_of(SENDER_ID) == Decimal("1000.00") - claimed


async def test_expire_overdue_refunds_remainder_once(engine, fund, balance_of, session_maker):
    created_at = utcnow() - timedelta(hours=30)
    packet = await _create(engine, fund, now=created_at)
    first = await engine.ledger.claim(packet.packet_id, 2001, GROUP_ID, now=created_at + timedelta(minutes=5))

    assert await engine.ledger.expire_overdue() == 1
    assert await engine.ledger.expire_overdue() == 0
    assert await engine.ledger.expire_packet(packet.packet_id) is False

    assert await balance_of(SENDER_ID) == Decimal("1000.00") - first.amount

    async with session_maker() as session:
        stored = await get_packet(session, packet.packet_id)
        refunds = (await session.execute(
            select(BalanceTransaction).where(BalanceTransaction.transaction_id == f"refund:{packet.packet_id}")
        )).scalars().all()

    assert stored.status == PacketStatus.EXPIRED.value
    assert len(refunds) == 1
    assert refunds[0].amount == Decimal("50.00") - first.amount


async def test_expire_ignores_packets_within_ttl(engine, fund):
    packet = await _create(engine, fund)

    assert await engine.ledger.expire_packet(packet.packet_id) is False
    assert await engine.ledger.expire_overdue() == 0


async def test_packet_is_still_claimable_at_its_expiry_instant(engine, fund):
    packet = await _create(engine, fund)
    deadline = ensure_utc(packet.expires_at)

    result = await engine.ledger.claim(packet.packet_id, 2001, GROUP_ID, now=deadline)

    assert result.outcome == ClaimOutcome.CLAIMED
    assert await engine.ledger.expire_packet(packet.packet_id, now=deadline) is False
    assert await engine.ledger.expire_overdue(now=deadline) == 0
    assert await engine.ledger.expire_packet(packet.packet_id, now=deadline + timedelta(seconds=1)) is True


async def test_revoke_by_sender_refunds_remainder(engine, fund, balance_of):
    packet = await _create(engine, fund)
    claim = await engine.ledger.claim(packet.packet_id, 2001, GROUP_ID)

    result = await engine.ledger.revoke_packet(packet.packet_id, SENDER_ID)

    assert result.outcome == RevokeOutcome.REVOKED
    assert result.refunded == Decimal("50.00") - claim.amount
    assert await balance_of(SENDER_ID) == Decimal("1000.00") - claim.amount

    late = await engine.ledger.claim(packet.packet_id, 2002, GROUP_ID)
    assert late.outcome == ClaimOutcome.UNAVAILABLE
    assert late.reason == UnavailableReason.REVOKED


async def test_revoke_only_by_sender_and_only_while_active(engine, fund):
    packet = await _create(engine, fund)

    assert (await engine.ledger.revoke_packet(packet.packet_id, 2001)).outcome == RevokeOutcome.NOT_SENDER
    assert (await engine.ledger.revoke_packet(packet.packet_id, SENDER_ID)).outcome == RevokeOutcome.REVOKED
    assert (await engine.ledger.revoke_packet(packet.packet_id, SENDER_ID)).outcome == RevokeOutcome.NOT_ACTIVE
    assert (await engine.ledger.revoke_packet("RPmissing", SENDER_ID)).outcome == RevokeOutcome.NOT_FOUND


async def test_set_message_id(engine, fund, session_maker):
    packet = await _create(engine, fund)

    await engine.ledger.set_message_id(packet.packet_id, 777)

    async with session_maker() as session:
        assert (await get_packet(session, packet.packet_id)).message_id == 777
