"""
Tests for the LuckyMoneyEngine facade: guarded create and claim
"""

import asyncio
from decimal import Decimal

from src.cache.cache_keys import CacheKeyBuilder
from src.core.enums import ClaimOutcome, CreateOutcome, PacketMode, ValidationReason
from src.services.validation_gate import CreationRequest

from tests.conftest import GROUP_ID, SENDER_ID


def _request(amount="50.00", count=5, title="Happy", **kwargs):
    return CreationRequest(
        sender_id=SENDER_ID,
        chat_id=GROUP_ID,
        chat_type="supergroup",
        amount=Decimal(amount),
        count=count,
        title=title,
        **kwargs,
    )


async def test_create_returns_packet(engine, fund, admin_group, balance_of):
    await fund(SENDER_ID, "100.00")

    result = await engine.create(_request())

    assert result.ok
    assert result.packet.total_amount == Decimal("50.00")
    assert result.packet.origin_chat_id == GROUP_ID
    assert await balance_of(SENDER_ID) == Decimal("50.00")


async def test_create_twice_in_sequence_is_allowed(engine, fund, admin_group):
    """The send-guard is released after a successful create"""
    await fund(SENDER_ID, "100.00")

    assert (await engine.create(_request())).ok
    assert (await engine.create(_request())).ok


async def test_double_submit_is_duplicate(engine, fund, admin_group, balance_of):
    await fund(SENDER_ID, "100.00")

    results = await asyncio.gather(engine.create(_request()), engine.create(_request()))

    outcomes = sorted(r.outcome.value for r in results)
    assert outcomes == sorted([CreateOutcome.CREATED.value, CreateOutcome.DUPLICATE.value])
    assert await balance_of(SENDER_ID) == Decimal("50.00")


async def test_validation_failure_reports_field(engine, fund, admin_group):
    await fund(SENDER_ID, "10.00")

    result = await engine.create(_request())

    assert result.outcome == CreateOutcome.VALIDATION_FAILED
    assert result.validation.reason == ValidationReason.INSUFFICIENT_BALANCE
    assert result.error_field == "amount"


async def test_failed_create_keeps_send_guard(engine, fund, admin_group):
    await fund(SENDER_ID, "10.00")
    await engine.create(_request())
    await fund(SENDER_ID, "100.00")

    retried = await engine.create(_request())

    assert retried.outcome == CreateOutcome.DUPLICATE


async def test_average_mode_and_max_share_count(engine, fund, admin_group):
    await fund(SENDER_ID, "100.00")

    result = await engine.create(_request(amount="5.00", count=5, mode=PacketMode.AVERAGE))
    assert result.ok

    result = await engine.create(_request(amount="1.00", count=100, title="many"))
    assert result.ok
    assert result.packet.total_count == 100


async def test_claim_through_engine(engine, fund, admin_group, balance_of):
    await fund(SENDER_ID, "100.00")
    packet = (await engine.create(_request())).packet

    result = await engine.claim(packet.packet_id, 2001, GROUP_ID)

    assert result.outcome == ClaimOutcome.CLAIMED
    assert await balance_of(2001) == result.amount


async def test_double_tap_through_engine_claims_once(engine, fund, admin_group, balance_of):
    await fund(SENDER_ID, "100.00")
    packet = (await engine.create(_request())).packet

    results = await asyncio.gather(*[
        engine.claim(packet.packet_id, 2001, GROUP_ID) for _ in range(5)
    ])

    outcomes = sorted(r.outcome.value for r in results)
    assert outcomes == ["already_claimed"] * 4 + ["claimed"]
    claimed = next(r for r in results if r.ok)
    assert await balance_of(2001) == claimed.amount
    assert all(r.amount == claimed.amount for r in results)


async def test_tap_while_attempt_in_flight_waits_for_it(engine, fund, admin_group):
    await fund(SENDER_ID, "100.00")
    packet = (await engine.create(_request())).packet
    await engine.guard.acquire_claim(packet.packet_id, 2001)

    async def finish_first_attempt():
        await asyncio.sleep(0.1)
        first = await engine.ledger.claim(packet.packet_id, 2001, GROUP_ID)
        await engine.guard.release_claim(packet.packet_id, 2001)
        return first

    first, second = await asyncio.gather(
        finish_first_attempt(), engine.claim(packet.packet_id, 2001, GROUP_ID)
    )

    assert first.outcome == ClaimOutcome.CLAIMED
    assert second.outcome == ClaimOutcome.ALREADY_CLAIMED
    assert second.amount == first.amount


async def test_claim_guard_released_only_after_success(engine, fund, admin_group, store):
    await fund(SENDER_ID, "100.00")
    packet = (await engine.create(_request())).packet

    assert (await engine.claim(packet.packet_id, 2001, GROUP_ID)).ok
    assert not await store.exists(CacheKeyBuilder.claim_lock(packet.packet_id, 2001))

    missing = await engine.claim("RPunknown", 2001, GROUP_ID)
    assert missing.outcome == ClaimOutcome.UNAVAILABLE
    assert await store.exists(CacheKeyBuilder.claim_lock("RPunknown", 2001))

    # the repeat outlives the held lock and still gets an answer
    again = await engine.claim("RPunknown", 2001, GROUP_ID)
    assert again.outcome == ClaimOutcome.UNAVAILABLE


async def test_concurrent_claims_through_engine(engine, fund, admin_group):
    await fund(SENDER_ID, "100.00")
    packet = (await engine.create(_request(amount="10.00", count=4))).packet

    results = await asyncio.gather(*[
        engine.claim(packet.packet_id, 5000 + i, GROUP_ID) for i in range(6)
    ])

    claimed = [r for r in results if r.ok]
    assert len(claimed) == 4
    assert sum(r.amount for r in claimed) == Decimal("10.00")


async def test_revoke_and_expire_delegate_to_ledger(engine, fund, admin_group, balance_of):
    await fund(SENDER_ID, "100.00")
    packet = (await engine.create(_request())).packet

    revoked = await engine.revoke(packet.packet_id, SENDER_ID)

    assert revoked.ok
    assert await balance_of(SENDER_ID) == Decimal("100.00")
    assert await engine.expire_overdue() == 0
