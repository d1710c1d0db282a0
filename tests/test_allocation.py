"""
Unit tests for share allocation
"""

import random
from decimal import Decimal

import pytest
from hypothesis import given, settings, strategies as st

from src.core.enums import PacketMode
from src.core.errors import InvalidAllocationRequest
from src.services.allocation import (
    allocate,
    best_share_position,
    check_allocation_request,
    describe_shares,
    random_draws,
)


CENT = Decimal("0.01")

# (total in cents, count) pairs that satisfy total >= count * 0.01
requests = st.integers(min_value=1, max_value=200).flatmap(
    lambda count: st.tuples(
        st.integers(min_value=count, max_value=1_000_000),
        st.just(count),
    )
)


@settings(max_examples=200, deadline=None)
@given(request=requests, seed=st.integers(min_value=0, max_value=2**32))
def test_random_shares_sum_to_total(request, seed):
    """Conservation: shares always add up to the exact total"""
    cents, count = request
    total = Decimal(cents) * CENT

    shares = allocate(total, count, PacketMode.RANDOM, CENT, rng=random.Random(seed))

    assert len(shares) == count
    assert sum(shares) == total


@settings(max_examples=200, deadline=None)
@given(request=requests, seed=st.integers(min_value=0, max_value=2**32))
def test_random_shares_respect_floor_and_precision(request, seed):
    cents, count = request
    total = Decimal(cents) * CENT

    shares = allocate(total, count, PacketMode.RANDOM, CENT, rng=random.Random(seed))

    assert all(share >= CENT for share in shares)
    assert all(share == share.quantize(CENT) for share in shares)


@settings(max_examples=200, deadline=None)
@given(request=requests, seed=st.integers(min_value=0, max_value=2**32))
def test_random_draws_never_exceed_twice_the_running_average(request, seed):
    """Fairness: every draw but the last is at most 2x the remaining average"""
    cents, count = request
    total = Decimal(cents) * CENT

    draws = random_draws(total, count, CENT, rng=random.Random(seed))

    for draw in draws[:-1]:
        assert draw.amount <= draw.upper_bound
        assert draw.amount * draw.remaining_count <= 2 * draw.remaining_amount
    assert draws[-1].amount == draws[-1].remaining_amount


@settings(max_examples=100, deadline=None)
@given(request=requests, seed=st.integers(min_value=0, max_value=2**32))
def test_allocate_is_a_shuffle_of_the_draw_sequence(request, seed):
    """Re-deriving the draws with the same seed gives the same multiset of shares"""
    cents, count = request
    total = Decimal(cents) * CENT

    shares = allocate(total, count, PacketMode.RANDOM, CENT, rng=random.Random(seed))
    draws = random_draws(total, count, CENT, rng=random.Random(seed))

    assert sorted(shares) == sorted(d.amount for d in draws)


def test_hundred_split_into_ten():
    """allocate(100.00, 10, random, 0.01)"""
    rng = random.Random(7)
    shares = allocate(Decimal("100.00"), 10, PacketMode.RANDOM, Decimal("0.01"), rng=rng)

    assert len(shares) == 10
    assert sum(shares) == Decimal("100.00")
    assert min(shares) >= Decimal("0.01")
    first = random_draws(Decimal("100.00"), 10, Decimal("0.01"), rng=random.Random(7))[0]
    assert first.upper_bound == Decimal("20.00")
    assert Decimal("0.01") <= first.amount <= Decimal("20.00")


def test_exact_floor_gives_every_share_the_floor():
    shares = allocate(Decimal("0.05"), 5, PacketMode.RANDOM, Decimal("0.01"), rng=random.Random(1))
    assert shares == [Decimal("0.01")] * 5


def test_single_share_gets_everything():
    shares = allocate(Decimal("8.88"), 1, PacketMode.RANDOM, Decimal("0.01"), rng=random.Random(3))
    assert shares == [Decimal("8.88")]


def test_average_mode_last_share_absorbs_remainder():
    shares = allocate(Decimal("10.00"), 3, PacketMode.AVERAGE, Decimal("0.01"))

    assert shares == [Decimal("3.33"), Decimal("3.33"), Decimal("3.34")]
    assert sum(shares) == Decimal("10.00")


def test_custom_mode_keeps_given_shares():
    shares = allocate(
        Decimal("10.00"), 3, PacketMode.CUSTOM, Decimal("0.01"),
        custom_shares=["5.00", "3.00", "2.00"],
    )
    assert shares == [Decimal("5.00"), Decimal("3.00"), Decimal("2.00")]


def test_custom_mode_normalizes_small_drift():
    shares = allocate(
        Decimal("10.00"), 3, PacketMode.CUSTOM, Decimal("0.01"),
        custom_shares=["3.333", "3.333", "3.333"],
    )
    assert sum(shares) == Decimal("10.00")
    assert shares[-1] == Decimal("3.34")


@pytest.mark.parametrize(
    "custom, field",
    [
        (None, "amount"),
        (["5.00", "5.00"], "count"),
        (["9.99", "0.00", "0.01"], "amount"),
        (["5.00", "3.00", "1.00"], "amount"),
    ],
)
def test_custom_mode_rejects_bad_share_lists(custom, field):
    with pytest.raises(InvalidAllocationRequest) as exc:
        allocate(Decimal("10.00"), 3, PacketMode.CUSTOM, Decimal("0.01"), custom_shares=custom)
    assert exc.value.field == field


@pytest.mark.parametrize(
    "amount, count, field",
    [
        ("0", 1, "amount"),
        ("-5", 2, "amount"),
        ("1.001", 1, "amount"),
        ("1" * 31, 1, "amount"),
        ("1" * 29 + ".5", 1, "amount"),
        ("abc", 1, "amount"),
        ("10", 0, "count"),
        ("10", 1001, "count"),
        ("0.05", 6, "count"),
    ],
)
def test_invalid_requests_name_the_field(amount, count, field):
    with pytest.raises(InvalidAllocationRequest) as exc:
        check_allocation_request(amount, count, Decimal("0.01"))
    assert exc.value.field == field


def test_best_share_position_picks_first_maximum():
    shares = [Decimal("1.00"), Decimal("3.00"), Decimal("3.00"), Decimal("0.50")]
    assert best_share_position(shares) == 1


def test_describe_shares():
    summary = describe_shares([Decimal("1.00"), Decimal("3.00")])
    assert summary["count"] == 2
    assert summary["total"] == Decimal("4.00")
    assert summary["spread"] == Decimal("2.00")
    assert describe_shares([]) == {"count": 0}
