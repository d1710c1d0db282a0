# coding: utf-8
"""
Share allocation for lucky money packets

Pure functions, no I/O. All arithmetic runs in integer minor units
(cents at precision=2), so the sum of the shares is always exactly the
packet total.

Modes:
- random: "two-times-average" draw. Each draw is uniform on
  [min_share, min(2 * remaining / remaining_count,
  remaining - (remaining_count - 1) * min_share)], the last share takes the
  rest, then the list is shuffled.
- average: floor(total / count) for every share, the last one absorbs the
  remainder.
- custom: caller-supplied shares, validated and normalized.

Randomness comes from an injected random.Random so tests can replay draws.
"""
import random
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_DOWN
from typing import Any, Dict, List, Optional, Sequence

from src.core.enums import PacketMode
from src.core.errors import InvalidAllocationRequest


MAX_SHARE_COUNT = 1000
CUSTOM_SUM_EPSILON = Decimal("0.01")


@dataclass(frozen=True)
class Draw:
    """One step of the random draw, before shuffling."""
    amount: Decimal
    remaining_amount: Decimal  # pool left before this draw
    remaining_count: int       # shares left before this draw
    upper_bound: Decimal


def to_decimal(value: Any) -> Decimal:
    """Convert str / int / float / Decimal to Decimal without float noise."""
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as e:
        raise InvalidAllocationRequest(f"Not a valid amount: {value!r}") from e


def _unit(precision: int) -> Decimal:
    return Decimal(1).scaleb(-precision)


def fits_precision(value: Decimal, precision: int) -> bool:
    """True if value has no more than `precision` decimal places"""
    try:
        return value == value.quantize(_unit(precision), rounding=ROUND_DOWN)
    except InvalidOperation:
        # more significant digits than the decimal context carries
        return False


def _to_units(amount: Decimal, precision: int) -> int:
    return int(amount.scaleb(precision))


def _from_units(units: int, precision: int) -> Decimal:
    return (Decimal(units) * _unit(precision)).quantize(_unit(precision))


def check_allocation_request(
    total_amount: Any,
    total_count: int,
    min_share: Any,
    precision: int = 2,
) -> Decimal:
    """
    Verify that (total_amount, total_count, min_share) can be allocated

    Args:
        total_amount: Packet total
        total_count: Number of shares
        min_share: Per-share floor
        precision: Fraction digits of the currency

    Returns:
        total_amount as a Decimal

    Raises:
        InvalidAllocationRequest: with .field set to the offending input
    """
    total = to_decimal(total_amount)
    floor = to_decimal(min_share)

    if not total.is_finite() or total <= 0:
        raise InvalidAllocationRequest("Amount must be positive", field="amount")
    if not fits_precision(total, precision):
        raise InvalidAllocationRequest(
            f"Amount is not representable with {precision} decimal places",
            field="amount",
        )
    if isinstance(total_count, bool) or not isinstance(total_count, int):
        raise InvalidAllocationRequest("Count must be an integer", field="count")
    if total_count < 1 or total_count > MAX_SHARE_COUNT:
        raise InvalidAllocationRequest(
            f"Count must be between 1 and {MAX_SHARE_COUNT}", field="count"
        )
    if not floor.is_finite() or floor < 0 or not fits_precision(floor, precision):
        raise InvalidAllocationRequest(f"Invalid per-share floor: {floor}", field="amount")
    if total < floor * total_count:
        raise InvalidAllocationRequest(
            f"{total} cannot be split into {total_count} shares of at least {floor}",
            field="count",
        )
    return total


def random_draws(
    total_amount: Any,
    total_count: int,
    min_share: Any,
    rng: Optional[random.Random] = None,
    precision: int = 2,
) -> List[Draw]:
    """
    Run the two-times-average draw and return the full trace (unshuffled)

    Args:
        total_amount: Packet total
        total_count: Number of shares
        min_share: Per-share floor
        rng: Random source (defaults to a fresh SystemRandom)
        precision: Fraction digits of the currency

    Returns:
        List of Draw, one per share, in generation order
    """
    total = check_allocation_request(total_amount, total_count, min_share, precision)
    rng = rng or random.SystemRandom()

    floor = _to_units(to_decimal(min_share), precision)
    remaining = _to_units(total, precision)
    remaining_count = total_count
    draws = []

    while remaining_count > 1:
        upper = min(2 * remaining // remaining_count, remaining - (remaining_count - 1) * floor)
        share = rng.randint(floor, upper)
        draws.append(Draw(
            amount=_from_units(share, precision),
            remaining_amount=_from_units(remaining, precision),
            remaining_count=remaining_count,
            upper_bound=_from_units(upper, precision),
        ))
        remaining -= share
        remaining_count -= 1

    draws.append(Draw(
        amount=_from_units(remaining, precision),
        remaining_amount=_from_units(remaining, precision),
        remaining_count=1,
        upper_bound=_from_units(remaining, precision),
    ))
    return draws


def _enforce_floor_and_total(units: List[int], total: int, floor: int) -> List[int]:
    """Clamp shares up to the floor, then correct so the sum is exactly total."""
    units = [max(u, floor) for u in units]
    excess = sum(units) - total
    if excess > 0:
        # take from the final share first, then from the largest ones
        order = [len(units) - 1] + sorted(
            range(len(units) - 1), key=lambda i: units[i], reverse=True
        )
        for i in order:
            take = min(excess, units[i] - floor)
            units[i] -= take
            excess -= take
            if excess == 0:
                break
    elif excess < 0:
        units[-1] -= excess
    return units


def _allocate_random(total: Decimal, count: int, floor: Decimal,
                     rng: random.Random, precision: int) -> List[int]:
    draws = random_draws(total, count, floor, rng=rng, precision=precision)
    units = [_to_units(d.amount, precision) for d in draws]
    rng.shuffle(units)
    return units


def _allocate_average(total: Decimal, count: int, precision: int) -> List[int]:
    total_units = _to_units(total, precision)
    base = total_units // count
    return [base] * (count - 1) + [total_units - base * (count - 1)]


def _allocate_custom(total: Decimal, count: int, floor: Decimal,
                     custom_shares: Optional[Sequence[Any]], precision: int) -> List[int]:
    if custom_shares is None:
        raise InvalidAllocationRequest("Custom mode requires the share list", field="amount")
    shares = [to_decimal(s) for s in custom_shares]
    if len(shares) != count:
        raise InvalidAllocationRequest(
            f"Expected {count} custom shares, got {len(shares)}", field="count"
        )
    if any(s < floor for s in shares):
        raise InvalidAllocationRequest(f"Every share must be at least {floor}", field="amount")
    if abs(sum(shares) - total) > CUSTOM_SUM_EPSILON:
        raise InvalidAllocationRequest(
            f"Custom shares sum to {sum(shares)}, expected {total}", field="amount"
        )

    quantum = _unit(precision)
    units = [_to_units(s.quantize(quantum, rounding=ROUND_DOWN), precision) for s in shares]
    units[-1] += _to_units(total, precision) - sum(units)
    if units[-1] < _to_units(floor, precision):
        raise InvalidAllocationRequest("Custom shares cannot be normalized", field="amount")
    return units


def allocate(
    total_amount: Any,
    total_count: int,
    mode: PacketMode,
    min_share: Any,
    rng: Optional[random.Random] = None,
    custom_shares: Optional[Sequence[Any]] = None,
    precision: int = 2,
) -> List[Decimal]:
    """
    Split total_amount into total_count shares

    Args:
        total_amount: Packet total (> 0, at most `precision` decimals)
        total_count: Number of shares, 1..1000
        mode: PacketMode
        min_share: Per-share floor
        rng: Random source for random mode (defaults to SystemRandom)
        custom_shares: Share list for custom mode
        precision: Fraction digits of the currency

    Returns:
        List of Decimal shares; sum == total_amount, every share >= min_share

    Raises:
        InvalidAllocationRequest: if the request cannot be satisfied
    """
    total = check_allocation_request(total_amount, total_count, min_share, precision)
    floor = to_decimal(min_share)
    mode = PacketMode(mode)

    if mode == PacketMode.RANDOM:
        units = _allocate_random(total, total_count, floor, rng or random.SystemRandom(), precision)
    elif mode == PacketMode.AVERAGE:
        units = _allocate_average(total, total_count, precision)
    else:
        units = _allocate_custom(total, total_count, floor, custom_shares, precision)

    units = _enforce_floor_and_total(
        units, _to_units(total, precision), _to_units(floor, precision)
    )
    return [_from_units(u, precision) for u in units]


def best_share_position(shares: Sequence[Decimal]) -> int:
    """Index of the first share holding the maximum amount."""
    best = max(shares)
    return next(i for i, s in enumerate(shares) if s == best)


def describe_shares(shares: Sequence[Decimal]) -> Dict[str, Any]:
    """Summary statistics for logging."""
    if not shares:
        return {"count": 0}
    total = sum(shares)
    return {
        "count": len(shares),
        "total": total,
        "min": min(shares),
        "max": max(shares),
        "mean": (total / len(shares)).quantize(Decimal("0.0001")),
        "spread": max(shares) - min(shares),
    }
