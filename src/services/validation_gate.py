# coding: utf-8
"""
Validation Gate

Rule checks run before a packet is created, short-circuiting on the first
failure:

1. BALANCE          sender balance >= amount
2. BOUNDS           amount / count / title limits
3. CHAT_PERMISSION  group chat only, bot must be admin there
4. QUOTA            hourly count, daily count, daily amount per sender

Rules are registered per RuleKind in RULES and run in RuleKind declaration
order. Every failure is a ValidationResult with a ValidationReason so the
caller can render a precise message.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, Optional

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from config.redpacket_config import RedPacketConfig
from src.core.enums import PacketMode, RuleKind, ValidationReason
from src.database import crud
from src.database.models import ChatType
from src.services.allocation import fits_precision
from src.services.balance_service import BalanceService
from src.utils.time_utils import day_window, ensure_utc, hour_ago, utcnow


@dataclass
class CreationRequest:
    """A complete packet creation request."""
    sender_id: int
    chat_id: int
    chat_type: str
    amount: Decimal
    count: int
    title: str
    mode: PacketMode = PacketMode.RANDOM


@dataclass
class ValidationResult:
    ok: bool
    reason: Optional[ValidationReason] = None
    rule: Optional[RuleKind] = None
    detail: Dict[str, Any] = field(default_factory=dict)
    remaining: Optional[Any] = None        # quota allowance left
    resets_at: Optional[datetime] = None   # when the quota window resets

    @property
    def target_field(self) -> str:
        """Draft field to correct ('amount', 'count', 'title' or 'none')."""
        return self.reason.target_field if self.reason else "none"

    @classmethod
    def passed(cls) -> "ValidationResult":
        return cls(ok=True)

    @classmethod
    def failed(cls, reason: ValidationReason, **kwargs) -> "ValidationResult":
        return cls(ok=False, reason=reason, **kwargs)


RuleFn = Callable[["ValidationGate", AsyncSession, CreationRequest, datetime], Awaitable[ValidationResult]]
RULES: Dict[RuleKind, RuleFn] = {}


def rule(kind: RuleKind):
    """Register a rule function for a RuleKind."""
    def decorator(fn: RuleFn) -> RuleFn:
        RULES[kind] = fn
        return fn
    return decorator


class ValidationGate:
    """
    Stateless rule checks for packet creation

    Usage:
        >>> gate = ValidationGate(config)
        >>> result = await gate.validate(session, request)
        >>> if not result.ok:
        ...     print(result.reason, result.remaining, result.resets_at)
    """

    def __init__(self, config: RedPacketConfig):
        self.config = config

    async def validate(
        self,
        session: AsyncSession,
        request: CreationRequest,
        now: Optional[datetime] = None,
    ) -> ValidationResult:
        """
        Run every registered rule in order, stop at the first failure

        Args:
            session: Database session (balance, chat and quota lookups)
            request: Complete creation request
            now: Reference time (defaults to current UTC time)

        Returns:
            ValidationResult
        """
        now = now or utcnow()
        for kind in RuleKind:
            check = RULES.get(kind)
            if check is None:
                continue
            result = await check(self, session, request, now)
            if not result.ok:
                result.rule = kind
                logger.info(
                    f"Validation failed for user {request.sender_id} in chat {request.chat_id}: "
                    f"{kind.value}/{result.reason.value}"
                )
                return result
        return ValidationResult.passed()

    # ------------------------------------------------------------------
    # Field checks, shared with the creation dialogue
    # ------------------------------------------------------------------

    def check_amount(self, amount: Optional[Decimal]) -> ValidationResult:
        limits = self.config.limits
        if amount is None or not amount.is_finite() or amount <= 0:
            return ValidationResult.failed(ValidationReason.AMOUNT_INVALID)
        if amount > limits.max_amount:
            return ValidationResult.failed(
                ValidationReason.AMOUNT_TOO_LARGE, detail={"max": limits.max_amount}
            )
        if not fits_precision(amount, limits.precision):
            return ValidationResult.failed(
                ValidationReason.AMOUNT_INVALID, detail={"precision": limits.precision}
            )
        if amount < limits.min_amount:
            return ValidationResult.failed(
                ValidationReason.AMOUNT_TOO_SMALL, detail={"min": limits.min_amount}
            )
        return ValidationResult.passed()

    def check_count(self, count: Optional[int]) -> ValidationResult:
        limits = self.config.limits
        if count is None:
            return ValidationResult.failed(ValidationReason.COUNT_INVALID)
        if count < limits.min_count:
            return ValidationResult.failed(
                ValidationReason.COUNT_TOO_SMALL, detail={"min": limits.min_count}
            )
        if count > limits.max_count:
            return ValidationResult.failed(
                ValidationReason.COUNT_TOO_LARGE, detail={"max": limits.max_count}
            )
        return ValidationResult.passed()

    def check_title(self, title: str) -> ValidationResult:
        max_length = self.config.conversation.max_title_length
        if len(title) > max_length:
            return ValidationResult.failed(
                ValidationReason.TITLE_TOO_LONG, detail={"max": max_length}
            )
        return ValidationResult.passed()


# ===========================
# RULES
# ===========================


@rule(RuleKind.BALANCE)
async def check_balance(gate: ValidationGate, session: AsyncSession,
                        request: CreationRequest, now: datetime) -> ValidationResult:
    balance = await BalanceService.get_balance(session, request.sender_id)
    if balance < request.amount:
        return ValidationResult.failed(
            ValidationReason.INSUFFICIENT_BALANCE,
            detail={"balance": balance, "required": request.amount},
        )
    return ValidationResult.passed()


@rule(RuleKind.BOUNDS)
async def check_bounds(gate: ValidationGate, session: AsyncSession,
                       request: CreationRequest, now: datetime) -> ValidationResult:
    for result in (
        gate.check_amount(request.amount),
        gate.check_count(request.count),
        gate.check_title(request.title),
    ):
        if not result.ok:
            return result
    return ValidationResult.passed()


@rule(RuleKind.CHAT_PERMISSION)
async def check_chat_permission(gate: ValidationGate, session: AsyncSession,
                                request: CreationRequest, now: datetime) -> ValidationResult:
    permissions = gate.config.permissions
    is_group = ChatType.is_group(request.chat_type)

    if not is_group:
        if permissions.group_only:
            return ValidationResult.failed(ValidationReason.PRIVATE_CHAT)
        return ValidationResult.passed()

    if permissions.require_bot_admin:
        group = await crud.get_chat_group(session, request.chat_id)
        if group is None or not group.bot_is_admin:
            return ValidationResult.failed(ValidationReason.BOT_NOT_ADMIN)
    return ValidationResult.passed()


@rule(RuleKind.QUOTA)
async def check_quota(gate: ValidationGate, session: AsyncSession,
                      request: CreationRequest, now: datetime) -> ValidationResult:
    quotas = gate.config.quotas
    sender = request.sender_id

    if quotas.hourly_send_count:
        since = hour_ago(now)
        used = await crud.count_packets_since(session, sender, since)
        if used >= quotas.hourly_send_count:
            oldest = ensure_utc(await crud.oldest_packet_since(session, sender, since))
            return ValidationResult.failed(
                ValidationReason.HOURLY_COUNT_EXCEEDED,
                detail={"limit": quotas.hourly_send_count, "used": used},
                remaining=0,
                resets_at=(oldest or now) + timedelta(hours=1),
            )

    day_start, day_end = day_window(now)

    if quotas.daily_send_count:
        used = await crud.count_packets_since(session, sender, day_start)
        if used >= quotas.daily_send_count:
            return ValidationResult.failed(
                ValidationReason.DAILY_COUNT_EXCEEDED,
                detail={"limit": quotas.daily_send_count, "used": used},
                remaining=0,
                resets_at=day_end,
            )

    if quotas.daily_send_amount:
        used_amount = await crud.sum_packets_since(session, sender, day_start)
        if used_amount + request.amount > quotas.daily_send_amount:
            return ValidationResult.failed(
                ValidationReason.DAILY_AMOUNT_EXCEEDED,
                detail={"limit": quotas.daily_send_amount, "used": used_amount},
                remaining=max(quotas.daily_send_amount - used_amount, Decimal("0.00")),
                resets_at=day_end,
            )

    return ValidationResult.passed()
