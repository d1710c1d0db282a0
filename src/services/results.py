# coding: utf-8
"""
Result objects returned by the engine

Expected outcomes (duplicate, already claimed, unavailable, validation
failure) are values with a kind enum, never exceptions.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from src.core.enums import (
    ClaimOutcome,
    CreateOutcome,
    RevokeOutcome,
    UnavailableReason,
)
from src.database.models import RedPacket
from src.services.validation_gate import ValidationResult


@dataclass
class ClaimResult:
    outcome: ClaimOutcome
    packet_id: str
    amount: Optional[Decimal] = None
    claim_order: Optional[int] = None
    is_best_luck: bool = False
    reason: Optional[UnavailableReason] = None
    completed: bool = False  # this claim took the last share

    @property
    def ok(self) -> bool:
        return self.outcome == ClaimOutcome.CLAIMED


@dataclass
class RevokeResult:
    outcome: RevokeOutcome
    packet_id: str
    refunded: Decimal = Decimal("0.00")

    @property
    def ok(self) -> bool:
        return self.outcome == RevokeOutcome.REVOKED


@dataclass
class CreateResult:
    outcome: CreateOutcome
    packet: Optional[RedPacket] = None
    validation: Optional[ValidationResult] = None
    error_field: str = "none"  # draft field to correct: amount / count / title / none
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.outcome == CreateOutcome.CREATED
