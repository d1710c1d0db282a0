"""
Core module - shared enums and exceptions for the lucky money engine.
"""

from src.core.enums import (
    PacketMode,
    PacketStatus,
    ConversationStage,
    RuleKind,
    ValidationReason,
    UnavailableReason,
    ClaimOutcome,
    CreateOutcome,
    RevokeOutcome,
    TurnOutcome,
)
from src.core.errors import (
    RedPacketError,
    InvalidAllocationRequest,
    ConcurrencyConflict,
    StorageFailure,
)

__all__ = [
    "PacketMode",
    "PacketStatus",
    "ConversationStage",
    "RuleKind",
    "ValidationReason",
    "UnavailableReason",
    "ClaimOutcome",
    "CreateOutcome",
    "RevokeOutcome",
    "TurnOutcome",
    "RedPacketError",
    "InvalidAllocationRequest",
    "ConcurrencyConflict",
    "StorageFailure",
]
