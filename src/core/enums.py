"""
Core Enums - shared types for the lucky money engine.

Defines:
- PacketMode: how the pool is split into shares
- PacketStatus: packet lifecycle
- ConversationStage: creation dialogue steps
- RuleKind: validation rules, run in declaration order
- ValidationReason: why the gate refused a creation
- ClaimOutcome / UnavailableReason: result kinds of a claim
- CreateOutcome: result kinds of a creation
"""

from enum import Enum


class PacketMode(str, Enum):
    RANDOM = "random"    # two-times-average draw
    AVERAGE = "average"  # equal split, last share takes the remainder
    CUSTOM = "custom"    # caller-supplied shares


class PacketStatus(str, Enum):
    """Packet lifecycle.

    active -> completed | expired | revoked. Terminal states are final.
    """

    ACTIVE = "active"
    COMPLETED = "completed"
    EXPIRED = "expired"
    REVOKED = "revoked"

    @classmethod
    def is_terminal(cls, status: "PacketStatus") -> bool:
        return status != cls.ACTIVE


class ConversationStage(str, Enum):
    IDLE = "idle"
    AWAITING_AMOUNT = "awaiting_amount"
    AWAITING_COUNT = "awaiting_count"
    AWAITING_TITLE = "awaiting_title"
    AWAITING_CONFIRM = "awaiting_confirm"


class RuleKind(str, Enum):
    """Validation rules. Order of members is the evaluation order."""

    BALANCE = "balance"
    BOUNDS = "bounds"
    CHAT_PERMISSION = "chat_permission"
    QUOTA = "quota"


class ValidationReason(str, Enum):
    INSUFFICIENT_BALANCE = "insufficient_balance"
    AMOUNT_INVALID = "amount_invalid"        # not a number / bad precision
    AMOUNT_TOO_SMALL = "amount_too_small"
    AMOUNT_TOO_LARGE = "amount_too_large"
    COUNT_INVALID = "count_invalid"
    COUNT_TOO_SMALL = "count_too_small"
    COUNT_TOO_LARGE = "count_too_large"
    SHARE_TOO_SMALL = "share_too_small"      # amount < min_share * count
    TITLE_TOO_LONG = "title_too_long"
    PRIVATE_CHAT = "private_chat"
    BOT_NOT_ADMIN = "bot_not_admin"
    HOURLY_COUNT_EXCEEDED = "hourly_count_exceeded"
    DAILY_COUNT_EXCEEDED = "daily_count_exceeded"
    DAILY_AMOUNT_EXCEEDED = "daily_amount_exceeded"

    @classmethod
    def is_quota(cls, reason: "ValidationReason") -> bool:
        return reason in (
            cls.HOURLY_COUNT_EXCEEDED,
            cls.DAILY_COUNT_EXCEEDED,
            cls.DAILY_AMOUNT_EXCEEDED,
        )

    @property
    def target_field(self) -> str:
        """Draft field the user has to correct (amount / count / title / none)."""
        if self in (
            ValidationReason.AMOUNT_INVALID,
            ValidationReason.AMOUNT_TOO_SMALL,
            ValidationReason.AMOUNT_TOO_LARGE,
            ValidationReason.INSUFFICIENT_BALANCE,
            ValidationReason.DAILY_AMOUNT_EXCEEDED,
        ):
            return "amount"
        if self in (
            ValidationReason.COUNT_INVALID,
            ValidationReason.COUNT_TOO_SMALL,
            ValidationReason.COUNT_TOO_LARGE,
            ValidationReason.SHARE_TOO_SMALL,
        ):
            return "count"
        if self == ValidationReason.TITLE_TOO_LONG:
            return "title"
        return "none"


class UnavailableReason(str, Enum):
    NOT_FOUND = "not_found"
    COMPLETED = "completed"
    EXPIRED = "expired"
    REVOKED = "revoked"
    WRONG_CHAT = "wrong_chat"

    @classmethod
    def from_status(cls, status: PacketStatus) -> "UnavailableReason":
        return {
            PacketStatus.COMPLETED: cls.COMPLETED,
            PacketStatus.EXPIRED: cls.EXPIRED,
            PacketStatus.REVOKED: cls.REVOKED,
        }[PacketStatus(status)]


class ClaimOutcome(str, Enum):
    CLAIMED = "claimed"
    ALREADY_CLAIMED = "already_claimed"
    UNAVAILABLE = "unavailable"
    SELF_CLAIM = "self_claim"
    CONFLICT = "conflict"  # retries exhausted, caller may try again


class CreateOutcome(str, Enum):
    CREATED = "created"
    DUPLICATE = "duplicate"            # send-guard hit
    VALIDATION_FAILED = "validation_failed"
    INVALID_ALLOCATION = "invalid_allocation"


class RevokeOutcome(str, Enum):
    REVOKED = "revoked"
    NOT_FOUND = "not_found"
    NOT_SENDER = "not_sender"
    NOT_ACTIVE = "not_active"


class TurnOutcome(str, Enum):
    """What one message did to the creation dialogue."""

    IGNORED = "ignored"      # idle chat or message from another user
    BUSY = "busy"            # someone else is creating a packet in this chat
    PROMPT = "prompt"        # field accepted, asking for the next one
    INVALID = "invalid"      # field rejected, stage unchanged
    CREATED = "created"
    REJECTED = "rejected"    # finalize failed, back at the offending field
    CANCELLED = "cancelled"
