# coding: utf-8
"""
Lucky Money (red packet) engine configuration

Every knob the engine reads lives here. Components take a RedPacketConfig
in their constructor; get_config() returns the process-wide instance built
from environment variables.
"""
import os
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Tuple


def _env_decimal(name: str, default: str) -> Decimal:
    return Decimal(os.getenv(name, default))


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, "true" if default else "false").lower() == "true"


@dataclass(frozen=True)
class AmountLimits:
    """Bounds on a single packet."""
    min_amount: Decimal = Decimal("1.00")
    max_amount: Decimal = Decimal("10000.00")
    min_count: int = 1
    max_count: int = 100
    min_share: Decimal = Decimal("0.01")  # per-share floor
    precision: int = 2                    # fraction digits


@dataclass(frozen=True)
class QuotaConfig:
    """Per-sender creation ceilings (0 = unlimited)."""
    hourly_send_count: int = 3
    daily_send_count: int = 10
    daily_send_amount: Decimal = Decimal("1000.00")


@dataclass(frozen=True)
class PermissionConfig:
    group_only: bool = True
    require_bot_admin: bool = True
    allow_self_claim: bool = False


@dataclass(frozen=True)
class ConversationConfig:
    ttl_seconds: int = 300
    confirm_step: bool = True
    max_title_length: int = 50
    default_title: str = "恭喜发财，大吉大利"
    skip_tokens: Tuple[str, ...] = ("发送", "skip", "-")
    confirm_tokens: Tuple[str, ...] = ("y", "yes", "是", "确认", "ok")
    cancel_tokens: Tuple[str, ...] = ("n", "no", "cancel", "取消", "/cancel")


@dataclass(frozen=True)
class ConcurrencyConfig:
    send_lock_seconds: int = 5
    claim_lock_seconds: int = 3
    claim_max_retries: int = 5
    retry_base_delay: float = 0.02  # seconds, doubled per attempt plus jitter


@dataclass(frozen=True)
class RedPacketConfig:
    """Main engine configuration."""
    limits: AmountLimits = field(default_factory=AmountLimits)
    quotas: QuotaConfig = field(default_factory=QuotaConfig)
    permissions: PermissionConfig = field(default_factory=PermissionConfig)
    conversation: ConversationConfig = field(default_factory=ConversationConfig)
    concurrency: ConcurrencyConfig = field(default_factory=ConcurrencyConfig)

    packet_ttl_hours: int = 24
    command_aliases: Tuple[str, ...] = ("red", "hb", "hongbao")

    @classmethod
    def from_env(cls) -> "RedPacketConfig":
        """Build configuration from REDPACKET_* environment variables."""
        return cls(
            limits=AmountLimits(
                min_amount=_env_decimal("REDPACKET_MIN_AMOUNT", "1.00"),
                max_amount=_env_decimal("REDPACKET_MAX_AMOUNT", "10000.00"),
                min_count=_env_int("REDPACKET_MIN_COUNT", 1),
                max_count=_env_int("REDPACKET_MAX_COUNT", 100),
                min_share=_env_decimal("REDPACKET_MIN_SHARE", "0.01"),
                precision=_env_int("REDPACKET_PRECISION", 2),
            ),
            quotas=QuotaConfig(
                hourly_send_count=_env_int("REDPACKET_HOURLY_SEND_COUNT", 3),
                daily_send_count=_env_int("REDPACKET_DAILY_SEND_COUNT", 10),
                daily_send_amount=_env_decimal("REDPACKET_DAILY_SEND_AMOUNT", "1000.00"),
            ),
            permissions=PermissionConfig(
                group_only=_env_bool("REDPACKET_GROUP_ONLY", True),
                require_bot_admin=_env_bool("REDPACKET_REQUIRE_BOT_ADMIN", True),
                allow_self_claim=_env_bool("REDPACKET_ALLOW_SELF_CLAIM", False),
            ),
            conversation=ConversationConfig(
                ttl_seconds=_env_int("REDPACKET_CONVERSATION_TTL", 300),
                confirm_step=_env_bool("REDPACKET_CONFIRM_STEP", True),
                max_title_length=_env_int("REDPACKET_MAX_TITLE_LENGTH", 50),
                default_title=os.getenv("REDPACKET_DEFAULT_TITLE", "恭喜发财，大吉大利"),
            ),
            concurrency=ConcurrencyConfig(
                send_lock_seconds=_env_int("REDPACKET_SEND_LOCK_SECONDS", 5),
                claim_lock_seconds=_env_int("REDPACKET_CLAIM_LOCK_SECONDS", 3),
                claim_max_retries=_env_int("REDPACKET_CLAIM_MAX_RETRIES", 5),
            ),
            packet_ttl_hours=_env_int("REDPACKET_TTL_HOURS", 24),
        )


_config: RedPacketConfig = None


def get_config() -> RedPacketConfig:
    """Get (and lazily build) the process-wide configuration."""
    global _config
    if _config is None:
        _config = RedPacketConfig.from_env()
    return _config
