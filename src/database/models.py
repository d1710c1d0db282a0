"""
Database models for the Lucky Money bot

SQLAlchemy 2.0 models with full type hints
"""

from datetime import datetime, UTC
from typing import Optional
from enum import Enum
from decimal import Decimal

from sqlalchemy import (
    String,
    BigInteger,
    Text,
    Integer,
    Boolean,
    DateTime,
    ForeignKey,
    UniqueConstraint,
    Numeric,
    Index,
    CheckConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from src.core.enums import PacketMode, PacketStatus


MONEY = Numeric(18, 2)


class Base(DeclarativeBase):
    """Base class for all models"""

    pass


# ===========================
# ENUMS
# ===========================


class BalanceTransactionType(str, Enum):
    """Balance transaction types"""

    DEPOSIT = "deposit"  # Credited by an admin or an external payment flow
    PACKET_SEND = "packet_send"  # Debit when a packet is created
    PACKET_CLAIM = "packet_claim"  # Credit when a share is claimed
    PACKET_REFUND = "packet_refund"  # Unclaimed remainder returned to sender


class ChatType(str, Enum):
    PRIVATE = "private"
    GROUP = "group"
    SUPERGROUP = "supergroup"
    CHANNEL = "channel"

    @classmethod
    def is_group(cls, chat_type: str) -> bool:
        return chat_type in (cls.GROUP, cls.SUPERGROUP)


# ===========================
# MODELS
# ===========================


class User(Base):
    """
    Telegram user

    Created on first interaction by DatabaseMiddleware.
    """

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    telegram_id: Mapped[int] = mapped_column(
        BigInteger, unique=True, index=True, nullable=False, comment="Telegram user ID"
    )
    username: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    first_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    language: Mapped[str] = mapped_column(
        String(10), default="zh", nullable=False, comment="Message catalogue language"
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )
    last_activity: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
        nullable=False,
    )

    @property
    def display_name(self) -> str:
        if self.username:
            return f"@{self.username}"
        return self.first_name or f"user_{self.telegram_id}"

    def __repr__(self) -> str:
        return f"<User(telegram_id={self.telegram_id}, username={self.username})>"


class UserBalance(Base):
    """
    Spendable balance of a user

    Tracks:
    - Current balance
    - Lifetime sent / received / refunded through packets
    """

    __tablename__ = "user_balances"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    user_id: Mapped[int] = mapped_column(
        BigInteger, unique=True, index=True, nullable=False, comment="Telegram user ID"
    )

    balance: Mapped[Decimal] = mapped_column(
        MONEY, default=Decimal("0.00"), nullable=False, comment="Current balance"
    )
    total_sent: Mapped[Decimal] = mapped_column(
        MONEY, default=Decimal("0.00"), nullable=False, comment="Total put into packets (all time)"
    )
    total_received: Mapped[Decimal] = mapped_column(
        MONEY, default=Decimal("0.00"), nullable=False, comment="Total claimed from packets (all time)"
    )
    total_refunded: Mapped[Decimal] = mapped_column(
        MONEY, default=Decimal("0.00"), nullable=False, comment="Unclaimed remainders returned (all time)"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
        nullable=False,
    )

    __table_args__ = (CheckConstraint("balance >= 0", name="ck_user_balances_non_negative"),)

    def __repr__(self) -> str:
        return f"<UserBalance(user_id={self.user_id}, balance={self.balance})>"


class BalanceTransaction(Base):
    """
    Balance transaction model - every balance movement

    Idempotency via unique transaction_id ("<type>:<entity>", e.g.
    "claim:RP20260101120000123456:42").
    """

    __tablename__ = "balance_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    user_id: Mapped[int] = mapped_column(BigInteger, index=True, nullable=False)

    transaction_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        index=True,
        comment="deposit, packet_send, packet_claim, packet_refund",
    )

    amount: Mapped[Decimal] = mapped_column(
        MONEY, nullable=False, comment="Signed amount (negative for debits)"
    )
    balance_before: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    balance_after: Mapped[Decimal] = mapped_column(MONEY, nullable=False)

    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    transaction_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        unique=True,
        index=True,
        nullable=True,
        comment="Unique transaction ID for idempotency",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
        index=True,
    )

    def __repr__(self) -> str:
        return f"<BalanceTransaction(id={self.id}, type={self.transaction_type}, amount={self.amount})>"


class ChatGroup(Base):
    """
    Chats the bot has been added to, with the bot's membership status

    Updated from my_chat_member updates; read by the bot-admin permission rule.
    """

    __tablename__ = "chat_groups"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    chat_id: Mapped[int] = mapped_column(BigInteger, unique=True, index=True, nullable=False)
    chat_type: Mapped[str] = mapped_column(String(20), nullable=False)
    title: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    bot_status: Mapped[str] = mapped_column(
        String(20),
        default="member",
        nullable=False,
        comment="creator, administrator, member, left, kicked",
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
        nullable=False,
    )

    @property
    def bot_is_admin(self) -> bool:
        return self.is_active and self.bot_status in ("administrator", "creator")

    def __repr__(self) -> str:
        return f"<ChatGroup(chat_id={self.chat_id}, bot_status={self.bot_status})>"


class RedPacket(Base):
    """
    Lucky money packet

    Invariants:
    - claimed_count <= total_count, claimed_amount <= total_amount
    - status == completed <=> claimed_count == total_count
    - version increases on every mutation (compare-and-swap for claims)
    """

    __tablename__ = "red_packets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    packet_id: Mapped[str] = mapped_column(
        String(32), unique=True, index=True, nullable=False, comment="Public id, RP + timestamp + 6 digits"
    )

    sender_id: Mapped[int] = mapped_column(BigInteger, index=True, nullable=False)
    origin_chat_id: Mapped[int] = mapped_column(BigInteger, index=True, nullable=False)
    message_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, nullable=True, comment="Chat message showing the packet"
    )

    total_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    total_count: Mapped[int] = mapped_column(Integer, nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    mode: Mapped[str] = mapped_column(String(10), default=PacketMode.RANDOM.value, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20), default=PacketStatus.ACTIVE.value, nullable=False, index=True
    )
    claimed_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    claimed_amount: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0.00"), nullable=False)
    version: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    best_share_position: Mapped[int] = mapped_column(
        Integer, nullable=False, comment="Position of the first maximal share"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
        index=True,
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    finished_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    shares = relationship(
        "PacketShare",
        back_populates="packet",
        cascade="all, delete-orphan",
        order_by="PacketShare.position",
    )
    claims = relationship(
        "ClaimRecord",
        back_populates="packet",
        cascade="all, delete-orphan",
        order_by="ClaimRecord.claim_order",
    )

    __table_args__ = (
        Index("ix_red_packets_sender_created", "sender_id", "created_at"),
        CheckConstraint("claimed_count <= total_count", name="ck_red_packets_claimed_count"),
    )

    @property
    def remaining_count(self) -> int:
        return self.total_count - self.claimed_count

    @property
    def remaining_amount(self) -> Decimal:
        return self.total_amount - self.claimed_amount

    def __repr__(self) -> str:
        return (
            f"<RedPacket(packet_id={self.packet_id}, status={self.status}, "
            f"claimed={self.claimed_count}/{self.total_count})>"
        )


class PacketShare(Base):
    """One pre-computed share; claimed strictly in position order."""

    __tablename__ = "packet_shares"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    packet_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("red_packets.packet_id", ondelete="CASCADE"), index=True, nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, comment="0-based, shuffled order")
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    claimed_by: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    claimed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    packet = relationship("RedPacket", back_populates="shares")

    __table_args__ = (UniqueConstraint("packet_id", "position", name="uq_packet_share_position"),)

    def __repr__(self) -> str:
        return f"<PacketShare(packet_id={self.packet_id}, position={self.position}, amount={self.amount})>"


class ClaimRecord(Base):
    """
    One successful claim, immutable

    Unique (packet_id, claimant_id) is the exactly-once guarantee.
    """

    __tablename__ = "claim_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    packet_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("red_packets.packet_id", ondelete="CASCADE"), index=True, nullable=False
    )
    claimant_id: Mapped[int] = mapped_column(BigInteger, index=True, nullable=False)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    claim_order: Mapped[int] = mapped_column(Integer, nullable=False, comment="1-based, dense")
    is_best_luck: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    claimed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
        index=True,
    )

    packet = relationship("RedPacket", back_populates="claims")

    __table_args__ = (
        UniqueConstraint("packet_id", "claimant_id", name="uq_claim_packet_claimant"),
        UniqueConstraint("packet_id", "claim_order", name="uq_claim_packet_order"),
    )

    def __repr__(self) -> str:
        return (
            f"<ClaimRecord(packet_id={self.packet_id}, claimant_id={self.claimant_id}, "
            f"amount={self.amount}, order={self.claim_order})>"
        )
