# coding: utf-8
"""
Balance Service

Minimal balance ledger backing the packet engine.

Features:
- Atomic debit (UPDATE ... WHERE balance >= amount), never negative
- Idempotency via unique transaction_id
- Balance snapshots on every transaction for audit

debit/credit do not commit: the packet ledger runs them inside the same
transaction as the packet mutation so both happen or neither does.
"""

from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from loguru import logger

from config.logging import ledger_logger
from src.database.models import UserBalance, BalanceTransaction, BalanceTransactionType


class BalanceService:
    """Service for managing user balances"""

    @staticmethod
    async def get_or_create_balance(session: AsyncSession, user_id: int) -> UserBalance:
        """
        Get or create balance row for user (flushed, not committed)

        Args:
            session: Database session
            user_id: Telegram user ID

        Returns:
            UserBalance model
        """
        result = await session.execute(select(UserBalance).where(UserBalance.user_id == user_id))
        balance = result.scalar_one_or_none()

        if not balance:
            balance = UserBalance(user_id=user_id, balance=Decimal("0.00"))
            session.add(balance)
            await session.flush()
            logger.info(f"Created balance for user {user_id}")

        return balance

    @staticmethod
    async def get_balance(session: AsyncSession, user_id: int) -> Decimal:
        """Current balance, 0.00 for users without a balance row"""
        result = await session.execute(select(UserBalance.balance).where(UserBalance.user_id == user_id))
        value = result.scalar_one_or_none()
        return value if value is not None else Decimal("0.00")

    @staticmethod
    async def _find_transaction(session: AsyncSession, transaction_id: Optional[str]) -> Optional[BalanceTransaction]:
        if not transaction_id:
            return None
        result = await session.execute(
            select(BalanceTransaction).where(BalanceTransaction.transaction_id == transaction_id)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def debit(
        session: AsyncSession,
        user_id: int,
        amount: Decimal,
        transaction_type: str = BalanceTransactionType.PACKET_SEND,
        description: Optional[str] = None,
        transaction_id: Optional[str] = None,
    ) -> Optional[BalanceTransaction]:
        """
        Deduct amount from user balance

        Args:
            session: Database session
            user_id: Telegram user ID
            amount: Positive amount to deduct
            transaction_type: BalanceTransactionType
            description: Human-readable description
            transaction_id: Unique transaction ID for idempotency

        Returns:
            BalanceTransaction, or None if the balance is insufficient
        """
        existing = await BalanceService._find_transaction(session, transaction_id)
        if existing:
            logger.debug(f"Transaction {transaction_id} already exists, skipping")
            return existing

        await BalanceService.get_or_create_balance(session, user_id)

        stmt = (
            update(UserBalance)
            .where(UserBalance.user_id == user_id, UserBalance.balance >= amount)
            .values(
                balance=UserBalance.balance - amount,
                total_sent=UserBalance.total_sent + amount,
            )
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        if result.rowcount == 0:
            logger.warning(f"User {user_id} has insufficient balance for {amount}")
            return None

        return await BalanceService._record(
            session, user_id, -amount, transaction_type, description, transaction_id
        )

    @staticmethod
    async def credit(
        session: AsyncSession,
        user_id: int,
        amount: Decimal,
        transaction_type: str,
        description: Optional[str] = None,
        transaction_id: Optional[str] = None,
    ) -> BalanceTransaction:
        """
        Add amount to user balance

        Args:
            session: Database session
            user_id: Telegram user ID
            amount: Positive amount to add
            transaction_type: BalanceTransactionType (packet_claim / packet_refund / deposit)
            description: Human-readable description
            transaction_id: Unique transaction ID for idempotency

        Returns:
            BalanceTransaction (the existing one on a repeated transaction_id)
        """
        existing = await BalanceService._find_transaction(session, transaction_id)
        if existing:
            logger.debug(f"Transaction {transaction_id} already exists, skipping")
            return existing

        await BalanceService.get_or_create_balance(session, user_id)

        values = {"balance": UserBalance.balance + amount}
        if transaction_type == BalanceTransactionType.PACKET_CLAIM:
            values["total_received"] = UserBalance.total_received + amount
        elif transaction_type == BalanceTransactionType.PACKET_REFUND:
            values["total_refunded"] = UserBalance.total_refunded + amount

        await session.execute(
            update(UserBalance)
            .where(UserBalance.user_id == user_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )

        return await BalanceService._record(
            session, user_id, amount, transaction_type, description, transaction_id
        )

    @staticmethod
    async def _record(
        session: AsyncSession,
        user_id: int,
        signed_amount: Decimal,
        transaction_type: str,
        description: Optional[str],
        transaction_id: Optional[str],
    ) -> BalanceTransaction:
        result = await session.execute(select(UserBalance.balance).where(UserBalance.user_id == user_id))
        balance_after = Decimal(str(result.scalar_one())).quantize(Decimal("0.01"))

        transaction = BalanceTransaction(
            user_id=user_id,
            transaction_type=str(getattr(transaction_type, "value", transaction_type)),
            amount=signed_amount,
            balance_before=balance_after - signed_amount,
            balance_after=balance_after,
            description=description,
            transaction_id=transaction_id,
        )
        session.add(transaction)
        await session.flush()

        ledger_logger.info(
            f"{transaction.transaction_type} user={user_id} amount={signed_amount} "
            f"balance={balance_after} tx={transaction_id}"
        )
        return transaction

    @staticmethod
    async def deposit(
        session: AsyncSession,
        user_id: int,
        amount: Decimal,
        description: Optional[str] = None,
        transaction_id: Optional[str] = None,
    ) -> BalanceTransaction:
        """
        Credit a deposit and commit (admin top-up, external payment callback)
        """
        if amount <= 0:
            raise ValueError("Deposit amount must be positive")
        transaction = await BalanceService.credit(
            session, user_id, amount, BalanceTransactionType.DEPOSIT, description, transaction_id
        )
        await session.commit()
        return transaction

    @staticmethod
    async def get_transaction_history(
        session: AsyncSession,
        user_id: int,
        limit: int = 20,
        offset: int = 0,
    ) -> List[Dict]:
        """
        Get user's balance transactions, newest first

        Returns:
            List of transaction dicts
        """
        stmt = (
            select(BalanceTransaction)
            .where(BalanceTransaction.user_id == user_id)
            .order_by(BalanceTransaction.created_at.desc(), BalanceTransaction.id.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await session.execute(stmt)

        return [
            {
                "id": tx.id,
                "type": tx.transaction_type,
                "amount": tx.amount,
                "balance_before": tx.balance_before,
                "balance_after": tx.balance_after,
                "description": tx.description,
                "created_at": tx.created_at.isoformat(),
            }
            for tx in result.scalars().all()
        ]
