"""
services/wallet/ledger.py
Per-user wallet: cached balance plus append-only transaction history.

Every write appends a Transaction row and increments users.wallet_balance
with an atomic SQL expression in the same database transaction, so the
pair commits or rolls back together and concurrent writers never lose an
update. Invariant: users.wallet_balance == sum(transactions.amount).

Payouts and withdrawals are appended PENDING and settled later by
tasks.wallet_tasks (countdown task + periodic sweep).
"""

import logging
import uuid
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import on_commit
from config.settings import settings
from shared.models.models import (
    Transaction,
    TransactionCategory,
    TransactionStatus,
    User,
)
from shared.utils.exceptions import InsufficientFunds

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    """Quantize to cents, rounding half-up."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


class WalletLedger:
    """Ledger writes bound to one AsyncSession. Callers commit once."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def credit(
        self,
        user_id: uuid.UUID,
        amount,
        category: TransactionCategory,
        description: str,
        related_booking_id: Optional[uuid.UUID] = None,
        related_user_id: Optional[uuid.UUID] = None,
        status: TransactionStatus = TransactionStatus.COMPLETED,
    ) -> Transaction:
        amount = self._positive(amount)
        return await self._append(
            user_id, amount, category, description,
            related_booking_id, related_user_id, status,
        )

    async def debit(
        self,
        user_id: uuid.UUID,
        amount,
        category: TransactionCategory,
        description: str,
        related_booking_id: Optional[uuid.UUID] = None,
        related_user_id: Optional[uuid.UUID] = None,
        status: TransactionStatus = TransactionStatus.COMPLETED,
        require_funds: Optional[bool] = None,
    ) -> Transaction:
        """
        Append a negative entry. With require_funds (default: the inverse of
        WALLET_ALLOW_NEGATIVE_BALANCE) the balance decrement is conditional on
        sufficient funds and raises InsufficientFunds otherwise.
        """
        amount = self._positive(amount)
        if require_funds is None:
            require_funds = not settings.WALLET_ALLOW_NEGATIVE_BALANCE
        return await self._append(
            user_id, -amount, category, description,
            related_booking_id, related_user_id, status,
            require_funds=require_funds,
        )

    async def _append(
        self,
        user_id: uuid.UUID,
        signed_amount: Decimal,
        category: TransactionCategory,
        description: str,
        related_booking_id: Optional[uuid.UUID],
        related_user_id: Optional[uuid.UUID],
        status: TransactionStatus,
        require_funds: bool = False,
    ) -> Transaction:
        stmt = (
            update(User)
            .where(User.id == user_id)
            .values(wallet_balance=User.wallet_balance + signed_amount)
            .execution_options(synchronize_session=False)
        )
        if require_funds:
            stmt = stmt.where(User.wallet_balance >= -signed_amount)

        result = await self.db.execute(stmt)
        if result.rowcount != 1:
            if require_funds:
                raise InsufficientFunds(
                    "Insufficient wallet balance",
                    extra={"requested": str(-signed_amount)},
                )
            raise LookupError(f"Wallet owner {user_id} not found")

        tx = Transaction(
            user_id=user_id,
            description=description,
            amount=signed_amount,
            category=category,
            status=status,
            related_booking_id=related_booking_id,
            related_user_id=related_user_id,
        )
        self.db.add(tx)
        await self.db.flush()

        logger.info(
            f"Ledger {category.value} {signed_amount} for user {user_id} "
            f"({status.value}, booking={related_booking_id})"
        )
        if status == TransactionStatus.PENDING:
            schedule_settlement(self.db, [tx.id])
        return tx

    @staticmethod
    def _positive(amount) -> Decimal:
        value = to_money(amount)
        if value <= 0:
            raise ValueError(f"Ledger amounts must be positive, got {amount}")
        return value

    # ── Reads ──────────────────────────────────────────────────

    async def balance(self, user_id: uuid.UUID) -> Decimal:
        value = await self.db.scalar(select(User.wallet_balance).where(User.id == user_id))
        return to_money(value or 0)

    async def pending_amount(self, user_id: uuid.UUID) -> Decimal:
        value = await self.db.scalar(
            select(func.coalesce(func.sum(Transaction.amount), 0)).where(
                Transaction.user_id == user_id,
                Transaction.status == TransactionStatus.PENDING,
            )
        )
        return to_money(value or 0)

    async def reconcile(self, user_id: uuid.UUID) -> tuple[Decimal, Decimal]:
        """Returns (cached balance, sum of transaction amounts)."""
        ledger_sum = await self.db.scalar(
            select(func.coalesce(func.sum(Transaction.amount), 0)).where(
                Transaction.user_id == user_id
            )
        )
        return await self.balance(user_id), to_money(ledger_sum or 0)


def schedule_settlement(db: AsyncSession, transaction_ids: Iterable[uuid.UUID]) -> None:
    """
    After commit, enqueue a delayed settlement per PENDING transaction.
    If the broker is down the periodic sweep settles them instead.
    """
    ids = [str(tx_id) for tx_id in transaction_ids]

    def _enqueue():
        from tasks.wallet_tasks import settle_transaction

        for tx_id in ids:
            settle_transaction.apply_async(
                args=[tx_id],
                countdown=settings.SETTLEMENT_DELAY_SECONDS,
            )

    on_commit(db, _enqueue)
