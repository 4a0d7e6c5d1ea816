"""
services/wallet/router.py
Wallet balance, transaction history, Stripe top-ups and withdrawals.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import commit, get_db
from services.notification.service import notify
from services.payment.service import open_checkout
from services.wallet.ledger import WalletLedger
from shared.middleware.auth import get_current_user
from shared.models.models import (
    NotificationType,
    PaymentPurpose,
    Transaction,
    TransactionCategory,
    TransactionStatus,
    User,
)
from shared.schemas.schemas import (
    AddFundsRequest,
    CheckoutSessionResponse,
    PaginatedResponse,
    TransactionResponse,
    WalletResponse,
    WithdrawRequest,
)
from shared.utils.pagination import paginate

router = APIRouter(prefix="/wallet", tags=["Wallet"])


@router.get("", response_model=WalletResponse)
async def get_wallet(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    ledger = WalletLedger(db)
    return WalletResponse(
        user_id=current_user.id,
        balance=await ledger.balance(current_user.id),
        pending_amount=await ledger.pending_amount(current_user.id),
    )


@router.get("/transactions", response_model=PaginatedResponse)
async def list_transactions(
    category: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Ledger history, newest first."""
    query = select(Transaction).where(Transaction.user_id == current_user.id)
    if category:
        try:
            query = query.where(Transaction.category == TransactionCategory(category))
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Invalid category: {category}")
    query = query.order_by(Transaction.created_at.desc(), Transaction.id)
    return await paginate(db, query, page, page_size, TransactionResponse)


@router.post("/add-funds", response_model=CheckoutSessionResponse)
async def add_funds(
    data: AddFundsRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Start a Stripe Checkout. The wallet is credited when the webhook confirms payment."""
    checkout = await open_checkout(
        db, current_user, PaymentPurpose.WALLET_TOPUP, data.amount, "Stoodioz wallet top-up"
    )
    await commit(db)
    return CheckoutSessionResponse(**checkout)


@router.post("/withdraw", response_model=TransactionResponse)
async def withdraw(
    data: WithdrawRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Request a payout of wallet funds. The debit is recorded PENDING and
    settled after the settlement delay. Never overdraws.
    """
    tx = await WalletLedger(db).debit(
        current_user.id,
        data.amount,
        TransactionCategory.WITHDRAWAL,
        "Withdrawal to bank account",
        status=TransactionStatus.PENDING,
        require_funds=True,
    )
    await notify(
        db, current_user.id, NotificationType.WALLET_UPDATE,
        f"Your withdrawal of ${-tx.amount} is being processed.",
        link={"view": "WALLET"},
    )
    await commit(db)
    return TransactionResponse.model_validate(tx)
