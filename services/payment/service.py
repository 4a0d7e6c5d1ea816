"""
services/payment/service.py
Checkout creation and Stripe webhook event handling.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from services.notification.service import notify
from services.payment import stripe_client
from services.wallet.ledger import WalletLedger, to_money
from shared.models.models import (
    NotificationType,
    Payment,
    PaymentPurpose,
    PaymentStatus,
    SubscriptionTier,
    TransactionCategory,
    User,
)

logger = logging.getLogger(__name__)


async def open_checkout(
    db: AsyncSession,
    user: User,
    purpose: PaymentPurpose,
    amount: Decimal,
    product_name: str,
    tier: Optional[SubscriptionTier] = None,
) -> dict:
    """Store a PENDING Payment and create its Stripe Checkout session."""
    payment = Payment(
        user_id=user.id,
        purpose=purpose,
        amount=to_money(amount),
        currency=settings.STRIPE_CURRENCY,
        status=PaymentStatus.PENDING,
        requested_tier=tier,
    )
    db.add(payment)
    await db.flush()

    session = await stripe_client.create_checkout_session(payment, user, product_name)
    payment.stripe_session_id = session.id
    await db.flush()

    return {
        "payment_id": payment.id,
        "checkout_url": session.url,
        "stripe_session_id": session.id,
    }


def _parse_uuid(value) -> Optional[UUID]:
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        return None


async def _payment_for_session(db: AsyncSession, session: dict) -> Optional[Payment]:
    payment_id = _parse_uuid((session.get("metadata") or {}).get("payment_id"))
    if payment_id:
        payment = await db.get(Payment, payment_id)
        if payment:
            return payment
    result = await db.execute(select(Payment).where(Payment.stripe_session_id == session.get("id")))
    return result.scalar_one_or_none()


async def handle_checkout_completed(db: AsyncSession, session: dict) -> str:
    payment = await _payment_for_session(db, session)
    if payment is None:
        logger.warning(f"Checkout {session.get('id')} has no matching payment")
        return "not_found"

    # PENDING → PAID exactly once; re-delivery is a no-op
    result = await db.execute(
        update(Payment)
        .where(Payment.id == payment.id, Payment.status == PaymentStatus.PENDING)
        .values(
            status=PaymentStatus.PAID,
            paid_at=datetime.now(timezone.utc),
            stripe_session_id=session.get("id") or payment.stripe_session_id,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        logger.info(f"Payment {payment.id} already processed, skipping")
        return "already_processed"
    await db.refresh(payment)

    if payment.purpose == PaymentPurpose.WALLET_TOPUP:
        await WalletLedger(db).credit(
            payment.user_id,
            payment.amount,
            TransactionCategory.ADD_FUNDS,
            "Wallet top-up",
        )
        await notify(
            db, payment.user_id, NotificationType.WALLET_UPDATE,
            f"${payment.amount} was added to your wallet.",
            link={"view": "WALLET"},
        )
    else:
        user = await db.get(User, payment.user_id)
        user.subscription_tier = payment.requested_tier or SubscriptionTier.FREE
        user.subscription_status = "active"
        if session.get("customer"):
            user.stripe_customer_id = session["customer"]
        await notify(
            db, user.id, NotificationType.GENERAL,
            f"Your {user.subscription_tier.value.replace('_', ' ').title()} plan is active.",
            link={"view": "SUBSCRIPTION_PLANS"},
        )

    logger.info(f"Payment {payment.id} ({payment.purpose.value}) paid")
    return "processed"


async def handle_checkout_expired(db: AsyncSession, session: dict) -> str:
    payment = await _payment_for_session(db, session)
    if payment is None:
        return "not_found"
    await db.execute(
        update(Payment)
        .where(Payment.id == payment.id, Payment.status == PaymentStatus.PENDING)
        .values(status=PaymentStatus.EXPIRED)
        .execution_options(synchronize_session=False)
    )
    logger.info(f"Checkout for payment {payment.id} expired")
    return "processed"


async def handle_subscription_deleted(db: AsyncSession, subscription: dict) -> str:
    user = None
    customer_id = subscription.get("customer")
    if customer_id:
        result = await db.execute(select(User).where(User.stripe_customer_id == customer_id))
        user = result.scalar_one_or_none()
    if user is None:
        user_id = _parse_uuid((subscription.get("metadata") or {}).get("user_id"))
        user = await db.get(User, user_id) if user_id else None
    if user is None:
        logger.warning(f"Subscription {subscription.get('id')} deleted for unknown customer {customer_id}")
        return "not_found"

    user.subscription_tier = SubscriptionTier.FREE
    user.subscription_status = "canceled"
    logger.info(f"Subscription ended for user {user.id}")
    return "processed"


EVENT_HANDLERS = {
    "checkout.session.completed": handle_checkout_completed,
    "checkout.session.expired": handle_checkout_expired,
    "customer.subscription.deleted": handle_subscription_deleted,
}
