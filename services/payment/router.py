"""
services/payment/router.py
Stripe integration: subscription checkout, webhook handling, payment history.
Wallet top-up checkout lives in services/wallet/router.py.
"""

import json
import logging

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import commit, discard_pending_callbacks, get_db
from config.redis_client import RedisCache, get_redis
from config.settings import settings
from services.payment import stripe_client
from services.payment.service import EVENT_HANDLERS, open_checkout
from shared.middleware.auth import get_current_user
from shared.models.models import Payment, PaymentPurpose, SubscriptionTier, User
from shared.schemas.schemas import (
    CheckoutSessionResponse,
    PaymentResponse,
    SubscriptionCheckoutRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])


# ── Subscription Checkout ─────────────────────────────────────

@router.post("/subscription-checkout", response_model=CheckoutSessionResponse)
async def subscription_checkout(
    data: SubscriptionCheckoutRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Start a Stripe Checkout for a paid plan. The tier is applied by the webhook."""
    tier = SubscriptionTier(data.tier)
    if current_user.subscription_tier == tier and current_user.subscription_status == "active":
        raise HTTPException(status_code=400, detail="You are already on this plan")

    checkout = await open_checkout(
        db,
        current_user,
        PaymentPurpose.SUBSCRIPTION,
        settings.subscription_prices[tier.value],
        f"Stoodioz {tier.value.replace('_', ' ').title()}",
        tier=tier,
    )
    await commit(db)
    return CheckoutSessionResponse(**checkout)


# ── Stripe Webhook ────────────────────────────────────────────

@router.post("/webhook", include_in_schema=False)
async def stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """
    Stripe webhook handler. Validates the Stripe-Signature header and
    de-duplicates on the event id.
    Handles: checkout.session.completed, checkout.session.expired,
    customer.subscription.deleted.
    """
    body = await request.body()
    signature = request.headers.get("Stripe-Signature", "")

    try:
        stripe_client.construct_event(body, signature)
    except (ValueError, stripe.SignatureVerificationError):
        raise HTTPException(status_code=400, detail="Invalid webhook signature")

    event = json.loads(body)
    event_id = event.get("id")
    event_type = event.get("type")

    handler = EVENT_HANDLERS.get(event_type)
    if handler is None:
        return {"status": "ignored"}

    cache = RedisCache(redis)
    if event_id and not await cache.claim_webhook_event(event_id):
        logger.info(f"Duplicate Stripe event {event_id} ({event_type})")
        return {"status": "duplicate"}

    try:
        outcome = await handler(db, event.get("data", {}).get("object", {}))
        await commit(db)
    except Exception:
        # Let Stripe's retry reprocess the event
        discard_pending_callbacks(db)
        if event_id:
            await cache.release_webhook_event(event_id)
        raise

    logger.info(f"Stripe event {event_id} ({event_type}): {outcome}")
    return {"status": outcome}


# ── Read Endpoints ────────────────────────────────────────────

@router.get("/me/history", response_model=list[PaymentResponse])
async def my_payment_history(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Get authenticated user's payment history."""
    result = await db.execute(
        select(Payment)
        .where(Payment.user_id == current_user.id)
        .order_by(Payment.created_at.desc())
        .limit(50)
    )
    payments = result.scalars().all()
    return [PaymentResponse.model_validate(p) for p in payments]
