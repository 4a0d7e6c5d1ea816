"""
services/payment/stripe_client.py
Thin wrapper over stripe-python: Checkout sessions and webhook verification.
Calls go through the "stripe" circuit breaker with retries on connection errors.
"""

import logging
from decimal import Decimal

import stripe

from config.settings import settings
from shared.models.models import Payment, PaymentPurpose, User
from shared.utils.exceptions import PaymentGatewayError
from shared.utils.resilience import call_with_resilience

logger = logging.getLogger(__name__)


def to_minor_units(amount) -> int:
    """Stripe amounts are integers in the smallest currency unit (cents)."""
    return int((Decimal(str(amount)) * 100).to_integral_value())


def _create_session(**params):
    return stripe.checkout.Session.create(api_key=settings.STRIPE_SECRET_KEY, **params)


async def create_checkout_session(payment: Payment, user: User, product_name: str):
    """
    Create a hosted Checkout session for a stored PENDING Payment.
    Wallet top-ups are one-off payments; subscriptions recur monthly.
    """
    price_data = {
        "currency": payment.currency,
        "product_data": {"name": product_name},
        "unit_amount": to_minor_units(payment.amount),
    }
    if payment.purpose == PaymentPurpose.SUBSCRIPTION:
        price_data["recurring"] = {"interval": "month"}

    metadata = {
        "type": payment.purpose.value,
        "payment_id": str(payment.id),
        "user_id": str(user.id),
    }
    params = {
        "mode": "subscription" if payment.purpose == PaymentPurpose.SUBSCRIPTION else "payment",
        "line_items": [{"price_data": price_data, "quantity": 1}],
        "success_url": settings.STRIPE_SUCCESS_URL,
        "cancel_url": settings.STRIPE_CANCEL_URL,
        "client_reference_id": str(user.id),
        "metadata": metadata,
    }
    if payment.purpose == PaymentPurpose.SUBSCRIPTION:
        params["subscription_data"] = {"metadata": metadata}
    if user.stripe_customer_id:
        params["customer"] = user.stripe_customer_id
    else:
        params["customer_email"] = user.email

    try:
        session = await call_with_resilience(
            "stripe",
            _create_session,
            retry_on=(stripe.APIConnectionError,),
            attempts=settings.STRIPE_MAX_RETRIES,
            **params,
        )
    except stripe.StripeError as e:
        logger.error(f"Stripe checkout failed for payment {payment.id}: {e}")
        raise PaymentGatewayError(f"Payment gateway error: {e.user_message or 'checkout unavailable'}")

    logger.info(f"Created Stripe session {session.id} for payment {payment.id} ({payment.purpose.value})")
    return session


def construct_event(payload: bytes, sig_header: str):
    """Verify the Stripe-Signature header. Raises ValueError / SignatureVerificationError."""
    return stripe.Webhook.construct_event(payload, sig_header, settings.STRIPE_WEBHOOK_SECRET)
