"""
tests/test_payments.py
Stripe checkout creation and webhook handling (Stripe SDK mocked).
"""

import json
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest
import stripe
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from services.payment.service import EVENT_HANDLERS
from services.payment.stripe_client import to_minor_units
from shared.models.models import (
    Payment,
    PaymentPurpose,
    PaymentStatus,
    SubscriptionTier,
    Transaction,
    TransactionCategory,
    User,
)
from tests.conftest import auth_headers


async def _payment(db: AsyncSession, user: User, purpose=PaymentPurpose.WALLET_TOPUP, amount="25.00", **kwargs):
    payment = Payment(
        user_id=user.id,
        purpose=purpose,
        amount=Decimal(amount),
        status=PaymentStatus.PENDING,
        stripe_session_id=kwargs.pop("session_id", "cs_test_1"),
        **kwargs,
    )
    db.add(payment)
    await db.commit()
    return payment


async def _send(client: AsyncClient, event_id: str, event_type: str, obj: dict):
    body = json.dumps({"id": event_id, "type": event_type, "data": {"object": obj}})
    with patch("services.payment.stripe_client.construct_event", return_value={}) as verify:
        response = await client.post(
            "/payments/webhook",
            content=body,
            headers={"Stripe-Signature": "t=1,v1=test", "Content-Type": "application/json"},
        )
    verify.assert_called_once()
    return response


def test_minor_units():
    assert to_minor_units(Decimal("19.99")) == 1999
    assert to_minor_units("25") == 2500


# ── Checkout ───────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_subscription_checkout(client: AsyncClient, db: AsyncSession, engineer: User):
    db_engineer = await db.get(User, engineer.id)
    db_engineer.subscription_tier = SubscriptionTier.FREE
    await db.commit()

    session = SimpleNamespace(id="cs_sub_1", url="https://checkout.stripe.com/c/cs_sub_1")
    with patch(
        "services.payment.stripe_client.create_checkout_session", new=AsyncMock(return_value=session)
    ) as create:
        response = await client.post(
            "/payments/subscription-checkout",
            headers=auth_headers(engineer),
            json={"tier": "ENGINEER_PLUS"},
        )

    assert response.status_code == 200
    assert response.json()["stripe_session_id"] == "cs_sub_1"
    payment, user, product_name = create.await_args.args
    assert payment.purpose == PaymentPurpose.SUBSCRIPTION
    assert payment.requested_tier == SubscriptionTier.ENGINEER_PLUS
    assert "Engineer Plus" in product_name


@pytest.mark.asyncio
async def test_subscription_checkout_same_active_plan_rejected(
    client: AsyncClient, db: AsyncSession, engineer: User
):
    db_engineer = await db.get(User, engineer.id)
    db_engineer.subscription_status = "active"
    await db.commit()

    response = await client.post(
        "/payments/subscription-checkout", headers=auth_headers(engineer), json={"tier": "ENGINEER_PLUS"}
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_gateway_error_maps_to_502(client: AsyncClient, artist: User):
    error = stripe.InvalidRequestError("No such price", param="price")
    with patch("services.payment.stripe_client._create_session", side_effect=error):
        response = await client.post("/wallet/add-funds", headers=auth_headers(artist), json={"amount": "10"})
    assert response.status_code == 502
    assert response.json()["code"] == "PAYMENT_GATEWAY_ERROR"


@pytest.mark.asyncio
async def test_checkout_params(artist: User):
    from services.payment import stripe_client

    payment = SimpleNamespace(
        id="pay-1", purpose=PaymentPurpose.SUBSCRIPTION, amount=Decimal("19.99"), currency="usd"
    )
    fake_session = SimpleNamespace(id="cs_1", url="https://x")
    with patch("services.payment.stripe_client._create_session", return_value=fake_session) as create:
        result = await stripe_client.create_checkout_session(payment, artist, "Stoodioz Engineer Plus")

    assert result is fake_session
    params = create.call_args.kwargs
    assert params["mode"] == "subscription"
    assert params["line_items"][0]["price_data"]["unit_amount"] == 1999
    assert params["line_items"][0]["price_data"]["recurring"] == {"interval": "month"}
    assert params["metadata"] == {"type": "SUBSCRIPTION", "payment_id": "pay-1", "user_id": str(artist.id)}
    assert params["customer_email"] == artist.email


# ── Webhook ────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_webhook_rejects_bad_signature(client: AsyncClient):
    error = stripe.SignatureVerificationError("bad signature", "t=1,v1=nope")
    with patch("services.payment.stripe_client.construct_event", side_effect=error):
        response = await client.post("/payments/webhook", content=b"{}", headers={"Stripe-Signature": "x"})
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_wallet_topup_credited_exactly_once(client: AsyncClient, db: AsyncSession, artist: User):
    payment = await _payment(db, artist)
    session = {"id": "cs_test_1", "metadata": {"payment_id": str(payment.id), "type": "WALLET_TOPUP"}}

    first = await _send(client, "evt_1", "checkout.session.completed", session)
    assert first.json() == {"status": "processed"}

    duplicate = await _send(client, "evt_1", "checkout.session.completed", session)
    assert duplicate.json() == {"status": "duplicate"}

    # Same checkout under a new event id is still a no-op
    redelivered = await _send(client, "evt_2", "checkout.session.completed", session)
    assert redelivered.json() == {"status": "already_processed"}

    credits = (await db.execute(
        select(Transaction).where(
            Transaction.user_id == artist.id, Transaction.category == TransactionCategory.ADD_FUNDS
        )
    )).scalars().all()
    assert len(credits) == 1
    assert credits[0].amount == Decimal("25")

    await db.refresh(payment)
    assert payment.status == PaymentStatus.PAID
    assert payment.paid_at is not None

    wallet = (await client.get("/wallet", headers=auth_headers(artist))).json()
    assert Decimal(wallet["balance"]) == Decimal("25")


@pytest.mark.asyncio
async def test_payment_found_by_session_id_without_metadata(client: AsyncClient, db: AsyncSession, artist: User):
    await _payment(db, artist, session_id="cs_lookup")
    response = await _send(client, "evt_lookup", "checkout.session.completed", {"id": "cs_lookup"})
    assert response.json() == {"status": "processed"}


@pytest.mark.asyncio
async def test_subscription_lifecycle(client: AsyncClient, db: AsyncSession, engineer: User):
    payment = await _payment(
        db, engineer, purpose=PaymentPurpose.SUBSCRIPTION, amount="19.99",
        session_id="cs_sub", requested_tier=SubscriptionTier.ENGINEER_PLUS,
    )
    completed = await _send(
        client, "evt_sub_1", "checkout.session.completed",
        {"id": "cs_sub", "customer": "cus_123", "metadata": {"payment_id": str(payment.id)}},
    )
    assert completed.json() == {"status": "processed"}

    me = (await client.get("/users/me", headers=auth_headers(engineer))).json()
    assert me["subscription_tier"] == "ENGINEER_PLUS"
    assert me["subscription_status"] == "active"

    deleted = await _send(
        client, "evt_sub_2", "customer.subscription.deleted", {"id": "sub_1", "customer": "cus_123"}
    )
    assert deleted.json() == {"status": "processed"}

    me = (await client.get("/users/me", headers=auth_headers(engineer))).json()
    assert me["subscription_tier"] == "FREE"
    assert me["subscription_status"] == "canceled"


@pytest.mark.asyncio
async def test_checkout_expired(client: AsyncClient, db: AsyncSession, artist: User):
    payment = await _payment(db, artist, session_id="cs_old")
    response = await _send(client, "evt_exp", "checkout.session.expired", {"id": "cs_old"})
    assert response.json() == {"status": "processed"}
    await db.refresh(payment)
    assert payment.status == PaymentStatus.EXPIRED


@pytest.mark.asyncio
async def test_unhandled_event_ignored(client: AsyncClient):
    response = await _send(client, "evt_other", "invoice.paid", {"id": "in_1"})
    assert response.json() == {"status": "ignored"}


@pytest.mark.asyncio
async def test_failed_handler_releases_event_for_retry(app, redis, artist: User):
    failing = AsyncMock(side_effect=RuntimeError("database went away"))
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        with patch.dict(EVENT_HANDLERS, {"checkout.session.completed": failing}):
            response = await _send(client, "evt_fail", "checkout.session.completed", {"id": "cs_x"})

    assert response.status_code == 500
    assert await redis.exists("webhook_event:evt_fail") == 0


@pytest.mark.asyncio
async def test_payment_history(client: AsyncClient, db: AsyncSession, artist: User):
    await _payment(db, artist, session_id="cs_a")
    await _payment(db, artist, session_id="cs_b", amount="50.00")

    response = await client.get("/payments/me/history", headers=auth_headers(artist))
    assert response.status_code == 200
    assert {Decimal(p["amount"]) for p in response.json()} == {Decimal("25"), Decimal("50")}
