"""
tests/test_messaging.py
Booking group chats, 1:1 conversations and participant checks.
"""

from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import commit
from services.messaging.service import ensure_booking_chat, participant_ids
from shared.models.models import (
    Booking,
    BookingRequestType,
    BookingStatus,
    Message,
    MessageType,
    Stoodio,
    User,
    UserRole,
)
from tests.conftest import auth_headers, future, make_user


def _booking(stoodio: Stoodio, payer: User, **kwargs) -> Booking:
    defaults = dict(
        booking_number="SZ-2026-CHAT1",
        starts_at=future(72),
        duration_hrs=Decimal("2"),
        stoodio_id=stoodio.id,
        booked_by_id=payer.id,
        booked_by_role=payer.role,
        artist_id=payer.id,
        status=BookingStatus.CONFIRMED,
        request_type=BookingRequestType.BRING_YOUR_OWN,
        total_cost=Decimal("264"),
    )
    defaults.update(kwargs)
    return Booking(**defaults)


# ── Booking chats ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_booking_chat_created_once_and_extended(
    db: AsyncSession, artist: User, engineer: User, stoodio: Stoodio
):
    booking = _booking(stoodio, artist)
    db.add(booking)
    await db.flush()

    chat = await ensure_booking_chat(db, booking)
    assert set(await participant_ids(db, chat.id)) == {artist.id, stoodio.owner_id}
    assert stoodio.name in chat.title

    # Engineer joins later: same conversation, one new member, one new system line
    booking.engineer_id = engineer.id
    again = await ensure_booking_chat(db, booking)
    await commit(db)

    assert again.id == chat.id
    assert set(await participant_ids(db, chat.id)) == {artist.id, stoodio.owner_id, engineer.id}
    messages = (await db.execute(
        select(Message).where(Message.conversation_id == chat.id).order_by(Message.created_at)
    )).scalars().all()
    assert [m.type for m in messages] == [MessageType.SYSTEM, MessageType.SYSTEM]
    assert all(m.sender_id is None for m in messages)
    assert "engineer joined" in messages[-1].text


@pytest.mark.asyncio
async def test_booking_chat_without_new_members_adds_no_message(
    db: AsyncSession, artist: User, stoodio: Stoodio
):
    booking = _booking(stoodio, artist)
    db.add(booking)
    await db.flush()
    chat = await ensure_booking_chat(db, booking)
    await ensure_booking_chat(db, booking)

    messages = (await db.execute(select(Message).where(Message.conversation_id == chat.id))).scalars().all()
    assert len(messages) == 1


# ── API ────────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_direct_conversation_find_or_create(client: AsyncClient, artist: User, engineer: User):
    first = await client.post("/conversations", headers=auth_headers(artist), json={"user_id": str(engineer.id)})
    assert first.status_code == 201
    data = first.json()
    assert set(data["participant_ids"]) == {str(artist.id), str(engineer.id)}
    assert data["booking_id"] is None

    # The other side gets the same thread back
    second = await client.post("/conversations", headers=auth_headers(engineer), json={"user_id": str(artist.id)})
    assert second.json()["id"] == data["id"]


@pytest.mark.asyncio
async def test_cannot_message_self(client: AsyncClient, artist: User):
    response = await client.post("/conversations", headers=auth_headers(artist), json={"user_id": str(artist.id)})
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_post_and_read_messages(client: AsyncClient, artist: User, engineer: User, redis):
    conversation = (await client.post(
        "/conversations", headers=auth_headers(artist), json={"user_id": str(engineer.id)}
    )).json()

    posted = await client.post(
        f"/conversations/{conversation['id']}/messages",
        headers=auth_headers(artist),
        json={"text": "Can you mix two vocals tonight?"},
    )
    assert posted.status_code == 201
    assert posted.json()["sender_id"] == str(artist.id)
    assert posted.json()["type"] == "TEXT"

    await client.post(
        f"/conversations/{conversation['id']}/messages",
        headers=auth_headers(engineer),
        json={"text": "Yes, send stems"},
    )

    detail = await client.get(f"/conversations/{conversation['id']}", headers=auth_headers(engineer))
    assert detail.status_code == 200
    texts = [m["text"] for m in detail.json()["messages"]]
    assert texts == ["Can you mix two vocals tonight?", "Yes, send stems"]
    assert detail.json()["last_message"]["text"] == "Yes, send stems"

    listing = await client.get("/conversations", headers=auth_headers(artist))
    assert [c["id"] for c in listing.json()] == [conversation["id"]]


@pytest.mark.asyncio
async def test_outsider_cannot_read_or_post(client: AsyncClient, db: AsyncSession, artist: User, engineer: User):
    outsider = await make_user(db, UserRole.PRODUCER, "Nosy Neighbor")
    conversation = (await client.post(
        "/conversations", headers=auth_headers(artist), json={"user_id": str(engineer.id)}
    )).json()

    read = await client.get(f"/conversations/{conversation['id']}", headers=auth_headers(outsider))
    assert read.status_code == 403
    post = await client.post(
        f"/conversations/{conversation['id']}/messages", headers=auth_headers(outsider), json={"text": "hi"}
    )
    assert post.status_code == 403


@pytest.mark.asyncio
async def test_empty_message_rejected(client: AsyncClient, artist: User, engineer: User):
    conversation = (await client.post(
        "/conversations", headers=auth_headers(artist), json={"user_id": str(engineer.id)}
    )).json()
    response = await client.post(
        f"/conversations/{conversation['id']}/messages", headers=auth_headers(artist), json={"text": ""}
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_smart_replies_empty_when_assistant_disabled(client: AsyncClient, artist: User, engineer: User):
    conversation = (await client.post(
        "/conversations", headers=auth_headers(artist), json={"user_id": str(engineer.id)}
    )).json()
    response = await client.get(
        f"/conversations/{conversation['id']}/smart-replies", headers=auth_headers(artist)
    )
    assert response.status_code == 200
    assert response.json() == {"replies": []}
