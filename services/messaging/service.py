"""
services/messaging/service.py
Conversation helpers shared by the booking flow and the messaging API.
"""

import logging
import uuid
from typing import Iterable, List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import on_commit
from config.redis_client import conversation_channel, publish_event
from shared.models.models import (
    Booking,
    Conversation,
    ConversationParticipant,
    Message,
    MessageType,
    Stoodio,
)

logger = logging.getLogger(__name__)


async def participant_ids(db: AsyncSession, conversation_id: uuid.UUID) -> List[uuid.UUID]:
    result = await db.execute(
        select(ConversationParticipant.user_id)
        .where(ConversationParticipant.conversation_id == conversation_id)
        .order_by(ConversationParticipant.joined_at)
    )
    return list(result.scalars())


async def is_participant(db: AsyncSession, conversation_id: uuid.UUID, user_id: uuid.UUID) -> bool:
    found = await db.scalar(
        select(ConversationParticipant.user_id).where(
            ConversationParticipant.conversation_id == conversation_id,
            ConversationParticipant.user_id == user_id,
        )
    )
    return found is not None


async def add_participants(
    db: AsyncSession, conversation: Conversation, user_ids: Iterable[uuid.UUID]
) -> List[uuid.UUID]:
    """Add users not already in the conversation. Returns the ids actually added."""
    existing = set(await participant_ids(db, conversation.id))
    added = []
    for uid in user_ids:
        if uid is None or uid in existing:
            continue
        db.add(ConversationParticipant(conversation_id=conversation.id, user_id=uid))
        existing.add(uid)
        added.append(uid)
    await db.flush()
    return added


async def post_message(
    db: AsyncSession,
    conversation: Conversation,
    text: str,
    sender_id: Optional[uuid.UUID] = None,
    type: MessageType = MessageType.TEXT,
) -> Message:
    msg = Message(conversation_id=conversation.id, sender_id=sender_id, text=text, type=type)
    db.add(msg)
    await db.flush()

    payload = {
        "id": str(msg.id),
        "conversation_id": str(conversation.id),
        "sender_id": str(sender_id) if sender_id else None,
        "text": text,
        "type": type.value,
    }

    async def _push():
        await publish_event(conversation_channel(conversation.id), "message", payload)

    on_commit(db, _push)
    return msg


async def ensure_booking_chat(db: AsyncSession, booking: Booking) -> Conversation:
    """
    Find or create the group chat bound to a booking and make sure every
    party (payer, engineer, producer, artist, stoodio owner) is in it.
    """
    result = await db.execute(select(Conversation).where(Conversation.booking_id == booking.id))
    conversation = result.scalar_one_or_none()

    stoodio = await db.get(Stoodio, booking.stoodio_id)
    members = [
        booking.booked_by_id,
        booking.artist_id,
        booking.engineer_id,
        booking.producer_id,
        stoodio.owner_id if stoodio else None,
    ]

    if conversation is None:
        title = f"Session {booking.booking_number}"
        if stoodio:
            title = f"{title} @ {stoodio.name}"
        conversation = Conversation(title=title, booking_id=booking.id)
        db.add(conversation)
        await db.flush()
        await add_participants(db, conversation, members)
        await post_message(
            db,
            conversation,
            f"Session confirmed for {booking.starts_at:%b %d, %Y %H:%M} UTC "
            f"({booking.duration_hrs}h). Use this chat to coordinate.",
            type=MessageType.SYSTEM,
        )
        logger.info(f"Created group chat {conversation.id} for booking {booking.booking_number}")
        return conversation

    added = await add_participants(db, conversation, members)
    if added:
        await post_message(
            db,
            conversation,
            "An engineer joined the session chat." if booking.engineer_id in added
            else "New participants joined the session chat.",
            type=MessageType.SYSTEM,
        )
    return conversation


async def find_or_create_direct(
    db: AsyncSession, user_id: uuid.UUID, other_user_id: uuid.UUID
) -> Conversation:
    """1:1 conversation between two users (booking chats excluded)."""
    pair = select(ConversationParticipant.conversation_id).where(
        ConversationParticipant.user_id.in_([user_id, other_user_id])
    ).group_by(ConversationParticipant.conversation_id).having(
        func.count(ConversationParticipant.user_id) == 2
    )
    sizes = select(ConversationParticipant.conversation_id).group_by(
        ConversationParticipant.conversation_id
    ).having(func.count(ConversationParticipant.user_id) == 2)

    result = await db.execute(
        select(Conversation).where(
            Conversation.booking_id.is_(None),
            Conversation.id.in_(pair),
            Conversation.id.in_(sizes),
        )
    )
    conversation = result.scalars().first()
    if conversation:
        return conversation

    conversation = Conversation()
    db.add(conversation)
    await db.flush()
    await add_participants(db, conversation, [user_id, other_user_id])
    return conversation
