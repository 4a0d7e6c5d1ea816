"""
services/messaging/router.py
Conversations: booking group chats and 1:1 threads.
Only participants can read or post.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import commit, get_db
from services.assistant.service import AssistantService, get_assistant
from services.messaging.service import (
    find_or_create_direct,
    is_participant,
    participant_ids,
    post_message,
)
from shared.middleware.auth import get_current_user
from shared.models.models import (
    Conversation,
    ConversationParticipant,
    Message,
    MessageType,
    User,
)
from shared.schemas.schemas import (
    ConversationCreateRequest,
    ConversationDetailResponse,
    ConversationResponse,
    MessageCreateRequest,
    MessageResponse,
    SmartRepliesResponse,
)

router = APIRouter(prefix="/conversations", tags=["Messaging"])


async def _get_conversation_for(db: AsyncSession, conversation_id: UUID, user: User) -> Conversation:
    conversation = await db.get(Conversation, conversation_id)
    if not conversation:
        raise HTTPException(status_code=404, detail="Conversation not found")
    if not await is_participant(db, conversation.id, user.id):
        raise HTTPException(status_code=403, detail="Not a participant in this conversation")
    return conversation


async def _recent_messages(db: AsyncSession, conversation_id: UUID, limit: int) -> list:
    result = await db.execute(
        select(Message)
        .where(Message.conversation_id == conversation_id)
        .order_by(Message.created_at.desc(), Message.id)
        .limit(limit)
    )
    return list(reversed(result.scalars().all()))


async def _summary(db: AsyncSession, conversation: Conversation) -> ConversationResponse:
    last = await _recent_messages(db, conversation.id, 1)
    return ConversationResponse(
        id=conversation.id,
        title=conversation.title,
        booking_id=conversation.booking_id,
        participant_ids=await participant_ids(db, conversation.id),
        last_message=MessageResponse.model_validate(last[0]) if last else None,
        created_at=conversation.created_at,
    )


@router.get("", response_model=list[ConversationResponse])
async def list_my_conversations(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(Conversation)
        .join(ConversationParticipant, ConversationParticipant.conversation_id == Conversation.id)
        .where(ConversationParticipant.user_id == current_user.id)
        .order_by(Conversation.updated_at.desc())
    )
    return [await _summary(db, c) for c in result.scalars().all()]


@router.post("", response_model=ConversationResponse, status_code=status.HTTP_201_CREATED)
async def start_conversation(
    data: ConversationCreateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Find or create a 1:1 conversation with another user."""
    if data.user_id == current_user.id:
        raise HTTPException(status_code=400, detail="Cannot start a conversation with yourself")
    other = await db.get(User, data.user_id)
    if not other or not other.is_active:
        raise HTTPException(status_code=404, detail="User not found")

    conversation = await find_or_create_direct(db, current_user.id, other.id)
    await commit(db)
    return await _summary(db, conversation)


@router.get("/{conversation_id}", response_model=ConversationDetailResponse)
async def get_conversation(
    conversation_id: UUID,
    limit: int = Query(100, ge=1, le=500),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    conversation = await _get_conversation_for(db, conversation_id, current_user)
    summary = await _summary(db, conversation)
    messages = await _recent_messages(db, conversation.id, limit)
    return ConversationDetailResponse(
        **summary.model_dump(),
        messages=[MessageResponse.model_validate(m) for m in messages],
    )


@router.post(
    "/{conversation_id}/messages",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
)
async def send_message(
    conversation_id: UUID,
    data: MessageCreateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    conversation = await _get_conversation_for(db, conversation_id, current_user)
    message = await post_message(
        db, conversation, data.text, sender_id=current_user.id, type=MessageType(data.type)
    )
    conversation.updated_at = message.created_at
    await commit(db)
    return MessageResponse.model_validate(message)


@router.get("/{conversation_id}/smart-replies", response_model=SmartRepliesResponse)
async def smart_replies(
    conversation_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    assistant: AssistantService = Depends(get_assistant),
):
    """Up to three short reply suggestions. Empty when the assistant is unavailable."""
    await _get_conversation_for(db, conversation_id, current_user)
    replies = await assistant.smart_replies(db, conversation_id, current_user)
    return SmartRepliesResponse(replies=replies)
