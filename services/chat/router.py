"""
services/chat/router.py
Direct messaging between a student and a landlord.

Each (student, landlord) pair shares exactly one Conversation. The first
message between two users creates it; the unique constraint on the pair
settles races between concurrent first messages.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased, selectinload

from config.database import get_db
from config.settings import settings
from shared.middleware.auth import get_current_user
from shared.middleware.policy import conversation_policy
from shared.models.models import Conversation, Message, User, UserRole, utcnow
from shared.schemas.schemas import (
    ChatMessageResponse,
    ConversationResponse,
    MessageCreateRequest,
    UserSummary,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["Chat"])


async def _find_or_create_conversation(
    db: AsyncSession,
    student_id: UUID,
    landlord_id: UUID,
) -> UUID:
    """Return the pair's conversation id, inserting the row on first contact."""
    lookup = select(Conversation.id).where(
        Conversation.student_id == student_id,
        Conversation.landlord_id == landlord_id,
    )
    conversation_id = await db.scalar(lookup)
    if conversation_id:
        return conversation_id

    conversation = Conversation(student_id=student_id, landlord_id=landlord_id)
    db.add(conversation)
    try:
        await db.flush()
    except IntegrityError:
        # Another request created the pair first; use its row
        await db.rollback()
        conversation_id = await db.scalar(lookup)
        if conversation_id is None:
            raise
        return conversation_id
    return conversation.id


@router.post("/messages", response_model=ChatMessageResponse, status_code=status.HTTP_201_CREATED)
async def send_message(
    data: MessageCreateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Send a message to a user of the opposite role.
    Starts the conversation when the two users have never talked.
    """
    sender_id, sender_role = current_user.id, current_user.role

    if data.recipient_id == sender_id:
        raise HTTPException(status_code=400, detail="You cannot message yourself")

    recipient = await db.scalar(select(User).where(User.id == data.recipient_id))
    if not recipient:
        raise HTTPException(status_code=404, detail="Recipient not found")
    recipient_id, recipient_role = recipient.id, recipient.role

    if sender_role == UserRole.STUDENT and recipient_role == UserRole.LANDLORD:
        student_id, landlord_id = sender_id, recipient_id
    elif sender_role == UserRole.LANDLORD and recipient_role == UserRole.STUDENT:
        student_id, landlord_id = recipient_id, sender_id
    else:
        raise HTTPException(
            status_code=400,
            detail="Messages are only allowed between students and landlords",
        )

    conversation_id = await _find_or_create_conversation(db, student_id, landlord_id)

    message = Message(
        conversation_id=conversation_id,
        sender_id=sender_id,
        receiver_id=recipient_id,
        content=data.content,
        sent_at=utcnow(),
    )
    db.add(message)
    await db.execute(
        update(Conversation)
        .where(Conversation.id == conversation_id)
        .values(last_message_at=message.sent_at)
    )
    await db.commit()
    await db.refresh(message)

    return ChatMessageResponse.model_validate(message)


@router.get("/messages", response_model=list[ChatMessageResponse])
async def get_messages(
    conversation_id: UUID = Query(...),
    page: int = Query(1, ge=1),
    page_size: int = Query(settings.MAX_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Messages of one conversation in the order they were sent. Participants only."""
    await conversation_policy.authorize(db, conversation_id, current_user, "read")

    result = await db.execute(
        select(Message)
        .where(Message.conversation_id == conversation_id)
        .order_by(Message.sent_at.asc(), Message.id)
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return [ChatMessageResponse.model_validate(m) for m in result.scalars()]


@router.get("/conversations", response_model=list[ConversationResponse])
async def list_conversations(
    page: int = Query(1, ge=1),
    page_size: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """The caller's conversations, most recently active first, with a preview message."""
    result = await db.execute(
        select(Conversation)
        .options(selectinload(Conversation.student), selectinload(Conversation.landlord))
        .execution_options(populate_existing=True)
        .where(or_(
            Conversation.student_id == current_user.id,
            Conversation.landlord_id == current_user.id,
        ))
        .order_by(Conversation.last_message_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    conversations = result.scalars().all()
    if not conversations:
        return []

    # Latest message per conversation in a single query
    ranked = (
        select(
            Message,
            func.row_number()
            .over(partition_by=Message.conversation_id, order_by=Message.sent_at.desc())
            .label("rn"),
        )
        .where(Message.conversation_id.in_([c.id for c in conversations]))
        .subquery()
    )
    latest = aliased(Message, ranked)
    latest_rows = await db.execute(select(latest).where(ranked.c.rn == 1))
    previews = {m.conversation_id: m for m in latest_rows.scalars()}

    items = []
    for conv in conversations:
        other = conv.landlord if conv.student_id == current_user.id else conv.student
        preview = previews.get(conv.id)
        items.append(ConversationResponse(
            id=conv.id,
            student=UserSummary.model_validate(conv.student),
            landlord=UserSummary.model_validate(conv.landlord),
            other_party=UserSummary.model_validate(other),
            last_message_at=conv.last_message_at,
            last_message=ChatMessageResponse.model_validate(preview) if preview else None,
        ))
    return items
