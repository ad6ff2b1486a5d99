"""Conversation store: natural-key thread upsert and the append-only message log."""

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from omnigate.database import upsert_insert, utcnow
from omnigate.logging_config import get_logger
from omnigate.models import Conversation, Message
from omnigate.services.state_machine import ConversationStatus

logger = get_logger("conversation_service")


@dataclass
class ConversationUpsert:
    conversation_id: UUID
    was_created: bool


def upsert_conversation(
    db: Session,
    *,
    bot_id: UUID,
    channel_type: str,
    external_thread_id: str,
    contact_id: Optional[UUID] = None,
    now: Optional[datetime] = None,
) -> ConversationUpsert:
    """Insert the thread or, on natural-key conflict, register another inbound message.

    The id is generated here so RETURNING tells us whether the row is ours.
    """
    now = now or utcnow()
    candidate_id = uuid.uuid4()
    stmt = upsert_insert(db, Conversation).values(
        id=candidate_id,
        bot_id=bot_id,
        channel_type=channel_type,
        external_thread_id=external_thread_id,
        contact_id=contact_id,
        status=ConversationStatus.BOT.value,
        unread_count=1,
        unanswered_count=0,
        message_count=0,
        last_user_at=now,
        created_at=now,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["bot_id", "channel_type", "external_thread_id"],
        set_={
            "last_user_at": now,
            "unread_count": Conversation.unread_count + 1,
            "agent_read_at": None,
            "contact_id": func.coalesce(Conversation.contact_id, stmt.excluded.contact_id),
            "updated_at": now,
        },
    ).returning(Conversation.id)

    conversation_id = db.execute(stmt).scalar_one()
    was_created = conversation_id == candidate_id
    if was_created:
        logger.info(
            "Conversation created",
            extra={
                "context": {
                    "conversation_id": str(conversation_id),
                    "channel_type": channel_type,
                    "external_thread_id": external_thread_id,
                }
            },
        )
    return ConversationUpsert(conversation_id=conversation_id, was_created=was_created)


def get_conversation(db: Session, conversation_id: UUID) -> Optional[Conversation]:
    # Core UPDATEs bypass the identity map, so always reload
    return db.get(Conversation, conversation_id, populate_existing=True)


def append_message(
    db: Session,
    *,
    conversation_id: UUID,
    role: str,
    content: str,
    raw: Optional[dict[str, Any]] = None,
    status: Optional[str] = None,
    provider_message_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Message:
    now = now or utcnow()
    message = Message(
        id=uuid.uuid4(),
        conversation_id=conversation_id,
        role=role,
        content=content,
        raw=raw,
        status=status,
        provider_message_id=provider_message_id,
        created_at=now,
    )
    db.add(message)
    db.flush()

    db.execute(
        update(Conversation)
        .where(Conversation.id == conversation_id)
        .values(
            message_count=Conversation.message_count + 1,
            last_message_at=now,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    return message


def mark_conversation_read(db: Session, conversation_id: UUID, *, now: Optional[datetime] = None) -> bool:
    now = now or utcnow()
    result = db.execute(
        update(Conversation)
        .where(Conversation.id == conversation_id)
        .values(unread_count=0, agent_read_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount > 0
