from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class MessageOut(BaseModel):
    id: UUID
    conversation_id: UUID
    role: str
    content: str
    provider_message_id: Optional[str] = None
    status: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ConversationOut(BaseModel):
    id: UUID
    bot_id: UUID
    channel_type: str
    external_thread_id: str
    contact_id: Optional[UUID] = None
    status: str
    unread_count: int
    unanswered_count: int
    message_count: int
    last_user_at: Optional[datetime] = None
    last_agent_reply_at: Optional[datetime] = None
    handoff_at: Optional[datetime] = None
    handoff_reason: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class DeliveryOut(BaseModel):
    success: bool
    provider_message_id: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    attempts: int = 1


class SendReplyResponse(BaseModel):
    message: MessageOut
    delivery: Optional[DeliveryOut] = None


class StatusUpdateRequest(BaseModel):
    status: Literal["bot", "human"]
    reason: Optional[str] = None


class StatusUpdateResponse(BaseModel):
    conversation_id: UUID
    old_status: str
    new_status: str
    changed: bool


class ReadResponse(BaseModel):
    conversation_id: UUID
    unread_count: int = 0


def serialize_message(message) -> dict:
    return MessageOut.model_validate(message).model_dump(mode="json")


def serialize_conversation(conversation) -> dict:
    return ConversationOut.model_validate(conversation).model_dump(mode="json")
