from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel

from omnigate.schemas.conversation import DeliveryOut, MessageOut


class AIResponseRequest(BaseModel):
    conversation_id: UUID
    content: str
    handoff: bool = False
    handoff_reason: Optional[str] = None
    sender_type: Literal["bot", "assistant", "system"] = "bot"


class AIResponseResponse(BaseModel):
    success: bool
    message: Optional[MessageOut] = None
    handoff_triggered: bool = False
    delivery: Optional[DeliveryOut] = None


class UpdateStateRequest(BaseModel):
    conversation_id: UUID
    status: Literal["bot", "human"]
    handoff_reason: Optional[str] = None


class ConversationStateResponse(BaseModel):
    conversation_id: UUID
    status: str
    ai_active: bool
    unanswered_count: int
    handoff_reason: Optional[str] = None
    handoff_at: Optional[datetime] = None
