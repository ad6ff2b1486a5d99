"""Callbacks from the automation engine."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from omnigate.database import get_db
from omnigate.dependencies import Container, get_container, require_internal_key
from omnigate.logging_config import get_logger
from omnigate.routers.common import apply_status_change, delivery_out
from omnigate.schemas.conversation import MessageOut, StatusUpdateResponse
from omnigate.schemas.internal import AIResponseRequest, AIResponseResponse, ConversationStateResponse, UpdateStateRequest
from omnigate.services.conversation_service import get_conversation
from omnigate.services.handoff_service import strip_handoff_marker
from omnigate.services.reply_service import send_reply
from omnigate.services.state_machine import ConversationStatus

logger = get_logger("internal")

router = APIRouter(prefix="/v1/internal", dependencies=[Depends(require_internal_key)])


@router.post("/ai-response", response_model=AIResponseResponse)
async def ai_response(
    request: AIResponseRequest,
    db: Session = Depends(get_db),
    container: Container = Depends(get_container),
):
    conversation = get_conversation(db, request.conversation_id)
    if not conversation:
        raise HTTPException(status_code=404, detail="Conversation not found")

    content, marker_found = strip_handoff_marker(request.content, container.settings.handoff_marker)
    handoff = request.handoff or marker_found
    reason = request.handoff_reason or ("handoff marker" if marker_found else "automation")

    if handoff:
        await apply_status_change(db, container.notifier, conversation.id, ConversationStatus.HUMAN.value, reason)
        logger.info(
            "Automation requested handoff",
            extra={"context": {"conversation_id": str(request.conversation_id), "reason": reason}},
        )

    if not content:
        return AIResponseResponse(success=True, handoff_triggered=handoff)

    outcome = await send_reply(
        db,
        get_conversation(db, request.conversation_id),
        role="system" if request.sender_type == "system" else "assistant",
        text=content,
        raw={"source": "automation", "handoff": handoff, "handoff_reason": request.handoff_reason},
        dispatcher=container.dispatcher,
        pipeline=container.media,
        notifier=container.notifier,
    )
    return AIResponseResponse(
        success=True,
        message=MessageOut.model_validate(outcome.message),
        handoff_triggered=handoff,
        delivery=delivery_out(outcome.delivery),
    )


@router.post("/update-state", response_model=StatusUpdateResponse)
async def update_state(
    request: UpdateStateRequest,
    db: Session = Depends(get_db),
    container: Container = Depends(get_container),
):
    change = await apply_status_change(
        db, container.notifier, request.conversation_id, request.status, request.handoff_reason
    )
    return StatusUpdateResponse(
        conversation_id=change.conversation_id,
        old_status=change.old_status,
        new_status=change.new_status,
        changed=change.changed,
    )


@router.get("/conversation-state/{conversation_id}", response_model=ConversationStateResponse)
def conversation_state(conversation_id: UUID, db: Session = Depends(get_db)):
    conversation = get_conversation(db, conversation_id)
    if not conversation:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return ConversationStateResponse(
        conversation_id=conversation.id,
        status=conversation.status,
        ai_active=conversation.status == ConversationStatus.BOT.value,
        unanswered_count=conversation.unanswered_count,
        handoff_reason=conversation.handoff_reason,
        handoff_at=conversation.handoff_at,
    )
