"""Operator actions on a conversation."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from sqlalchemy.orm import Session

from omnigate.database import get_db
from omnigate.dependencies import Container, get_container, require_internal_key
from omnigate.routers.common import apply_status_change, delivery_out
from omnigate.schemas.conversation import (
    MessageOut,
    ReadResponse,
    SendReplyResponse,
    StatusUpdateRequest,
    StatusUpdateResponse,
)
from omnigate.services.channels import OutboundAttachment
from omnigate.services.conversation_service import get_conversation, mark_conversation_read
from omnigate.services.media_service import MediaTooLargeError
from omnigate.services.reply_service import EmptyReplyError, send_reply

router = APIRouter(prefix="/v1/conversations", dependencies=[Depends(require_internal_key)])


@router.post("/{conversation_id}/messages", response_model=SendReplyResponse)
async def send_operator_message(
    conversation_id: UUID,
    content: Optional[str] = Form(None),
    file: Optional[UploadFile] = File(None),
    db: Session = Depends(get_db),
    container: Container = Depends(get_container),
):
    conversation = get_conversation(db, conversation_id)
    if not conversation:
        raise HTTPException(status_code=404, detail="Conversation not found")

    attachment = None
    if file is not None:
        # one byte past the cap is enough to reject without buffering the rest
        data = await file.read(container.settings.media_max_bytes + 1)
        attachment = OutboundAttachment(
            data=data,
            mime_type=file.content_type or "application/octet-stream",
            file_name=file.filename or "file",
        )

    try:
        outcome = await send_reply(
            db,
            conversation,
            role="agent",
            text=content,
            attachment=attachment,
            raw={"source": "operator"},
            dispatcher=container.dispatcher,
            pipeline=container.media,
            notifier=container.notifier,
        )
    except MediaTooLargeError as e:
        raise HTTPException(status_code=413, detail=str(e))
    except EmptyReplyError:
        raise HTTPException(status_code=400, detail="content or file is required")

    return SendReplyResponse(
        message=MessageOut.model_validate(outcome.message),
        delivery=delivery_out(outcome.delivery),
    )


@router.patch("/{conversation_id}/status", response_model=StatusUpdateResponse)
async def update_status(
    conversation_id: UUID,
    request: StatusUpdateRequest,
    db: Session = Depends(get_db),
    container: Container = Depends(get_container),
):
    change = await apply_status_change(
        db, container.notifier, conversation_id, request.status, request.reason or "operator"
    )
    return StatusUpdateResponse(
        conversation_id=change.conversation_id,
        old_status=change.old_status,
        new_status=change.new_status,
        changed=change.changed,
    )


@router.post("/{conversation_id}/read", response_model=ReadResponse)
def mark_read(conversation_id: UUID, db: Session = Depends(get_db)):
    if not mark_conversation_read(db, conversation_id):
        raise HTTPException(status_code=404, detail="Conversation not found")
    db.commit()
    return ReadResponse(conversation_id=conversation_id)
