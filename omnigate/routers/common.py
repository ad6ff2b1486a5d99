from typing import Optional
from uuid import UUID

from fastapi import HTTPException
from sqlalchemy.orm import Session

from omnigate.schemas.conversation import DeliveryOut
from omnigate.services.conversation_service import get_conversation
from omnigate.services.handoff_service import StatusChange, set_conversation_status
from omnigate.services.notification_service import Notifier


def delivery_out(result) -> Optional[DeliveryOut]:
    if result is None:
        return None
    return DeliveryOut(
        success=result.success,
        provider_message_id=result.provider_message_id,
        error=result.error,
        error_code=result.error_code,
        attempts=result.attempts,
    )


async def apply_status_change(
    db: Session, notifier: Notifier, conversation_id: UUID, status: str, reason: Optional[str]
) -> StatusChange:
    conversation = get_conversation(db, conversation_id)
    workspace_id = conversation.bot.workspace_id if conversation else None

    result = set_conversation_status(db, conversation_id, status, reason=reason)
    if not result.ok:
        code = 404 if result.error_code == "not_found" else 400
        raise HTTPException(status_code=code, detail=result.error)
    db.commit()

    change = result.value
    if change.changed:
        await notifier.status_change(workspace_id, conversation_id, change.new_status, reason)
    return change
