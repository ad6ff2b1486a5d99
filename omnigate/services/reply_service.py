"""Outbound replies from operators and the automation engine."""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from omnigate.logging_config import get_logger
from omnigate.models import Conversation, Message
from omnigate.schemas.conversation import serialize_message
from omnigate.services.channels import OutboundAttachment, SendResult
from omnigate.services.conversation_service import append_message
from omnigate.services.delivery_service import record_send_result
from omnigate.services.dispatch_service import OutboundDispatcher
from omnigate.services.handoff_service import record_agent_reply
from omnigate.services.media_content import build_media_content, media_type_for_mime
from omnigate.services.media_service import MediaPipeline, check_attachment_size
from omnigate.services.notification_service import Notifier

logger = get_logger("reply_service")


class EmptyReplyError(Exception):
    pass


@dataclass
class ReplyOutcome:
    message: Message
    delivery: Optional[SendResult] = None


async def send_reply(
    db: Session,
    conversation: Conversation,
    *,
    role: str,
    text: Optional[str],
    attachment: Optional[OutboundAttachment] = None,
    raw: Optional[dict] = None,
    dispatcher: OutboundDispatcher,
    pipeline: MediaPipeline,
    notifier: Notifier,
) -> ReplyOutcome:
    """Store the reply, then deliver it. The conversation row is not locked during delivery."""
    text = (text or "").strip() or None
    if attachment is None and not text:
        raise EmptyReplyError("Reply has neither text nor attachment")

    content = text
    if attachment is not None:
        check_attachment_size(attachment.size, pipeline.max_bytes)
        stored = await pipeline.store_outbound(attachment, caption=text)
        content = build_media_content(media_type_for_mime(stored.mime_type), stored.storage_key, text)

    conversation_id = conversation.id
    workspace_id = conversation.bot.workspace_id
    channel_type = conversation.channel_type

    message = append_message(db, conversation_id=conversation_id, role=role, content=content, raw=raw)
    if role == "agent":
        record_agent_reply(db, conversation_id)
    db.commit()
    await notifier.new_message(workspace_id, conversation_id, serialize_message(message))

    if channel_type not in dispatcher.registry:
        # web widget conversations are delivered by the notification sink only
        return ReplyOutcome(message=message)

    result = await dispatcher.send(db, conversation_id, text=text, attachment=attachment)
    status = record_send_result(db, message.id, result)
    db.commit()
    db.refresh(message)

    if status:
        await notifier.message_status(workspace_id, conversation_id, message.id, status)
    if not result.success:
        logger.warning(
            "Reply stored but not delivered",
            extra={"context": {"conversation_id": str(conversation_id), "error": result.error}},
        )
    return ReplyOutcome(message=message, delivery=result)
