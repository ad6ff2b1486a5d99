"""Inbound pipeline for one normalized event.

media -> contact -> conversation upsert -> message append -> gatekeeper ->
forward enqueue, committed as one transaction; notifications go out after commit.
"""

from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from omnigate.logging_config import bind_logger
from omnigate.models import Channel
from omnigate.schemas.conversation import serialize_conversation, serialize_message
from omnigate.services.channel_service import touch_channel_activity
from omnigate.services.channels import ChannelAdapter, InboundEvent
from omnigate.services.contact_service import find_or_create_contact, link_conversation_to_contact
from omnigate.services.conversation_service import append_message, get_conversation, upsert_conversation
from omnigate.services.delivery_service import apply_status_updates
from omnigate.services.forward_service import AutomationForwarder, build_forward_payload
from omnigate.services.handoff_service import GateDecision, decide_forwarding
from omnigate.services.media_content import build_media_content, placeholder_text
from omnigate.services.media_service import MediaPipeline
from omnigate.services.notification_service import Notifier


@dataclass
class IngestOutcome:
    conversation_id: UUID
    message_id: UUID
    conversation_created: bool
    decision: GateDecision

    @property
    def forwarded(self) -> bool:
        return self.decision.forward


async def ingest_event(
    db: Session,
    channel: Channel,
    adapter: ChannelAdapter,
    event: InboundEvent,
    *,
    pipeline: MediaPipeline,
    forwarder: AutomationForwarder,
    notifier: Notifier,
) -> Optional[IngestOutcome]:
    log = bind_logger("ingest_service", channel_id=channel.id, channel_type=channel.channel_type)

    stored = None
    content = event.text
    if event.media:
        media_type = event.media.media_type
        if adapter.has_media_credentials(channel):
            stored = await pipeline.process_inbound(adapter, channel, event.media)
        if stored:
            content = build_media_content(media_type, stored.storage_key, stored.caption)
        else:
            content = placeholder_text(media_type, failed=adapter.has_media_credentials(channel))
            if event.media.caption:
                content = f"{content}\n{event.media.caption}"

    if not content:
        log.debug("Skipping event without content")
        return None

    workspace_id = channel.bot.workspace_id
    contact = find_or_create_contact(
        db,
        workspace_id=workspace_id,
        channel_type=channel.channel_type,
        external_id=event.external_sender_id,
        profile=event.sender_profile,
    )
    upsert = upsert_conversation(
        db,
        bot_id=channel.bot_id,
        channel_type=channel.channel_type,
        external_thread_id=event.external_thread_id,
        contact_id=contact.contact_id,
    )
    if upsert.was_created:
        link_conversation_to_contact(db, contact.contact_id)

    message = append_message(
        db,
        conversation_id=upsert.conversation_id,
        role="user",
        content=content,
        raw=event.raw,
        provider_message_id=event.provider_message_id,
    )
    touch_channel_activity(db, channel.id)

    decision = decide_forwarding(db, upsert.conversation_id)
    if decision.forward:
        payload = build_forward_payload(
            channel=channel,
            conversation_id=upsert.conversation_id,
            event=event,
            text=event.text or (placeholder_text(event.media.media_type) if stored else content),
            media=stored,
        )
        forwarder.enqueue(db, channel=channel, conversation_id=upsert.conversation_id, payload=payload)

    db.commit()

    log.info(
        "Inbound message stored",
        context={
            "conversation_id": str(upsert.conversation_id),
            "message_id": str(message.id),
            "new_conversation": upsert.was_created,
            "forward": decision.forward,
            "gate": decision.reason,
        },
    )

    if upsert.was_created:
        conversation = get_conversation(db, upsert.conversation_id)
        await notifier.new_conversation(workspace_id, serialize_conversation(conversation))
    await notifier.new_message(workspace_id, upsert.conversation_id, serialize_message(message))

    return IngestOutcome(
        conversation_id=upsert.conversation_id,
        message_id=message.id,
        conversation_created=upsert.was_created,
        decision=decision,
    )


async def ingest_status_updates(db: Session, channel: Channel, updates, *, notifier: Notifier) -> int:
    """Apply provider delivery receipts and announce the ones that moved forward."""
    if not updates:
        return 0
    upgrades = apply_status_updates(db, updates)
    db.commit()

    workspace_id = channel.bot.workspace_id
    for upgrade in upgrades:
        await notifier.message_status(workspace_id, upgrade.conversation_id, upgrade.message_id, upgrade.status)
    return len(upgrades)
