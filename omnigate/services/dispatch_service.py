"""Outbound dispatcher: sends replies through the conversation's channel adapter."""

import asyncio
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from omnigate.config import Settings
from omnigate.logging_config import bind_logger, get_logger
from omnigate.models import Channel, Conversation
from omnigate.services.channels import ChannelRegistry, OutboundAttachment, SendResult, UnsupportedChannelError
from omnigate.services.conversation_service import get_conversation

logger = get_logger("dispatch_service")


def resolve_channel(db: Session, conversation: Conversation) -> Optional[Channel]:
    return (
        db.query(Channel)
        .filter(
            Channel.bot_id == conversation.bot_id,
            Channel.channel_type == conversation.channel_type,
            Channel.is_enabled.is_(True),
        )
        .order_by(Channel.created_at)
        .first()
    )


class OutboundDispatcher:
    def __init__(
        self,
        registry: ChannelRegistry,
        *,
        timeout_seconds: float = 15.0,
        max_attempts: int = 3,
        retry_delay_seconds: float = 1.0,
        max_attachment_bytes: int = 20 * 1024 * 1024,
    ):
        self.registry = registry
        self.timeout_seconds = timeout_seconds
        self.max_attempts = max(1, max_attempts)
        self.retry_delay_seconds = retry_delay_seconds
        self.max_attachment_bytes = max_attachment_bytes

    @classmethod
    def from_settings(cls, settings: Settings, registry: ChannelRegistry) -> "OutboundDispatcher":
        return cls(
            registry,
            timeout_seconds=settings.outbound_timeout_seconds,
            max_attempts=settings.outbound_max_attempts,
            retry_delay_seconds=settings.outbound_retry_delay_seconds,
            max_attachment_bytes=settings.media_max_bytes,
        )

    async def _attempt(self, send) -> SendResult:
        try:
            return await asyncio.wait_for(send(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            return SendResult.failed(f"Request timeout after {self.timeout_seconds}s", "timeout", retryable=True)

    async def send(
        self,
        db: Session,
        conversation_id: UUID,
        text: Optional[str] = None,
        attachment: Optional[OutboundAttachment] = None,
    ) -> SendResult:
        log = bind_logger("dispatch_service", conversation_id=conversation_id)

        if attachment is not None and attachment.size > self.max_attachment_bytes:
            log.warning(f"Attachment of {attachment.size} bytes rejected")
            return SendResult.failed(
                f"Attachment exceeds {self.max_attachment_bytes} bytes", "attachment_too_large", retryable=False
            )
        if attachment is None and not text:
            return SendResult.failed("Nothing to send", "empty_message")

        conversation = get_conversation(db, conversation_id)
        if not conversation:
            return SendResult.failed("Conversation not found", "conversation_not_found")
        channel = resolve_channel(db, conversation)
        if not channel:
            log.warning(f"No enabled {conversation.channel_type} channel for bot {conversation.bot_id}")
            return SendResult.failed("Channel not found or disabled", "channel_not_found")
        try:
            adapter = self.registry.get(channel.channel_type)
        except UnsupportedChannelError as e:
            return SendResult.failed(str(e), "unsupported_channel")

        target = conversation.external_thread_id
        if attachment is not None:
            # media is a single attempt, the adapter handles one- or two-step upload
            result = await self._attempt(lambda: adapter.send_media(channel, target, attachment, text))
        else:
            result = await self._send_text_with_retry(adapter, channel, target, text, log)

        if result.success:
            log.info(f"Delivered via {channel.channel_type}", context={"provider_message_id": result.provider_message_id})
        else:
            log.error(
                f"Send via {channel.channel_type} failed",
                context={"error": result.error, "error_code": result.error_code, "attempts": result.attempts},
            )
        return result

    async def _send_text_with_retry(self, adapter, channel: Channel, target: str, text: str, log) -> SendResult:
        result = None
        for attempt in range(1, self.max_attempts + 1):
            result = await self._attempt(lambda: adapter.send_text(channel, target, text))
            result.attempts = attempt
            if result.success or not result.retryable:
                return result
            if attempt < self.max_attempts:
                delay = self.retry_delay_seconds * attempt
                log.warning(f"Send attempt {attempt} failed ({result.error}), retrying in {delay}s")
                await asyncio.sleep(delay)
        return result
