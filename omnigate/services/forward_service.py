"""Forwarding inbound events to the automation engine through a durable outbox.

The outbox row is written in the same transaction as the inbound message, so a
forward is never lost on process exit; delivery happens after the webhook
response and retries with backoff until attempts run out.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Any, Optional

import httpx
from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from omnigate.config import Settings
from omnigate.database import utcnow
from omnigate.logging_config import get_logger
from omnigate.models import Channel, ForwardOutbox
from omnigate.services.alert_service import alert_error
from omnigate.services.channels import InboundEvent
from omnigate.services.media_service import StoredMedia

logger = get_logger("forward_service")

PENDING = "PENDING"
PROCESSING = "PROCESSING"
SENT = "SENT"
FAILED = "FAILED"


def build_forward_payload(
    *,
    channel: Channel,
    conversation_id,
    event: InboundEvent,
    text: str,
    media: Optional[StoredMedia],
) -> dict[str, Any]:
    payload = {
        "bot_id": str(channel.bot_id),
        "channel_id": str(channel.id),
        "conversation_id": str(conversation_id),
        "channel_type": channel.channel_type,
        "external_thread_id": event.external_thread_id,
        "text": text,
        "message_type": event.message_type,
        "media": None,
        "user": event.sender_profile,
        "raw": event.raw,
    }
    if media:
        payload["media"] = {
            "storage_key": media.storage_key,
            "mime_type": media.mime_type,
            "byte_size": media.byte_size,
            "original_name": media.original_name,
            "caption": media.caption,
        }
    if channel.channel_type == "whatsapp":
        payload["wa_message_id"] = event.provider_message_id
    return payload


class AutomationForwarder:
    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        default_base_url: Optional[str],
        path: str = "/chat-message",
        timeout_seconds: float = 10.0,
        max_attempts: int = 5,
        retry_backoff_seconds: float = 2.0,
        stale_processing_seconds: float = 120.0,
    ):
        self.http = http_client
        self.default_base_url = default_base_url
        self.path = path
        self.timeout_seconds = timeout_seconds
        self.max_attempts = max_attempts
        self.retry_backoff_seconds = retry_backoff_seconds
        self.stale_processing_seconds = max(stale_processing_seconds, 0)

    @classmethod
    def from_settings(cls, settings: Settings, http_client: httpx.AsyncClient) -> "AutomationForwarder":
        return cls(
            http_client,
            default_base_url=settings.automation_base_url,
            path=settings.automation_path,
            timeout_seconds=settings.automation_timeout_seconds,
            max_attempts=settings.forward_max_attempts,
            retry_backoff_seconds=settings.forward_retry_backoff_seconds,
            stale_processing_seconds=settings.forward_stale_processing_seconds,
        )

    def target_url(self, channel: Channel) -> Optional[str]:
        config = (channel.bot.automation_config if channel.bot else None) or {}
        base_url = config.get("webhook_base_url") or self.default_base_url
        if not base_url:
            return None
        return f"{base_url.rstrip('/')}{self.path}"

    def enqueue(self, db: Session, *, channel: Channel, conversation_id, payload: dict[str, Any]) -> ForwardOutbox:
        now = utcnow()
        target_url = self.target_url(channel)
        row = ForwardOutbox(
            conversation_id=conversation_id,
            channel_id=channel.id,
            channel_type=channel.channel_type,
            target_url=target_url,
            payload_json=payload,
            status=PENDING if target_url else FAILED,
            attempts=0,
            last_error=None if target_url else "automation base url not configured",
            created_at=now,
            updated_at=now,
        )
        db.add(row)
        db.flush()
        if not target_url:
            logger.error(
                "Forward not deliverable: automation base url not configured",
                extra={
                    "context": {
                        "outbox_id": str(row.id),
                        "conversation_id": str(conversation_id),
                        "channel_type": channel.channel_type,
                    }
                },
            )
        return row

    def claim_pending(self, db: Session, *, limit: int = 10, now: Optional[datetime] = None) -> list[ForwardOutbox]:
        """Lock a batch of due rows (SKIP LOCKED on postgres) and mark them PROCESSING."""
        now = now or utcnow()
        ids = (
            db.execute(
                select(ForwardOutbox.id)
                .where(
                    ForwardOutbox.status == PENDING,
                    or_(ForwardOutbox.next_attempt_at.is_(None), ForwardOutbox.next_attempt_at <= now),
                )
                .order_by(ForwardOutbox.created_at)
                .limit(limit)
                .with_for_update(skip_locked=True)
            )
            .scalars()
            .all()
        )
        if not ids:
            db.commit()
            return []

        claimed_ids = (
            db.execute(
                update(ForwardOutbox)
                .where(ForwardOutbox.id.in_(ids), ForwardOutbox.status == PENDING)
                .values(status=PROCESSING, attempts=ForwardOutbox.attempts + 1, updated_at=now)
                .returning(ForwardOutbox.id)
                .execution_options(synchronize_session=False)
            )
            .scalars()
            .all()
        )
        db.commit()
        return (
            db.query(ForwardOutbox)
            .filter(ForwardOutbox.id.in_(claimed_ids))
            .order_by(ForwardOutbox.created_at)
            .populate_existing()
            .all()
        )

    async def release_stale_processing(self, db: Session, *, now: Optional[datetime] = None) -> dict[str, int]:
        """Requeue PROCESSING rows left behind by a crashed or cancelled pass.

        Rows that already used every attempt are failed and alerted instead.
        """
        now = now or utcnow()
        cutoff = now - timedelta(seconds=self.stale_processing_seconds)
        stale = (ForwardOutbox.status == PROCESSING, ForwardOutbox.updated_at < cutoff)

        failed = db.execute(
            update(ForwardOutbox)
            .where(*stale, ForwardOutbox.attempts >= self.max_attempts)
            .values(status=FAILED, last_error="processing abandoned", updated_at=now)
            .returning(
                ForwardOutbox.id, ForwardOutbox.conversation_id, ForwardOutbox.channel_type, ForwardOutbox.attempts
            )
            .execution_options(synchronize_session=False)
        ).all()
        released = (
            db.execute(
                update(ForwardOutbox)
                .where(*stale)
                .values(status=PENDING, next_attempt_at=now, updated_at=now)
                .returning(ForwardOutbox.id)
                .execution_options(synchronize_session=False)
            )
            .scalars()
            .all()
        )
        db.commit()

        if released:
            logger.warning(
                "Released stale forwards",
                extra={"context": {"outbox_ids": [str(outbox_id) for outbox_id in released]}},
            )
        for outbox_id, conversation_id, channel_type, attempts in failed:
            context = {
                "outbox_id": str(outbox_id),
                "conversation_id": str(conversation_id),
                "channel_type": channel_type,
                "attempts": attempts,
                "error": "processing abandoned",
            }
            logger.error("Automation forward failed permanently", extra={"context": context})
            await asyncio.to_thread(alert_error, "Automation forward failed", context)
        return {"released": len(released), "failed": len(failed)}

    def _mark(self, db: Session, row: ForwardOutbox, status: str, *, last_error=None, next_attempt_at=None) -> None:
        db.execute(
            update(ForwardOutbox)
            .where(ForwardOutbox.id == row.id)
            .values(status=status, last_error=last_error, next_attempt_at=next_attempt_at, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        db.commit()

    async def deliver(self, db: Session, row: ForwardOutbox) -> str:
        error = None
        try:
            response = await self.http.post(row.target_url, json=row.payload_json, timeout=self.timeout_seconds)
            if response.is_success:
                self._mark(db, row, SENT)
                return SENT
            error = f"HTTP {response.status_code}: {response.text[:200]}"
        except httpx.HTTPError as e:
            error = str(e) or e.__class__.__name__

        context = {
            "outbox_id": str(row.id),
            "conversation_id": str(row.conversation_id),
            "channel_type": row.channel_type,
            "attempts": row.attempts,
            "error": error,
        }
        if row.attempts >= self.max_attempts:
            self._mark(db, row, FAILED, last_error=error)
            logger.error("Automation forward failed permanently", extra={"context": context})
            await asyncio.to_thread(alert_error, "Automation forward failed", context)
            return FAILED

        next_attempt_at = utcnow() + timedelta(seconds=self.retry_backoff_seconds * row.attempts)
        self._mark(db, row, PENDING, last_error=error, next_attempt_at=next_attempt_at)
        logger.warning("Automation forward failed, will retry", extra={"context": context})
        return PENDING

    async def deliver_pending(self, db: Session, *, limit: int = 10) -> dict[str, int]:
        await self.release_stale_processing(db)
        rows = self.claim_pending(db, limit=limit)
        results = {SENT: 0, PENDING: 0, FAILED: 0}
        for row in rows:
            outcome = await self.deliver(db, row)
            results[outcome] += 1
        return results


async def run_forward_pass(forwarder: AutomationForwarder, session_factory, *, limit: int = 10) -> dict[str, int]:
    """One claim-and-deliver pass on a fresh session (worker loop and post-webhook task)."""
    db = session_factory()
    try:
        results = await forwarder.deliver_pending(db, limit=limit)
    finally:
        db.close()
    if any(results.values()):
        logger.info("Forward pass processed", extra={"context": results})
    return results
