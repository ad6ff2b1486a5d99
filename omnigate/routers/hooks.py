import json
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session

from omnigate.database import get_db
from omnigate.dependencies import Container, get_container
from omnigate.logging_config import get_logger
from omnigate.models import Channel
from omnigate.schemas.webhook import WebhookAck
from omnigate.services.channel_service import find_channel, mark_channel_status
from omnigate.services.channels import ChannelAdapter
from omnigate.services.forward_service import run_forward_pass
from omnigate.services.ingest_service import ingest_event, ingest_status_updates

logger = get_logger("hooks")

router = APIRouter(prefix="/v1/hooks")


def parse_payload(body: bytes) -> Optional[dict]:
    """Tolerant JSON decoding; providers occasionally send non-utf8 bytes."""
    for encoding in ("utf-8", "latin-1"):
        try:
            payload = json.loads(body.decode(encoding, errors="replace"))
        except ValueError:
            continue
        return payload if isinstance(payload, dict) else None
    return None


def _lower_headers(request: Request) -> dict[str, str]:
    return {key.lower(): value for key, value in request.headers.items()}


async def _enforce_rate_limit(container: Container, public_id: str) -> None:
    allowed = await container.cache.check_rate_limit(
        f"webhook:{public_id}", container.settings.webhook_rate_limit_per_minute
    )
    if not allowed:
        raise HTTPException(status_code=429, detail="Too many requests")


async def _process_payload(
    db: Session,
    channel: Channel,
    adapter: ChannelAdapter,
    payload: dict,
    container: Container,
    background_tasks: BackgroundTasks,
) -> WebhookAck:
    processed = 0
    forwarded = False
    for event in adapter.normalize(payload):
        outcome = await ingest_event(
            db,
            channel,
            adapter,
            event,
            pipeline=container.media,
            forwarder=container.forwarder,
            notifier=container.notifier,
        )
        if outcome:
            processed += 1
            forwarded = forwarded or outcome.forwarded

    statuses = await ingest_status_updates(
        db, channel, adapter.parse_status_callback(payload), notifier=container.notifier
    )

    if forwarded:
        background_tasks.add_task(
            run_forward_pass,
            container.forwarder,
            container.session_factory,
            limit=container.settings.forward_batch_limit,
        )
    return WebhookAck(status="ok", processed=processed, statuses=statuses)


@router.post("/telegram/{public_id}", response_model=WebhookAck)
async def telegram_webhook(
    public_id: str,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    container: Container = Depends(get_container),
):
    await _enforce_rate_limit(container, public_id)

    channel = find_channel(db, "telegram", public_id)
    if not channel:
        raise HTTPException(status_code=404, detail="Channel not found")

    adapter = container.registry.get("telegram")
    body = await request.body()
    verification = adapter.verify(channel, _lower_headers(request), body)
    if not verification.ok:
        logger.warning(
            "Telegram webhook rejected",
            extra={"context": {"public_id": public_id, "reason": verification.error_code}},
        )
        raise HTTPException(status_code=401, detail=verification.error)

    payload = parse_payload(body)
    if payload is None:
        return WebhookAck(status="ignored", detail="invalid payload")
    return await _process_payload(db, channel, adapter, payload, container, background_tasks)


@router.get("/whatsapp/{public_id}")
def whatsapp_subscribe(
    public_id: str,
    hub_mode: Optional[str] = Query(None, alias="hub.mode"),
    hub_verify_token: Optional[str] = Query(None, alias="hub.verify_token"),
    hub_challenge: Optional[str] = Query(None, alias="hub.challenge"),
    db: Session = Depends(get_db),
    container: Container = Depends(get_container),
):
    channel = find_channel(db, "whatsapp", public_id)
    if not channel:
        raise HTTPException(status_code=404, detail="Channel not found")

    adapter = container.registry.get("whatsapp")
    challenge = adapter.verify_subscription(channel, hub_mode, hub_verify_token, hub_challenge)
    if challenge is None:
        logger.warning(f"WhatsApp subscription verification failed for {public_id}")
        raise HTTPException(status_code=403, detail="Verification failed")

    mark_channel_status(db, channel.id, "connected", "Webhook verified")
    db.commit()
    return PlainTextResponse(challenge)


@router.post("/whatsapp/{public_id}", response_model=WebhookAck)
async def whatsapp_webhook(
    public_id: str,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    container: Container = Depends(get_container),
):
    # Meta disables webhooks that keep failing, so rejections are still acknowledged with 200
    await _enforce_rate_limit(container, public_id)

    channel = find_channel(db, "whatsapp", public_id)
    if not channel:
        return WebhookAck(status="ignored", detail="unknown channel")

    adapter = container.registry.get("whatsapp")
    body = await request.body()
    verification = adapter.verify(channel, _lower_headers(request), body)
    if not verification.ok:
        logger.warning(
            "WhatsApp webhook rejected",
            extra={"context": {"public_id": public_id, "reason": verification.error_code}},
        )
        return WebhookAck(status=verification.error_code)

    payload = parse_payload(body)
    if payload is None:
        return WebhookAck(status="ignored", detail="invalid payload")
    return await _process_payload(db, channel, adapter, payload, container, background_tasks)
