import hashlib
import hmac
from typing import Any, Mapping, Optional

import httpx
from pydantic import ValidationError

from omnigate.logging_config import get_logger
from omnigate.models import Channel
from omnigate.schemas.whatsapp import WhatsAppContactProfile, WhatsAppInboundMessage, WhatsAppWebhook
from omnigate.services.channels.base import (
    ChannelAdapter,
    ChannelError,
    InboundEvent,
    MediaDescriptor,
    MediaDownloadHandle,
    OutboundAttachment,
    SendResult,
    StatusUpdate,
    failure_from_exception,
    failure_from_response,
)
from omnigate.services.delivery_service import STATUS_RANK
from omnigate.services.media_content import media_type_for_mime
from omnigate.services.result import Result

logger = get_logger("channels.whatsapp")

GRAPH_API_URL = "https://graph.facebook.com/v18.0"
SIGNATURE_HEADER = "x-hub-signature-256"
BUSINESS_OBJECT = "whatsapp_business_account"
MEDIA_KINDS = ("image", "video", "audio", "document", "sticker")


def compute_signature(secret: str, body: bytes) -> str:
    return "sha256=" + hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def _parse_webhook(payload: dict) -> Optional[WhatsAppWebhook]:
    try:
        webhook = WhatsAppWebhook(**payload)
    except ValidationError as e:
        logger.warning(f"Unparseable WhatsApp payload: {e}")
        return None
    if webhook.object != BUSINESS_OBJECT:
        return None
    return webhook


def _error_message(data: dict, fallback: str) -> str:
    error = data.get("error") if isinstance(data, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return error["message"]
    return fallback


class WhatsAppAdapter(ChannelAdapter):
    """WhatsApp Cloud API: HMAC-signed webhooks, two-step media upload."""

    channel_type = "whatsapp"

    def __init__(self, http_client: httpx.AsyncClient, graph_url: str = GRAPH_API_URL):
        super().__init__(http_client)
        self.graph_url = graph_url.rstrip("/")

    def _auth_headers(self, channel: Channel) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.credentials(channel).get('access_token')}"}

    def verify(self, channel: Channel, headers: Mapping[str, str], body: bytes) -> Result[Channel]:
        secret = self.credentials(channel).get("app_secret")
        if not secret:
            return Result.failure("App secret not configured", "rejected_no_secret")

        signature = headers.get(SIGNATURE_HEADER)
        if not signature or not signature.startswith("sha256="):
            return Result.failure("Missing signature", "invalid_signature")
        expected = compute_signature(secret, body).encode("ascii")
        if not hmac.compare_digest(expected, signature.encode("utf-8", "surrogateescape")):
            return Result.failure("Signature mismatch", "invalid_signature")
        return Result.success(channel)

    def verify_subscription(
        self, channel: Channel, mode: Optional[str], token: Optional[str], challenge: Optional[str]
    ) -> Optional[str]:
        """Meta's GET handshake. Returns the challenge to echo, or None."""
        expected = self.credentials(channel).get("verify_token")
        if mode == "subscribe" and expected and token == expected:
            return challenge
        return None

    def normalize(self, payload: dict) -> list[InboundEvent]:
        webhook = _parse_webhook(payload)
        if webhook is None:
            return []

        events = []
        for entry in webhook.entry:
            for change in entry.changes:
                if change.field != "messages":
                    continue
                value = change.value
                profiles = {c.wa_id: c for c in value.contacts}
                for raw_message in value.messages:
                    try:
                        message = WhatsAppInboundMessage(**raw_message)
                    except ValidationError as e:
                        logger.warning(f"Skipping malformed WhatsApp message: {e}")
                        continue
                    event = self._normalize_message(
                        message, raw_message, profiles.get(message.from_number), value.metadata
                    )
                    if event:
                        events.append(event)
        return events

    def _normalize_message(
        self,
        message: WhatsAppInboundMessage,
        raw_message: dict[str, Any],
        profile: Optional[WhatsAppContactProfile],
        metadata: dict[str, Any],
    ) -> Optional[InboundEvent]:
        kind = message.type
        text = None
        media = None

        if kind == "text":
            text = message.text.body if message.text else None
        elif kind in MEDIA_KINDS:
            item = getattr(message, kind)
            if item:
                media_type = "voice" if kind == "audio" and item.voice else kind
                mime_type = "audio/ogg" if media_type == "voice" else item.mime_type
                media = MediaDescriptor(media_type, item.id, mime_type, item.filename, item.caption)
                text = item.caption
        elif kind == "location" and message.location:
            text = f"[LOCATION] {message.location.latitude},{message.location.longitude}"
        elif kind == "contacts" and message.contacts:
            name = (message.contacts[0].get("name") or {}).get("formatted_name") or "Unknown"
            text = f"[CONTACT] {name}"
        elif kind == "reaction":
            return None
        else:
            logger.info(f"Unsupported WhatsApp message type: {kind}")
            return None

        if not text and not media:
            return None

        sender_profile = profile.model_dump() if profile else {}
        return InboundEvent(
            external_sender_id=message.from_number,
            external_thread_id=message.from_number,
            message_type=media.media_type if media else kind,
            text=text,
            media=media,
            sender_profile=sender_profile,
            provider_message_id=message.id,
            raw={"message": raw_message, "contact": sender_profile or None, "metadata": metadata},
        )

    def parse_status_callback(self, payload: dict) -> list[StatusUpdate]:
        webhook = _parse_webhook(payload)
        if webhook is None:
            return []

        updates = []
        for entry in webhook.entry:
            for change in entry.changes:
                if change.field != "messages":
                    continue
                for status in change.value.statuses:
                    if status.status not in STATUS_RANK:
                        continue
                    updates.append(
                        StatusUpdate(
                            provider_message_id=status.id,
                            status=status.status,
                            recipient_id=status.recipient_id,
                            errors=status.errors,
                        )
                    )
        return updates

    async def _post_message(self, channel: Channel, body: dict) -> SendResult:
        phone_number_id = self.credentials(channel).get("phone_number_id")
        try:
            response = await self.http.post(
                f"{self.graph_url}/{phone_number_id}/messages",
                json={"messaging_product": "whatsapp", "recipient_type": "individual", **body},
                headers=self._auth_headers(channel),
            )
        except httpx.HTTPError as e:
            return failure_from_exception(e)

        try:
            data = response.json()
        except ValueError:
            data = {}
        messages = data.get("messages") or []
        if response.is_success and messages:
            return SendResult.sent(messages[0].get("id"))
        return failure_from_response(response, _error_message(data, f"WhatsApp HTTP {response.status_code}"))

    def _missing_credentials(self, channel: Channel) -> Optional[SendResult]:
        config = self.credentials(channel)
        if not config.get("phone_number_id") or not config.get("access_token"):
            return SendResult.failed("WhatsApp credentials not configured", "not_configured")
        return None

    async def send_text(self, channel: Channel, target: str, text: str) -> SendResult:
        missing = self._missing_credentials(channel)
        if missing:
            return missing
        return await self._post_message(
            channel, {"to": target, "type": "text", "text": {"preview_url": False, "body": text}}
        )

    async def upload_media(self, channel: Channel, attachment: OutboundAttachment) -> str:
        """First step of a media send: returns the provider media id. Raises ChannelError."""
        phone_number_id = self.credentials(channel).get("phone_number_id")
        try:
            response = await self.http.post(
                f"{self.graph_url}/{phone_number_id}/media",
                data={"messaging_product": "whatsapp", "type": attachment.mime_type},
                files={"file": (attachment.file_name, attachment.data, attachment.mime_type)},
                headers=self._auth_headers(channel),
            )
        except httpx.TimeoutException as e:
            raise ChannelError("Media upload timeout", retryable=True, code="timeout") from e
        except httpx.HTTPError as e:
            raise ChannelError(f"Media upload failed: {e}", retryable=True) from e

        try:
            data = response.json()
        except ValueError:
            data = {}
        if not response.is_success or not data.get("id"):
            retryable = response.status_code >= 500 or response.status_code == 429
            raise ChannelError(_error_message(data, f"Media upload HTTP {response.status_code}"), retryable=retryable)
        return data["id"]

    async def send_media(
        self,
        channel: Channel,
        target: str,
        attachment: OutboundAttachment,
        caption: Optional[str] = None,
    ) -> SendResult:
        missing = self._missing_credentials(channel)
        if missing:
            return missing

        try:
            media_id = await self.upload_media(channel, attachment)
        except ChannelError as e:
            code = e.code or ("server_error" if e.retryable else "provider_rejected")
            return SendResult.failed(e.message, code, retryable=e.retryable)

        kind = media_type_for_mime(attachment.mime_type)
        media_object = {"id": media_id}
        if caption and kind != "audio":
            media_object["caption"] = caption
        if kind == "document":
            media_object["filename"] = attachment.file_name
        return await self._post_message(channel, {"to": target, "type": kind, kind: media_object})

    async def get_media_download_handle(self, channel: Channel, file_reference: str) -> MediaDownloadHandle:
        if not self.has_media_credentials(channel):
            raise ChannelError("WhatsApp access token not configured")

        headers = self._auth_headers(channel)
        try:
            response = await self.http.get(f"{self.graph_url}/{file_reference}", headers=headers)
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise ChannelError(f"Media lookup failed: {e}", retryable=True) from e

        if not response.is_success or not data.get("url"):
            raise ChannelError(_error_message(data, f"Media lookup HTTP {response.status_code}"))
        return MediaDownloadHandle(
            url=data["url"],
            headers=headers,
            mime_type=data.get("mime_type"),
            file_size=data.get("file_size"),
        )

    def has_media_credentials(self, channel: Channel) -> bool:
        return bool(self.credentials(channel).get("access_token"))
