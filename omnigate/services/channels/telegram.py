import mimetypes
from typing import Mapping, Optional

import httpx
from pydantic import ValidationError

from omnigate.logging_config import get_logger
from omnigate.models import Channel
from omnigate.schemas.telegram import TelegramMessage, TelegramUpdate, TelegramUser
from omnigate.services.channels.base import (
    ChannelAdapter,
    ChannelError,
    InboundEvent,
    MediaDescriptor,
    MediaDownloadHandle,
    OutboundAttachment,
    SendResult,
    failure_from_exception,
    failure_from_response,
)
from omnigate.services.media_content import media_type_for_mime
from omnigate.services.result import Result

logger = get_logger("channels.telegram")

TELEGRAM_API_URL = "https://api.telegram.org"
SECRET_HEADER = "x-telegram-bot-api-secret-token"

# media family -> (Bot API method, multipart field)
SEND_METHODS = {
    "image": ("sendPhoto", "photo"),
    "video": ("sendVideo", "video"),
    "audio": ("sendAudio", "audio"),
    "document": ("sendDocument", "document"),
}


def _extract_media(message: TelegramMessage, caption: Optional[str]) -> Optional[MediaDescriptor]:
    if message.photo:
        largest = message.photo[-1]
        return MediaDescriptor("image", largest.file_id, "image/jpeg", None, caption, largest.file_size)
    if message.video:
        video = message.video
        return MediaDescriptor("video", video.file_id, video.mime_type or "video/mp4", video.file_name, caption, video.file_size)
    if message.video_note:
        note = message.video_note
        return MediaDescriptor("video", note.file_id, "video/mp4", None, caption, note.file_size)
    if message.audio:
        audio = message.audio
        return MediaDescriptor("audio", audio.file_id, audio.mime_type or "audio/mpeg", audio.file_name, caption, audio.file_size)
    if message.voice:
        voice = message.voice
        return MediaDescriptor("voice", voice.file_id, "audio/ogg", None, caption, voice.file_size)
    if message.document:
        doc = message.document
        return MediaDescriptor(
            "document", doc.file_id, doc.mime_type or "application/octet-stream", doc.file_name, caption, doc.file_size
        )
    if message.sticker:
        sticker = message.sticker
        return MediaDescriptor("sticker", sticker.file_id, "image/webp", None, None, sticker.file_size)
    return None


def _sender_profile(user: Optional[TelegramUser]) -> dict:
    if not user:
        return {}
    return user.model_dump(exclude_none=True, exclude={"is_bot"})


class TelegramAdapter(ChannelAdapter):
    """Telegram Bot API: secret-token header, single-step multipart media."""

    channel_type = "telegram"

    def __init__(self, http_client: httpx.AsyncClient, api_url: str = TELEGRAM_API_URL):
        super().__init__(http_client)
        self.api_url = api_url.rstrip("/")

    def _bot_url(self, token: str, method: str) -> str:
        return f"{self.api_url}/bot{token}/{method}"

    def verify(self, channel: Channel, headers: Mapping[str, str], body: bytes) -> Result[Channel]:
        provided = headers.get(SECRET_HEADER)
        if not provided:
            return Result.failure("Missing secret token header", "missing_secret")
        if not channel.secret or provided != channel.secret:
            return Result.failure("Secret token mismatch", "secret_mismatch")
        return Result.success(channel)

    def normalize(self, payload: dict) -> list[InboundEvent]:
        try:
            update = TelegramUpdate(**payload)
        except ValidationError as e:
            logger.warning(f"Unparseable Telegram update: {e}")
            return []

        message = update.message
        sender = message.from_user if message else None
        text = None
        if message is None and update.callback_query:
            message = update.callback_query.message
            sender = update.callback_query.from_user
            text = update.callback_query.data
        if message is None:
            return []

        chat_id = str(message.chat.id)
        text = message.text or message.caption or text
        media = _extract_media(message, message.caption)
        message_type = media.media_type if media else "text"

        if message.location:
            text = f"[LOCATION] {message.location.latitude},{message.location.longitude}"
            message_type = "location"
        elif message.contact:
            name = " ".join(p for p in [message.contact.first_name, message.contact.last_name] if p)
            text = f"[CONTACT] {name}"
            message_type = "contact"

        if not text and not media:
            return []

        return [
            InboundEvent(
                external_sender_id=str(sender.id) if sender else chat_id,
                external_thread_id=chat_id,
                message_type=message_type,
                text=text,
                media=media,
                sender_profile=_sender_profile(sender),
                provider_message_id=str(message.message_id),
                raw=payload,
            )
        ]

    def _parse_send_response(self, response: httpx.Response) -> SendResult:
        try:
            data = response.json()
        except ValueError:
            data = {}
        if response.status_code == 200 and data.get("ok"):
            message_id = (data.get("result") or {}).get("message_id")
            return SendResult.sent(str(message_id) if message_id is not None else None)
        error = data.get("description") or f"Telegram HTTP {response.status_code}"
        return failure_from_response(response, error)

    async def send_text(self, channel: Channel, target: str, text: str) -> SendResult:
        token = self.credentials(channel).get("bot_token")
        if not token:
            return SendResult.failed("Telegram bot token not configured", "not_configured")
        payload = {"chat_id": target, "text": text, "parse_mode": "HTML"}
        try:
            response = await self.http.post(self._bot_url(token, "sendMessage"), json=payload)
        except httpx.HTTPError as e:
            return failure_from_exception(e)
        return self._parse_send_response(response)

    async def send_media(
        self,
        channel: Channel,
        target: str,
        attachment: OutboundAttachment,
        caption: Optional[str] = None,
    ) -> SendResult:
        token = self.credentials(channel).get("bot_token")
        if not token:
            return SendResult.failed("Telegram bot token not configured", "not_configured")

        method, field = SEND_METHODS[media_type_for_mime(attachment.mime_type)]
        data = {"chat_id": target}
        if caption:
            data["caption"] = caption
            data["parse_mode"] = "HTML"
        files = {field: (attachment.file_name, attachment.data, attachment.mime_type)}
        try:
            response = await self.http.post(self._bot_url(token, method), data=data, files=files)
        except httpx.HTTPError as e:
            return failure_from_exception(e)
        return self._parse_send_response(response)

    async def get_media_download_handle(self, channel: Channel, file_reference: str) -> MediaDownloadHandle:
        token = self.credentials(channel).get("bot_token")
        if not token:
            raise ChannelError("Telegram bot token not configured")

        try:
            response = await self.http.get(self._bot_url(token, "getFile"), params={"file_id": file_reference})
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise ChannelError(f"getFile failed: {e}", retryable=True) from e

        result = data.get("result") or {}
        file_path = result.get("file_path")
        if not data.get("ok") or not file_path:
            raise ChannelError(data.get("description") or "getFile returned no file_path")

        return MediaDownloadHandle(
            url=f"{self.api_url}/file/bot{token}/{file_path}",
            mime_type=mimetypes.guess_type(file_path)[0],
            file_name=file_path.rsplit("/", 1)[-1],
            file_size=result.get("file_size"),
        )

    def has_media_credentials(self, channel: Channel) -> bool:
        return bool(self.credentials(channel).get("bot_token"))
