"""Media pipeline: download provider attachments, normalize them, store them."""

import asyncio
import io
import mimetypes
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import httpx
from PIL import Image

from omnigate.config import Settings
from omnigate.logging_config import get_logger
from omnigate.models import Channel
from omnigate.services.channels.base import ChannelAdapter, MediaDescriptor, MediaDownloadHandle, OutboundAttachment
from omnigate.services.storage_service import ObjectStorage

logger = get_logger("media_service")

UNSAFE_NAME_CHARS = re.compile(r"[^a-zA-Z0-9._-]")
MAX_NAME_LENGTH = 100
PASSTHROUGH_IMAGE_TYPES = {"image/webp"}


class MediaTooLargeError(Exception):
    def __init__(self, size: int, limit: int):
        self.size = size
        self.limit = limit
        super().__init__(f"Media of {size} bytes exceeds limit of {limit} bytes")


@dataclass
class StoredMedia:
    storage_key: str
    mime_type: str
    byte_size: int
    original_name: str
    caption: Optional[str] = None


def sanitize_filename(name: str) -> str:
    return UNSAFE_NAME_CHARS.sub("_", name)[:MAX_NAME_LENGTH]


def build_storage_key(file_name: str, now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"{now:%Y}/{now:%m}/{uuid.uuid4()}-{sanitize_filename(file_name)}"


def check_attachment_size(size: int, limit: int) -> None:
    if size > limit:
        raise MediaTooLargeError(size, limit)


def downscale_image(data: bytes, max_width: int, quality: int) -> Optional[bytes]:
    """JPEG re-encode when wider than max_width; None means keep the original."""
    with Image.open(io.BytesIO(data)) as image:
        width, height = image.size
        if width <= max_width:
            return None
        new_height = max(1, round(height * max_width / width))
        resized = image.convert("RGB").resize((max_width, new_height), Image.Resampling.LANCZOS)
        out = io.BytesIO()
        resized.save(out, format="JPEG", quality=quality, optimize=True)
        return out.getvalue()


def convert_to_png(data: bytes) -> bytes:
    with Image.open(io.BytesIO(data)) as image:
        out = io.BytesIO()
        image.save(out, format="PNG")
        return out.getvalue()


def _default_extension(mime_type: str) -> str:
    return mimetypes.guess_extension(mime_type) or ".bin"


class MediaPipeline:
    def __init__(
        self,
        storage: ObjectStorage,
        http_client: httpx.AsyncClient,
        *,
        max_bytes: int,
        download_timeout: float,
        max_image_width: int,
        image_quality: int,
        concurrency: int,
    ):
        self.storage = storage
        self.http = http_client
        self.max_bytes = max_bytes
        self.download_timeout = download_timeout
        self.max_image_width = max_image_width
        self.image_quality = image_quality
        self._semaphore = asyncio.Semaphore(concurrency)

    @classmethod
    def from_settings(cls, settings: Settings, storage: ObjectStorage, http_client: httpx.AsyncClient) -> "MediaPipeline":
        return cls(
            storage,
            http_client,
            max_bytes=settings.media_max_bytes,
            download_timeout=settings.media_download_timeout_seconds,
            max_image_width=settings.media_max_image_width,
            image_quality=settings.media_image_quality,
            concurrency=settings.media_concurrency,
        )

    async def download(self, handle: MediaDownloadHandle) -> bytes:
        if handle.file_size and handle.file_size > self.max_bytes:
            raise MediaTooLargeError(handle.file_size, self.max_bytes)

        data = bytearray()
        async with self.http.stream("GET", handle.url, headers=handle.headers, timeout=self.download_timeout) as response:
            response.raise_for_status()
            async for chunk in response.aiter_bytes():
                if not chunk:
                    continue
                data.extend(chunk)
                if len(data) > self.max_bytes:
                    raise MediaTooLargeError(len(data), self.max_bytes)
        return bytes(data)

    def transform(self, data: bytes, media_type: str, mime_type: str, file_name: str) -> tuple[bytes, str, str]:
        """Returns (data, mime_type, file_name) after type-specific normalization."""
        if media_type == "sticker":
            stem = file_name.rsplit(".", 1)[0]
            return convert_to_png(data), "image/png", f"{stem}.png"

        if media_type == "voice":
            return data, "audio/ogg", file_name

        if mime_type.startswith("image/") and mime_type not in PASSTHROUGH_IMAGE_TYPES:
            resized = downscale_image(data, self.max_image_width, self.image_quality)
            if resized is not None:
                stem = file_name.rsplit(".", 1)[0]
                return resized, "image/jpeg", f"{stem}.jpg"

        return data, mime_type, file_name

    async def _store(self, data: bytes, mime_type: str, file_name: str, caption: Optional[str]) -> StoredMedia:
        storage_key = build_storage_key(file_name)
        await asyncio.to_thread(self.storage.put, storage_key, data, mime_type)
        return StoredMedia(
            storage_key=storage_key,
            mime_type=mime_type,
            byte_size=len(data),
            original_name=file_name,
            caption=caption,
        )

    async def process_inbound(
        self, adapter: ChannelAdapter, channel: Channel, media: MediaDescriptor
    ) -> Optional[StoredMedia]:
        """Fetch, normalize and store a provider attachment. Never raises; None on failure."""
        async with self._semaphore:
            try:
                handle = await adapter.get_media_download_handle(channel, media.file_reference)
                data = await self.download(handle)

                mime_type = media.mime_type or handle.mime_type or "application/octet-stream"
                file_name = media.file_name or handle.file_name or f"{uuid.uuid4()}{_default_extension(mime_type)}"
                data, mime_type, file_name = await asyncio.to_thread(
                    self.transform, data, media.media_type, mime_type, file_name
                )
                stored = await self._store(data, mime_type, file_name, media.caption)
            except Exception as e:
                logger.warning(
                    "Media processing failed",
                    extra={
                        "context": {
                            "channel_id": str(channel.id),
                            "media_type": media.media_type,
                            "error": str(e),
                        }
                    },
                )
                return None

        logger.info(
            "Media stored",
            extra={
                "context": {
                    "storage_key": stored.storage_key,
                    "mime_type": stored.mime_type,
                    "byte_size": stored.byte_size,
                }
            },
        )
        return stored

    async def store_outbound(self, attachment: OutboundAttachment, caption: Optional[str] = None) -> StoredMedia:
        """Persist an operator/automation attachment. Errors propagate."""
        check_attachment_size(attachment.size, self.max_bytes)
        async with self._semaphore:
            data, mime_type, file_name = attachment.data, attachment.mime_type, attachment.file_name
            if mime_type.startswith("image/") and mime_type not in PASSTHROUGH_IMAGE_TYPES:
                resized = await asyncio.to_thread(downscale_image, data, self.max_image_width, self.image_quality)
                if resized is not None:
                    data, mime_type = resized, "image/jpeg"
            return await self._store(data, mime_type, file_name, caption)
