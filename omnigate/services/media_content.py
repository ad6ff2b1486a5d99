"""Canonical media reference stored inline in message content.

Format: ``media::<type>::<storage_key>[::<caption>]``. The caption is
everything after the third delimiter, so it may itself contain ``::``.
"""

from dataclasses import dataclass
from typing import Optional

MEDIA_PREFIX = "media"
DELIMITER = "::"


@dataclass
class MediaReference:
    media_type: str
    storage_key: str
    caption: Optional[str] = None


def build_media_content(media_type: str, storage_key: str, caption: Optional[str] = None) -> str:
    parts = [MEDIA_PREFIX, media_type, storage_key]
    if caption:
        parts.append(caption)
    return DELIMITER.join(parts)


def parse_media_content(content: Optional[str]) -> Optional[MediaReference]:
    if not content or not content.startswith(MEDIA_PREFIX + DELIMITER):
        return None
    parts = content.split(DELIMITER, 3)
    if len(parts) < 3 or not parts[1] or not parts[2]:
        return None
    caption = parts[3] if len(parts) == 4 and parts[3] else None
    return MediaReference(media_type=parts[1], storage_key=parts[2], caption=caption)


def media_type_for_mime(mime_type: Optional[str]) -> str:
    """Map a mime type onto the provider send families."""
    if not mime_type:
        return "document"
    if mime_type.startswith("image/"):
        return "image"
    if mime_type.startswith("video/"):
        return "video"
    if mime_type.startswith("audio/"):
        return "audio"
    return "document"


def placeholder_text(media_type: str, failed: bool = False) -> str:
    label = f"[{media_type.upper()}]"
    return f"{label} (download failed)" if failed else label
