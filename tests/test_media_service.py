import asyncio
import io
import re
from datetime import datetime, timezone

import httpx
import pytest
from PIL import Image

from omnigate.services.channels import ChannelError, MediaDescriptor, MediaDownloadHandle, OutboundAttachment
from omnigate.services.media_content import (
    build_media_content,
    media_type_for_mime,
    parse_media_content,
    placeholder_text,
)
from omnigate.services.media_service import (
    MediaPipeline,
    MediaTooLargeError,
    build_storage_key,
    downscale_image,
    sanitize_filename,
)


def make_image(width, height, fmt="PNG", mode="RGB"):
    out = io.BytesIO()
    Image.new(mode, (width, height), color=(200, 30, 30) if mode == "RGB" else (200, 30, 30, 128)).save(out, format=fmt)
    return out.getvalue()


def image_size(data):
    with Image.open(io.BytesIO(data)) as image:
        return image.size, image.format


class FakeAdapter:
    def __init__(self, url="https://files.test/photo.png", error=None, file_size=None):
        self.url = url
        self.error = error
        self.file_size = file_size

    async def get_media_download_handle(self, channel, file_reference):
        if self.error:
            raise self.error
        return MediaDownloadHandle(url=self.url, mime_type="image/png", file_size=self.file_size)


def make_pipeline(storage, handler, max_bytes=5 * 1024 * 1024):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return MediaPipeline(
        storage,
        client,
        max_bytes=max_bytes,
        download_timeout=5,
        max_image_width=1280,
        image_quality=80,
        concurrency=2,
    )


class TestDownscaleImage:
    def test_wide_image_resized_to_max_width(self):
        data = downscale_image(make_image(2000, 1000), 1280, 80)

        (width, height), fmt = image_size(data)
        assert width == 1280
        assert height == 640
        assert fmt == "JPEG"

    def test_aspect_ratio_preserved_within_rounding(self):
        data = downscale_image(make_image(3001, 1999), 1280, 80)

        (width, height), _ = image_size(data)
        assert width == 1280
        assert abs(height - 1999 * 1280 / 3001) <= 1

    def test_narrow_image_untouched(self):
        assert downscale_image(make_image(800, 600), 1280, 80) is None

    def test_alpha_channel_flattened(self):
        data = downscale_image(make_image(1600, 400, mode="RGBA"), 1280, 80)

        (width, _), fmt = image_size(data)
        assert width == 1280
        assert fmt == "JPEG"


class TestTransform:
    def setup_method(self):
        self.pipeline = MediaPipeline(
            None, None, max_bytes=1024, download_timeout=1, max_image_width=1280, image_quality=80, concurrency=1
        )

    def test_sticker_converted_to_png(self):
        data, mime_type, name = self.pipeline.transform(make_image(512, 512, fmt="WEBP"), "sticker", "image/webp", "s.webp")

        assert mime_type == "image/png"
        assert name == "s.png"
        assert image_size(data)[1] == "PNG"

    def test_webp_image_passes_through(self):
        original = make_image(2000, 1000, fmt="WEBP")

        data, mime_type, _ = self.pipeline.transform(original, "image", "image/webp", "a.webp")

        assert data == original
        assert mime_type == "image/webp"

    def test_voice_labelled_ogg(self):
        data, mime_type, name = self.pipeline.transform(b"OggS", "voice", "audio/opus", "voice.oga")

        assert (data, mime_type, name) == (b"OggS", "audio/ogg", "voice.oga")

    def test_wide_png_becomes_jpeg(self):
        _, mime_type, name = self.pipeline.transform(make_image(2000, 1000), "image", "image/png", "photo.png")

        assert mime_type == "image/jpeg"
        assert name == "photo.jpg"

    def test_document_untouched(self):
        assert self.pipeline.transform(b"%PDF", "document", "application/pdf", "a.pdf") == (
            b"%PDF",
            "application/pdf",
            "a.pdf",
        )


class TestStorageKey:
    def test_key_layout(self):
        key = build_storage_key("My Photo (1).png", now=datetime(2026, 2, 5, tzinfo=timezone.utc))

        assert re.fullmatch(r"2026/02/[0-9a-f-]{36}-My_Photo__1_.png", key)

    def test_sanitize_truncates(self):
        assert len(sanitize_filename("a" * 300)) == 100


class TestProcessInbound:
    def test_downloads_transforms_and_stores(self, storage, workspace):
        png = make_image(2000, 1000)
        pipeline = make_pipeline(storage, lambda request: httpx.Response(200, content=png))
        media = MediaDescriptor("image", "file-1", "image/png", "photo.png", "look at this")

        stored = asyncio.run(pipeline.process_inbound(FakeAdapter(), workspace.telegram, media))

        assert stored.mime_type == "image/jpeg"
        assert stored.caption == "look at this"
        data, content_type = storage.objects[stored.storage_key]
        assert content_type == "image/jpeg"
        assert image_size(data)[0] == (1280, 640)

    def test_declared_size_over_cap_returns_none(self, storage, workspace):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, content=b"x")

        pipeline = make_pipeline(storage, handler, max_bytes=100)
        media = MediaDescriptor("document", "file-1", "application/pdf", "big.pdf")

        stored = asyncio.run(pipeline.process_inbound(FakeAdapter(file_size=500), workspace.telegram, media))

        assert stored is None
        assert requests == []
        assert storage.objects == {}

    def test_streamed_body_over_cap_returns_none(self, storage, workspace):
        pipeline = make_pipeline(storage, lambda request: httpx.Response(200, content=b"x" * 500), max_bytes=100)
        media = MediaDescriptor("document", "file-1", "application/pdf", "big.pdf")

        assert asyncio.run(pipeline.process_inbound(FakeAdapter(), workspace.telegram, media)) is None

    def test_provider_error_returns_none(self, storage, workspace):
        pipeline = make_pipeline(storage, lambda request: httpx.Response(200))
        adapter = FakeAdapter(error=ChannelError("getFile returned no file_path"))
        media = MediaDescriptor("voice", "file-1", "audio/ogg")

        assert asyncio.run(pipeline.process_inbound(adapter, workspace.telegram, media)) is None

    def test_download_http_error_returns_none(self, storage, workspace):
        pipeline = make_pipeline(storage, lambda request: httpx.Response(404))
        media = MediaDescriptor("document", "file-1", "application/pdf", "a.pdf")

        assert asyncio.run(pipeline.process_inbound(FakeAdapter(), workspace.telegram, media)) is None

    def test_corrupt_image_returns_none(self, storage, workspace):
        pipeline = make_pipeline(storage, lambda request: httpx.Response(200, content=b"not an image"))
        media = MediaDescriptor("image", "file-1", "image/jpeg")

        assert asyncio.run(pipeline.process_inbound(FakeAdapter(), workspace.telegram, media)) is None


class TestStoreOutbound:
    def test_rejects_oversized_attachment(self, storage):
        pipeline = make_pipeline(storage, lambda request: httpx.Response(200), max_bytes=10)
        attachment = OutboundAttachment(data=b"x" * 11, mime_type="application/pdf", file_name="a.pdf")

        with pytest.raises(MediaTooLargeError):
            asyncio.run(pipeline.store_outbound(attachment))
        assert storage.objects == {}

    def test_stores_document(self, storage):
        pipeline = make_pipeline(storage, lambda request: httpx.Response(200))
        attachment = OutboundAttachment(data=b"%PDF-1.4", mime_type="application/pdf", file_name="invoice.pdf")

        stored = asyncio.run(pipeline.store_outbound(attachment, caption="Invoice"))

        assert stored.storage_key.endswith("-invoice.pdf")
        assert storage.objects[stored.storage_key] == (b"%PDF-1.4", "application/pdf")


class TestMediaContent:
    def test_reference_with_caption(self):
        content = build_media_content("image", "2026/02/abc-photo.jpg", "see: this::that")

        reference = parse_media_content(content)
        assert content.startswith("media::image::2026/02/abc-photo.jpg::")
        assert reference.media_type == "image"
        assert reference.storage_key == "2026/02/abc-photo.jpg"
        assert reference.caption == "see: this::that"

    def test_reference_without_caption(self):
        reference = parse_media_content("media::voice::2026/02/abc-voice.oga")

        assert reference.caption is None

    def test_plain_text_is_not_reference(self):
        assert parse_media_content("hello") is None
        assert parse_media_content("media::image") is None

    def test_placeholders(self):
        assert placeholder_text("voice") == "[VOICE]"
        assert placeholder_text("image", failed=True) == "[IMAGE] (download failed)"

    def test_media_type_for_mime(self):
        assert media_type_for_mime("image/png") == "image"
        assert media_type_for_mime("audio/ogg") == "audio"
        assert media_type_for_mime("application/zip") == "document"
        assert media_type_for_mime(None) == "document"
