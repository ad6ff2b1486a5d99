from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

import httpx

from omnigate.models import Channel
from omnigate.services.result import Result


@dataclass
class MediaDescriptor:
    media_type: str  # image, video, audio, voice, document, sticker
    file_reference: str
    mime_type: Optional[str] = None
    file_name: Optional[str] = None
    caption: Optional[str] = None
    file_size: Optional[int] = None


@dataclass
class InboundEvent:
    external_sender_id: str
    external_thread_id: str
    message_type: str
    text: Optional[str] = None
    media: Optional[MediaDescriptor] = None
    sender_profile: dict[str, Any] = field(default_factory=dict)
    provider_message_id: Optional[str] = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class StatusUpdate:
    provider_message_id: str
    status: str
    recipient_id: Optional[str] = None
    errors: Optional[list] = None


@dataclass
class MediaDownloadHandle:
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    mime_type: Optional[str] = None
    file_name: Optional[str] = None
    file_size: Optional[int] = None


@dataclass
class OutboundAttachment:
    data: bytes
    mime_type: str
    file_name: str

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class SendResult:
    success: bool
    provider_message_id: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    retryable: bool = False
    attempts: int = 1

    @staticmethod
    def sent(provider_message_id: Optional[str]) -> "SendResult":
        return SendResult(success=True, provider_message_id=provider_message_id)

    @staticmethod
    def failed(error: str, code: str, retryable: bool = False) -> "SendResult":
        return SendResult(success=False, error=error, error_code=code, retryable=retryable)


class ChannelError(Exception):
    def __init__(self, message: str, retryable: bool = False, code: Optional[str] = None):
        self.message = message
        self.retryable = retryable
        self.code = code
        super().__init__(message)


def failure_from_response(response: httpx.Response, error: str) -> SendResult:
    """5xx and 429 are worth retrying; anything else is an explicit rejection."""
    retryable = response.status_code >= 500 or response.status_code == 429
    code = "server_error" if retryable else "provider_rejected"
    return SendResult.failed(error, code, retryable=retryable)


def failure_from_exception(exc: httpx.HTTPError) -> SendResult:
    if isinstance(exc, httpx.TimeoutException):
        return SendResult.failed("Request timeout", "timeout", retryable=True)
    if isinstance(exc, httpx.TransportError):
        return SendResult.failed(str(exc) or exc.__class__.__name__, "transport", retryable=True)
    return SendResult.failed(str(exc), "provider_rejected")


class ChannelAdapter(ABC):
    """Everything platform-specific about one channel type."""

    channel_type: str = ""

    def __init__(self, http_client: httpx.AsyncClient):
        self.http = http_client

    @abstractmethod
    def verify(self, channel: Channel, headers: Mapping[str, str], body: bytes) -> Result[Channel]:
        """Authenticate an inbound webhook request. Header names are lower-case."""

    @abstractmethod
    def normalize(self, payload: dict) -> list[InboundEvent]:
        """Map a provider payload to canonical events; unsupported items are dropped."""

    def parse_status_callback(self, payload: dict) -> list[StatusUpdate]:
        return []

    @abstractmethod
    async def send_text(self, channel: Channel, target: str, text: str) -> SendResult:
        pass

    @abstractmethod
    async def send_media(
        self,
        channel: Channel,
        target: str,
        attachment: OutboundAttachment,
        caption: Optional[str] = None,
    ) -> SendResult:
        pass

    @abstractmethod
    async def get_media_download_handle(self, channel: Channel, file_reference: str) -> MediaDownloadHandle:
        """Resolve a provider file reference. Raises ChannelError."""

    @abstractmethod
    def has_media_credentials(self, channel: Channel) -> bool:
        pass

    def credentials(self, channel: Channel) -> dict:
        return channel.config or {}
