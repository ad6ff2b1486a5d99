from omnigate.services.channels.base import (
    ChannelAdapter,
    ChannelError,
    InboundEvent,
    MediaDescriptor,
    MediaDownloadHandle,
    OutboundAttachment,
    SendResult,
    StatusUpdate,
)
from omnigate.services.channels.registry import ChannelRegistry, UnsupportedChannelError, build_registry
from omnigate.services.channels.telegram import TelegramAdapter
from omnigate.services.channels.whatsapp import WhatsAppAdapter

__all__ = [
    "ChannelAdapter",
    "ChannelError",
    "ChannelRegistry",
    "InboundEvent",
    "MediaDescriptor",
    "MediaDownloadHandle",
    "OutboundAttachment",
    "SendResult",
    "StatusUpdate",
    "TelegramAdapter",
    "UnsupportedChannelError",
    "WhatsAppAdapter",
    "build_registry",
]
