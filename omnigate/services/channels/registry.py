from typing import Iterable

import httpx

from omnigate.services.channels.base import ChannelAdapter
from omnigate.services.channels.telegram import TelegramAdapter
from omnigate.services.channels.whatsapp import WhatsAppAdapter


class UnsupportedChannelError(Exception):
    def __init__(self, channel_type: str):
        self.channel_type = channel_type
        super().__init__(f"No adapter registered for channel type: {channel_type}")


class ChannelRegistry:
    """Adapters keyed by channel type."""

    def __init__(self, adapters: Iterable[ChannelAdapter] = ()):
        self._adapters: dict[str, ChannelAdapter] = {}
        for adapter in adapters:
            self.register(adapter)

    def register(self, adapter: ChannelAdapter) -> None:
        self._adapters[adapter.channel_type] = adapter

    def get(self, channel_type: str) -> ChannelAdapter:
        adapter = self._adapters.get(channel_type)
        if adapter is None:
            raise UnsupportedChannelError(channel_type)
        return adapter

    def __contains__(self, channel_type: str) -> bool:
        return channel_type in self._adapters


def build_registry(http_client: httpx.AsyncClient) -> ChannelRegistry:
    return ChannelRegistry([TelegramAdapter(http_client), WhatsAppAdapter(http_client)])
