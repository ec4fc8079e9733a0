"""Closed platform -> adapter registry."""

from __future__ import annotations

import httpx

from relaybot.agent.errors import UnknownPlatformError
from relaybot.channels.base import PlatformAdapter
from relaybot.channels.messenger import MessengerAdapter
from relaybot.channels.telegram import TelegramAdapter
from relaybot.channels.whatsapp import WhatsAppAdapter

ADAPTERS: dict[str, type[PlatformAdapter]] = {
    "telegram": TelegramAdapter,
    "whatsapp": WhatsAppAdapter,
    "messenger": MessengerAdapter,
}

_default_instances: dict[str, PlatformAdapter] = {}


def get_adapter(
    platform: str, transport: httpx.AsyncBaseTransport | None = None
) -> PlatformAdapter:
    """
    Return the adapter for a platform tag.

    Without a transport the shared default instance is returned.

    Raises:
        UnknownPlatformError: The tag is not one of the supported platforms.
    """
    adapter_cls = ADAPTERS.get(platform)
    if adapter_cls is None:
        raise UnknownPlatformError(platform)
    if transport is not None:
        return adapter_cls(transport=transport)
    if platform not in _default_instances:
        _default_instances[platform] = adapter_cls()
    return _default_instances[platform]
