"""Chat platform adapters and the inbound relay."""

from relaybot.channels.base import USER_AGENTS, PlatformAdapter, pick_user_agent
from relaybot.channels.events import IncomingMessage, MediaAttachment, OutgoingMessage
from relaybot.channels.registry import ADAPTERS, get_adapter

__all__ = [
    "ADAPTERS",
    "USER_AGENTS",
    "IncomingMessage",
    "MediaAttachment",
    "OutgoingMessage",
    "PlatformAdapter",
    "get_adapter",
    "pick_user_agent",
]
