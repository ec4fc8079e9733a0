"""Canonical message types shared by every platform adapter."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from relaybot.providers.base import MediaAttachment
from relaybot.utils.helpers import utc_now


@dataclass
class IncomingMessage:
    """Message received from a chat platform webhook."""

    platform: str
    chat_id: str
    message_id: str
    sender_id: str
    content: str
    integration_id: str = ""  # set by the relay once the integration is known
    sender_name: str | None = None
    media_type: str | None = None  # image|video|audio|document|sticker|gif
    media_url: str | None = None  # file id, media id or URL, per platform
    timestamp: datetime = field(default_factory=utc_now)
    raw_payload: dict[str, Any] = field(default_factory=dict)

    @property
    def chat_key(self) -> str:
        """Conversation memory key for platform traffic."""
        return f"{self.platform}-{self.chat_id}"


@dataclass
class OutgoingMessage:
    """Message to send to a chat platform."""

    chat_id: str
    content: str
    media_url: str | None = None
    media_type: str | None = None
    reply_to_message_id: str | None = None


__all__ = ["IncomingMessage", "OutgoingMessage", "MediaAttachment"]
