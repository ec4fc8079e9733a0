"""WhatsApp adapter for the Meta Cloud API."""

from __future__ import annotations

from typing import Any

import httpx

from relaybot.agent.errors import MediaDownloadFailed
from relaybot.channels.base import (
    GRAPH_API_BASE,
    PlatformAdapter,
    epoch_to_datetime,
    pick_user_agent,
)
from relaybot.channels.events import IncomingMessage, MediaAttachment, OutgoingMessage
from relaybot.store.models import PlatformIntegration

# message.type -> (media type, whether the payload carries a caption)
_MEDIA_TYPES = {
    "image": ("image", True),
    "video": ("video", True),
    "audio": ("audio", False),
    "document": ("document", True),
    "sticker": ("sticker", False),
}


class WhatsAppAdapter(PlatformAdapter):
    """WhatsApp Business adapter; replies go out through the phone number id."""

    platform = "whatsapp"

    def _messages_url(self, integration: PlatformIntegration) -> str:
        return f"{GRAPH_API_BASE}/{integration.phone_number_id}/messages"

    def _auth(self, integration: PlatformIntegration) -> dict[str, str]:
        return {"Authorization": f"Bearer {integration.access_token}"}

    async def send_message(
        self, integration: PlatformIntegration, message: OutgoingMessage
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": message.chat_id,
        }
        if message.media_url and message.media_type:
            media: dict[str, Any] = {"link": message.media_url}
            if message.content:
                media["caption"] = message.content
            body["type"] = message.media_type
            body[message.media_type] = media
        else:
            body["type"] = "text"
            body["text"] = {"preview_url": True, "body": message.content}
        if message.reply_to_message_id:
            body["context"] = {"message_id": message.reply_to_message_id}
        return await self._post_json(
            self._messages_url(integration), integration, body, headers=self._auth(integration)
        )

    async def _send_typing(
        self, integration: PlatformIntegration, chat_id: str, message_id: str | None
    ) -> None:
        # The Cloud API has no typing action; a read receipt on the inbound
        # message is the closest presence signal.
        if not message_id:
            return
        await self._post_json(
            self._messages_url(integration),
            integration,
            {"messaging_product": "whatsapp", "status": "read", "message_id": message_id},
            headers=self._auth(integration),
        )

    def _parse(self, payload: dict[str, Any]) -> IncomingMessage | None:
        value = payload["entry"][0]["changes"][0]["value"]
        messages = value.get("messages") or []
        if not messages:
            return None
        message = messages[0]
        contacts = value.get("contacts") or [{}]
        profile_name = (contacts[0].get("profile") or {}).get("name")

        result = IncomingMessage(
            platform=self.platform,
            chat_id=str(message["from"]),
            message_id=str(message["id"]),
            sender_id=str(message["from"]),
            sender_name=profile_name or str(message["from"]),
            content="",
            timestamp=epoch_to_datetime(message.get("timestamp", 0)),
            raw_payload=payload,
        )

        message_type = message.get("type")
        if message_type == "text":
            result.content = (message.get("text") or {}).get("body", "")
        elif message_type in _MEDIA_TYPES:
            media_type, has_caption = _MEDIA_TYPES[message_type]
            media = message.get(message_type) or {}
            result.media_type = media_type
            result.media_url = media.get("id")
            if has_caption:
                result.content = media.get("caption", "")
        return result

    def validate_webhook(self, payload: Any, signature: str | None = None) -> bool:
        return isinstance(payload, dict) and isinstance(payload.get("entry"), list)

    async def download_media(
        self, integration: PlatformIntegration, media_ref: str
    ) -> MediaAttachment:
        """Look up the media URL by id, then fetch it with the same bearer token."""
        headers = {**self._auth(integration), "User-Agent": pick_user_agent(integration)}
        async with self._client() as client:
            info = self._decode(await client.get(f"{GRAPH_API_BASE}/{media_ref}", headers=headers))
            url = info.get("url")
            if not url:
                raise MediaDownloadFailed("Failed to get media URL from WhatsApp")
            response = await client.get(url, headers=headers)
            try:
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                raise MediaDownloadFailed(f"WhatsApp media download failed: {e}") from e
        return MediaAttachment(
            data=response.content,
            mime_type=info.get("mime_type") or "application/octet-stream",
        )
