"""Facebook Messenger adapter (Send API)."""

from __future__ import annotations

from typing import Any

import httpx
from loguru import logger

from relaybot.agent.errors import MediaDownloadFailed
from relaybot.channels.base import (
    GRAPH_API_BASE,
    PlatformAdapter,
    epoch_to_datetime,
    pick_user_agent,
)
from relaybot.channels.events import IncomingMessage, MediaAttachment, OutgoingMessage
from relaybot.store.models import PlatformIntegration

_ATTACHMENT_TYPES = {
    "image": "image",
    "video": "video",
    "audio": "audio",
    "file": "document",
    "sticker": "sticker",
}


class MessengerAdapter(PlatformAdapter):
    """Messenger adapter; the page access token travels as a query parameter."""

    platform = "messenger"

    def _token(self, integration: PlatformIntegration) -> dict[str, str]:
        return {"access_token": integration.access_token}

    async def send_message(
        self, integration: PlatformIntegration, message: OutgoingMessage
    ) -> dict[str, Any]:
        if message.media_url and message.media_type:
            attachment_type = "file" if message.media_type == "document" else message.media_type
            payload: dict[str, Any] = {
                "attachment": {
                    "type": attachment_type,
                    "payload": {"url": message.media_url, "is_reusable": True},
                }
            }
        else:
            payload = {"text": message.content}
        body = {"recipient": {"id": message.chat_id}, "message": payload}
        return await self._post_json(
            f"{GRAPH_API_BASE}/me/messages", integration, body, params=self._token(integration)
        )

    async def _sender_action(
        self, integration: PlatformIntegration, recipient_id: str, action: str
    ) -> None:
        await self._post_json(
            f"{GRAPH_API_BASE}/me/messages",
            integration,
            {"recipient": {"id": recipient_id}, "sender_action": action},
            params=self._token(integration),
        )

    async def _send_typing(
        self, integration: PlatformIntegration, chat_id: str, message_id: str | None
    ) -> None:
        await self._sender_action(integration, chat_id, "typing_on")

    async def mark_seen(self, integration: PlatformIntegration, message: IncomingMessage) -> None:
        try:
            await self._sender_action(integration, message.chat_id, "mark_seen")
        except Exception as e:
            logger.debug(f"messenger mark_seen failed for {message.chat_id}: {e}")

    def _parse(self, payload: dict[str, Any]) -> IncomingMessage | None:
        messaging = (payload["entry"][0].get("messaging") or [None])[0]
        if not messaging or not messaging.get("message"):
            return None
        message = messaging["message"]
        if message.get("is_echo"):
            return None

        sender_id = str(messaging["sender"]["id"])
        result = IncomingMessage(
            platform=self.platform,
            chat_id=sender_id,
            message_id=str(message.get("mid", "")),
            sender_id=sender_id,
            content=message.get("text") or "",
            timestamp=epoch_to_datetime(messaging.get("timestamp", 0), scale=1000),
            raw_payload=payload,
        )

        attachments = message.get("attachments") or []
        if attachments:
            attachment = attachments[0]
            media_type = _ATTACHMENT_TYPES.get(attachment.get("type"))
            if media_type:
                result.media_type = media_type
                result.media_url = (attachment.get("payload") or {}).get("url")
        return result

    def validate_webhook(self, payload: Any, signature: str | None = None) -> bool:
        return (
            isinstance(payload, dict)
            and payload.get("object") == "page"
            and bool(payload.get("entry"))
        )

    async def download_media(
        self, integration: PlatformIntegration, media_ref: str
    ) -> MediaAttachment:
        """Attachment URLs are pre-signed CDN links; fetch them directly."""
        async with self._client() as client:
            response = await client.get(
                media_ref, headers={"User-Agent": pick_user_agent(integration)}
            )
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise MediaDownloadFailed(f"Messenger attachment download failed: {e}") from e
        mime_type = response.headers.get("content-type", "").split(";", 1)[0].strip()
        return MediaAttachment(data=response.content, mime_type=mime_type or "application/octet-stream")

    async def get_user_profile(
        self, integration: PlatformIntegration, user_id: str
    ) -> dict[str, Any]:
        """Public profile fields of a page-scoped user id."""
        async with self._client() as client:
            response = await client.get(
                f"{GRAPH_API_BASE}/{user_id}",
                params={"fields": "first_name,last_name,profile_pic", **self._token(integration)},
                headers={"User-Agent": pick_user_agent(integration)},
            )
        return self._decode(response)
