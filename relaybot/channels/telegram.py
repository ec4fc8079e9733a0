"""Telegram Bot API adapter."""

from __future__ import annotations

import mimetypes
from typing import Any

import httpx

from relaybot.agent.errors import MediaDownloadFailed, WebhookParseFailure
from relaybot.channels.base import PlatformAdapter, epoch_to_datetime, pick_user_agent
from relaybot.channels.events import IncomingMessage, MediaAttachment, OutgoingMessage
from relaybot.store.models import PlatformIntegration

TELEGRAM_API_BASE = "https://api.telegram.org"

# Telegram file paths use extensions mimetypes does not always know.
_EXTRA_MIME_TYPES = {
    ".oga": "audio/ogg",
    ".ogg": "audio/ogg",
    ".webp": "image/webp",
    ".tgs": "application/x-tgsticker",
}

_MEDIA_METHODS = {
    "image": ("sendPhoto", "photo"),
    "video": ("sendVideo", "video"),
    "audio": ("sendAudio", "audio"),
    "document": ("sendDocument", "document"),
    "gif": ("sendAnimation", "animation"),
    "sticker": ("sendSticker", "sticker"),
}


def _guess_mime_type(file_path: str) -> str:
    suffix = "." + file_path.rsplit(".", 1)[-1].lower() if "." in file_path else ""
    if suffix in _EXTRA_MIME_TYPES:
        return _EXTRA_MIME_TYPES[suffix]
    guessed, _ = mimetypes.guess_type(file_path)
    return guessed or "application/octet-stream"


class TelegramAdapter(PlatformAdapter):
    """Telegram adapter using the HTTPS Bot API with webhook delivery."""

    platform = "telegram"

    def _url(self, integration: PlatformIntegration, method: str) -> str:
        return f"{TELEGRAM_API_BASE}/bot{integration.bot_token}/{method}"

    async def send_message(
        self, integration: PlatformIntegration, message: OutgoingMessage
    ) -> dict[str, Any]:
        body: dict[str, Any] = {"chat_id": message.chat_id}
        media = _MEDIA_METHODS.get(message.media_type or "") if message.media_url else None
        if media:
            method, field = media
            body[field] = message.media_url
            if message.content and field != "sticker":
                body["caption"] = message.content
                body["parse_mode"] = "Markdown"
        else:
            method = "sendMessage"
            body["text"] = message.content
            body["parse_mode"] = "Markdown"
        if message.reply_to_message_id:
            body["reply_to_message_id"] = message.reply_to_message_id
        return await self._post_json(self._url(integration, method), integration, body)

    async def _send_typing(
        self, integration: PlatformIntegration, chat_id: str, message_id: str | None
    ) -> None:
        await self._post_json(
            self._url(integration, "sendChatAction"),
            integration,
            {"chat_id": chat_id, "action": "typing"},
        )

    def _parse(self, payload: dict[str, Any]) -> IncomingMessage | None:
        message = payload.get("message") or payload.get("edited_message")
        if not message:
            return None

        chat_id = (message.get("chat") or {}).get("id")
        if chat_id is None:
            raise WebhookParseFailure("Telegram message without chat id")
        sender = message.get("from") or {}
        result = IncomingMessage(
            platform=self.platform,
            chat_id=str(chat_id),
            message_id=str(message["message_id"]),
            sender_id=str(sender.get("id", chat_id)),
            sender_name=sender.get("first_name") or sender.get("username"),
            content=message.get("text") or message.get("caption") or "",
            timestamp=epoch_to_datetime(message.get("date", 0)),
            raw_payload=payload,
        )

        if message.get("photo"):
            # Sizes are ascending; the last one is the largest.
            result.media_type = "image"
            result.media_url = message["photo"][-1]["file_id"]
        elif message.get("video"):
            result.media_type = "video"
            result.media_url = message["video"]["file_id"]
        elif message.get("audio") or message.get("voice"):
            result.media_type = "audio"
            result.media_url = (message.get("audio") or message.get("voice"))["file_id"]
        elif message.get("document"):
            result.media_type = "document"
            result.media_url = message["document"]["file_id"]
        elif message.get("sticker"):
            result.media_type = "sticker"
            result.media_url = message["sticker"]["file_id"]
        elif message.get("animation"):
            result.media_type = "gif"
            result.media_url = message["animation"]["file_id"]

        return result

    def validate_webhook(self, payload: Any, signature: str | None = None) -> bool:
        if not isinstance(payload, dict):
            return False
        return bool(
            payload.get("message") or payload.get("edited_message") or payload.get("callback_query")
        )

    async def download_media(
        self, integration: PlatformIntegration, media_ref: str
    ) -> MediaAttachment:
        """Resolve a file id through getFile, then fetch the file body."""
        headers = {"User-Agent": pick_user_agent(integration)}
        async with self._client() as client:
            info = await client.get(
                self._url(integration, "getFile"), params={"file_id": media_ref}, headers=headers
            )
            payload = self._decode(info)
            file_path = (payload.get("result") or {}).get("file_path")
            if not payload.get("ok") or not file_path:
                raise MediaDownloadFailed("Failed to get file info from Telegram")
            response = await client.get(
                f"{TELEGRAM_API_BASE}/file/bot{integration.bot_token}/{file_path}", headers=headers
            )
            try:
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                raise MediaDownloadFailed(f"Telegram file download failed: {e}") from e
        return MediaAttachment(data=response.content, mime_type=_guess_mime_type(file_path))

    async def set_webhook(
        self, bot_token: str, url: str, secret_token: str | None = None
    ) -> dict[str, Any]:
        """Point the bot's webhook at our gateway."""
        body: dict[str, Any] = {"url": url}
        if secret_token:
            body["secret_token"] = secret_token
        async with self._client() as client:
            response = await client.post(f"{TELEGRAM_API_BASE}/bot{bot_token}/setWebhook", json=body)
        return self._decode(response)
