import asyncio
from pathlib import Path
from typing import Any

import pytest

from relaybot.agent.engine import CompletionResult
from relaybot.agent.errors import AllCredentialsFailed, MediaDownloadFailed
from relaybot.agent.memory import ContextStore
from relaybot.channels import behavior
from relaybot.channels.base import PlatformAdapter
from relaybot.channels.dispatcher import (
    MessageRelay,
    handle_incoming_message,
    send_message_with_behavior,
)
from relaybot.channels.events import IncomingMessage, MediaAttachment, OutgoingMessage
from relaybot.channels.telegram import TelegramAdapter
from relaybot.config.schema import BehaviorConfig, MediaConfig
from relaybot.store.json_store import JsonFileStore
from relaybot.store.models import PlatformIntegration

QUIET = BehaviorConfig(enabled=False)


class FakeAdapter(PlatformAdapter):
    """Records every outbound call in order."""

    platform = "telegram"

    def __init__(self, media: MediaAttachment | Exception | None = None):
        super().__init__()
        self.events: list[tuple[str, Any]] = []
        self.media = media

    async def send_message(self, integration, message: OutgoingMessage) -> dict[str, Any]:
        self.events.append(("send", message))
        return {"ok": True}

    async def _send_typing(self, integration, chat_id, message_id) -> None:
        self.events.append(("typing", (chat_id, message_id)))

    async def mark_seen(self, integration, message) -> None:
        self.events.append(("seen", message.message_id))

    def _parse(self, payload):
        text = payload["message"].get("text")
        if text is None:
            return None
        return IncomingMessage(
            platform="telegram",
            chat_id=str(payload["message"]["chat"]),
            message_id=str(payload["message"]["id"]),
            sender_id=str(payload["message"]["chat"]),
            content=text,
            media_type="image" if payload["message"].get("photo") else None,
            media_url=payload["message"].get("photo"),
        )

    def validate_webhook(self, payload, signature=None) -> bool:
        return isinstance(payload, dict) and "message" in payload

    async def download_media(self, integration, media_ref) -> MediaAttachment:
        self.events.append(("download", media_ref))
        if isinstance(self.media, Exception):
            raise self.media
        return self.media


class FakeEngine:
    def __init__(self, reply: str = "pong", error: Exception | None = None):
        self.reply = reply
        self.error = error
        self.calls: list[tuple[str, str, str, list]] = []

    async def complete(self, owner_id, chat_key, prompt, media=None):
        self.calls.append((owner_id, chat_key, prompt, list(media or [])))
        await asyncio.sleep(0)
        if self.error:
            raise self.error
        return CompletionResult(reply_text=self.reply, credential_id_used="key_1")


def _integration(**fields) -> PlatformIntegration:
    return PlatformIntegration(platform="telegram", owner_id="owner-1", bot_token="T", **fields)


def _update(text: str | None = "ping", photo: str | None = None) -> dict:
    message: dict[str, Any] = {"chat": 42, "id": 7}
    if text is not None:
        message["text"] = text
    if photo:
        message["photo"] = photo
    return {"message": message}


def test_handle_incoming_message_order(monkeypatch):
    slept: list[float] = []

    async def fake_sleep(seconds):
        slept.append(seconds)

    monkeypatch.setattr(behavior.asyncio, "sleep", fake_sleep)
    adapter = FakeAdapter()
    inbound = adapter.parse_webhook(_update())

    async def process(message: IncomingMessage) -> str:
        adapter.events.append(("process", message.content))
        return "pong!"

    asyncio.run(handle_incoming_message(_integration(), inbound, process, adapter=adapter))

    kinds = [kind for kind, _ in adapter.events]
    assert kinds == ["seen", "process", "typing", "send"]
    assert adapter.events[2][1] == ("42", "7")
    sent = adapter.events[-1][1]
    assert (sent.chat_id, sent.content, sent.reply_to_message_id) == ("42", "pong!", "7")
    # One reading delay and one typing delay.
    assert len(slept) == 2
    assert all(0.5 <= s for s in slept)


def test_handle_incoming_message_reraises_processing_errors():
    adapter = FakeAdapter()

    async def process(message):
        raise AllCredentialsFailed("boom")

    with pytest.raises(AllCredentialsFailed):
        asyncio.run(
            handle_incoming_message(
                _integration(), adapter.parse_webhook(_update()), process, behavior=QUIET, adapter=adapter
            )
        )
    assert [kind for kind, _ in adapter.events] == ["seen"]


def test_send_message_with_behavior(monkeypatch):
    slept: list[float] = []

    async def fake_sleep(seconds):
        slept.append(seconds)

    monkeypatch.setattr("relaybot.channels.dispatcher.asyncio.sleep", fake_sleep)
    adapter = FakeAdapter()
    integration = _integration(typing_delay_min=100, typing_delay_max=100)

    asyncio.run(
        send_message_with_behavior(integration, OutgoingMessage(chat_id="42", content="hi"), adapter=adapter)
    )

    assert [kind for kind, _ in adapter.events] == ["typing", "send"]
    assert slept == [0.1]


def _relay(tmp_path: Path, engine: FakeEngine, adapter: FakeAdapter, media: MediaConfig | None = None):
    context = ContextStore(JsonFileStore(tmp_path))
    relay = MessageRelay(
        engine, context, behavior=QUIET, media=media, adapters=lambda platform: adapter
    )
    return relay, context


def test_relay_processes_webhook_in_background(tmp_path: Path):
    engine = FakeEngine(reply="pong")
    adapter = FakeAdapter()
    relay, context = _relay(tmp_path, engine, adapter)
    integration = _integration()

    async def run():
        accepted = relay.accept_webhook(integration, _update("ping"))
        assert relay.pending == 1
        await relay.drain()
        return accepted

    assert asyncio.run(run()) is True
    assert relay.pending == 0
    assert engine.calls == [("owner-1", "telegram-42", "ping", [])]
    assert adapter.events[-1][1].content == "pong"

    contact = context.contacts_for_user("42", "owner-1")[0]
    assert contact.platform == "telegram"
    assert contact.context_summary == "pong"


def test_relay_ignores_invalid_and_non_message_payloads(tmp_path: Path):
    engine = FakeEngine()
    relay, _ = _relay(tmp_path, engine, FakeAdapter())

    async def run():
        results = [
            relay.accept_webhook(_integration(), {"status": "delivered"}),
            relay.accept_webhook(_integration(), _update(text=None)),
        ]
        await relay.drain()
        return results

    assert asyncio.run(run()) == [False, False]
    assert engine.calls == []


class OfflineTelegram(TelegramAdapter):
    """Real Telegram parsing with outbound calls recorded instead of sent."""

    def __init__(self):
        super().__init__()
        self.sent: list[OutgoingMessage] = []

    async def send_message(self, integration, message: OutgoingMessage) -> dict[str, Any]:
        self.sent.append(message)
        return {"ok": True}

    async def _send_typing(self, integration, chat_id, message_id) -> None:
        return None


def test_relay_answers_telegram_update_with_out_of_range_date(tmp_path: Path):
    engine = FakeEngine(reply="pong")
    adapter = OfflineTelegram()
    context = ContextStore(JsonFileStore(tmp_path))
    relay = MessageRelay(engine, context, behavior=QUIET, adapters=lambda platform: adapter)
    update = {
        "update_id": 9,
        "message": {"message_id": 3, "chat": {"id": 42}, "date": 1e400, "text": "hi"},
    }

    async def run():
        accepted = relay.accept_webhook(_integration(), update)
        await relay.drain()
        return accepted

    assert asyncio.run(run()) is True
    assert engine.calls == [("owner-1", "telegram-42", "hi", [])]
    assert [message.content for message in adapter.sent] == ["pong"]


def test_relay_downloads_inbound_media(tmp_path: Path):
    image = MediaAttachment(data=b"jpeg", mime_type="image/jpeg")
    engine = FakeEngine()
    adapter = FakeAdapter(media=image)
    relay, _ = _relay(tmp_path, engine, adapter)

    async def run():
        relay.accept_webhook(_integration(), _update("what is this", photo="FILE1"))
        await relay.drain()

    asyncio.run(run())

    assert ("download", "FILE1") in adapter.events
    assert engine.calls[0][3] == [image]


def test_relay_continues_without_media_when_download_fails(tmp_path: Path):
    engine = FakeEngine()
    adapter = FakeAdapter(media=MediaDownloadFailed("gone"))
    relay, _ = _relay(tmp_path, engine, adapter)

    async def run():
        relay.accept_webhook(_integration(), _update("caption", photo="FILE1"))
        await relay.drain()

    asyncio.run(run())

    assert engine.calls[0][3] == []
    assert adapter.events[-1][0] == "send"


def test_relay_skips_download_when_disabled(tmp_path: Path):
    engine = FakeEngine()
    adapter = FakeAdapter(media=MediaAttachment(data=b"x", mime_type="image/png"))
    relay, _ = _relay(tmp_path, engine, adapter, media=MediaConfig(download_inbound_media=False))

    async def run():
        relay.accept_webhook(_integration(), _update("caption", photo="FILE1"))
        await relay.drain()

    asyncio.run(run())

    assert not any(kind == "download" for kind, _ in adapter.events)


def test_relay_drops_message_when_all_keys_fail(tmp_path: Path):
    engine = FakeEngine(error=AllCredentialsFailed("quota"))
    adapter = FakeAdapter()
    relay, _ = _relay(tmp_path, engine, adapter)

    async def run():
        relay.accept_webhook(_integration(), _update("ping"))
        await relay.drain()

    asyncio.run(run())

    assert not any(kind == "send" for kind, _ in adapter.events)
    assert relay.pending == 0
