import asyncio
import json

import httpx
import pytest

from relaybot.agent.errors import MediaDownloadFailed
from relaybot.channels.base import USER_AGENTS
from relaybot.channels.events import IncomingMessage, OutgoingMessage
from relaybot.channels.messenger import MessengerAdapter
from relaybot.channels.telegram import TelegramAdapter
from relaybot.channels.whatsapp import WhatsAppAdapter
from relaybot.store.models import PlatformIntegration


class Recorder:
    """httpx.MockTransport handler that records requests and replays canned responses."""

    def __init__(self, responder=None):
        self.requests: list[httpx.Request] = []
        self.responder = responder or (lambda request: httpx.Response(200, json={"ok": True}))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responder(request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    def body(self, index: int = -1) -> dict:
        return json.loads(self.requests[index].content)


def _integration(platform: str, **fields) -> PlatformIntegration:
    return PlatformIntegration(platform=platform, owner_id="admin", **fields)


def test_telegram_send_text_reply():
    rec = Recorder()
    adapter = TelegramAdapter(transport=rec.transport)
    integration = _integration("telegram", bot_token="123ABC", user_agent="relay-test/1.0")

    result = asyncio.run(
        adapter.send_message(
            integration, OutgoingMessage(chat_id="42", content="*hi*", reply_to_message_id="7")
        )
    )

    assert result == {"ok": True}
    request = rec.requests[0]
    assert str(request.url) == "https://api.telegram.org/bot123ABC/sendMessage"
    assert request.headers["user-agent"] == "relay-test/1.0"
    assert rec.body() == {
        "chat_id": "42",
        "text": "*hi*",
        "parse_mode": "Markdown",
        "reply_to_message_id": "7",
    }


def test_telegram_send_photo_uses_caption():
    rec = Recorder()
    adapter = TelegramAdapter(transport=rec.transport)
    integration = _integration("telegram", bot_token="T")

    asyncio.run(
        adapter.send_message(
            integration,
            OutgoingMessage(chat_id="42", content="a cat", media_url="https://x/cat.png", media_type="image"),
        )
    )

    assert rec.requests[0].url.path.endswith("/sendPhoto")
    assert rec.body()["photo"] == "https://x/cat.png"
    assert rec.body()["caption"] == "a cat"
    assert rec.requests[0].headers["user-agent"] in USER_AGENTS


def test_telegram_typing_and_download():
    def responder(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/getFile"):
            return httpx.Response(200, json={"ok": True, "result": {"file_path": "voice/file_1.oga"}})
        if "/file/bot" in request.url.path:
            return httpx.Response(200, content=b"OggS-bytes")
        return httpx.Response(200, json={"ok": True})

    rec = Recorder(responder)
    adapter = TelegramAdapter(transport=rec.transport)
    integration = _integration("telegram", bot_token="T")

    asyncio.run(adapter.send_typing_indicator(integration, "42"))
    attachment = asyncio.run(adapter.download_media(integration, "FILE_ID"))

    assert rec.body(0) == {"chat_id": "42", "action": "typing"}
    assert rec.requests[1].url.params["file_id"] == "FILE_ID"
    assert str(rec.requests[2].url) == "https://api.telegram.org/file/botT/voice/file_1.oga"
    assert attachment.data == b"OggS-bytes"
    assert attachment.mime_type == "audio/ogg"


def test_telegram_download_without_file_path_fails():
    rec = Recorder(lambda request: httpx.Response(200, json={"ok": False, "description": "bad"}))
    adapter = TelegramAdapter(transport=rec.transport)
    with pytest.raises(MediaDownloadFailed):
        asyncio.run(adapter.download_media(_integration("telegram", bot_token="T"), "X"))


def test_telegram_set_webhook():
    rec = Recorder()
    adapter = TelegramAdapter(transport=rec.transport)
    asyncio.run(adapter.set_webhook("T", "https://relay.example/api/webhooks/telegram/int_1", "s3cret"))
    assert rec.requests[0].url.path == "/botT/setWebhook"
    assert rec.body() == {
        "url": "https://relay.example/api/webhooks/telegram/int_1",
        "secret_token": "s3cret",
    }


def test_whatsapp_send_threads_reply_and_uses_bearer():
    rec = Recorder(lambda request: httpx.Response(200, json={"messages": [{"id": "wamid.out"}]}))
    adapter = WhatsAppAdapter(transport=rec.transport)
    integration = _integration("whatsapp", access_token="EAAG", phone_number_id="PN1")

    result = asyncio.run(
        adapter.send_message(
            integration, OutgoingMessage(chat_id="1555", content="hello", reply_to_message_id="wamid.in")
        )
    )

    request = rec.requests[0]
    assert str(request.url) == "https://graph.facebook.com/v18.0/PN1/messages"
    assert request.headers["authorization"] == "Bearer EAAG"
    assert rec.body() == {
        "messaging_product": "whatsapp",
        "recipient_type": "individual",
        "to": "1555",
        "type": "text",
        "text": {"preview_url": True, "body": "hello"},
        "context": {"message_id": "wamid.in"},
    }
    assert result["messages"][0]["id"] == "wamid.out"


def test_whatsapp_typing_is_read_receipt_and_skipped_without_id():
    rec = Recorder()
    adapter = WhatsAppAdapter(transport=rec.transport)
    integration = _integration("whatsapp", access_token="EAAG", phone_number_id="PN1")

    asyncio.run(adapter.send_typing_indicator(integration, "1555"))
    assert rec.requests == []

    asyncio.run(adapter.send_typing_indicator(integration, "1555", message_id="wamid.in"))
    assert rec.body() == {"messaging_product": "whatsapp", "status": "read", "message_id": "wamid.in"}


def test_whatsapp_download_media():
    def responder(request: httpx.Request) -> httpx.Response:
        if request.url.host == "graph.facebook.com":
            return httpx.Response(200, json={"url": "https://lookaside.example/m1", "mime_type": "audio/ogg"})
        return httpx.Response(200, content=b"voice")

    rec = Recorder(responder)
    adapter = WhatsAppAdapter(transport=rec.transport)
    integration = _integration("whatsapp", access_token="EAAG", phone_number_id="PN1")

    attachment = asyncio.run(adapter.download_media(integration, "MEDIA1"))

    assert rec.requests[0].url.path == "/v18.0/MEDIA1"
    assert rec.requests[1].headers["authorization"] == "Bearer EAAG"
    assert (attachment.data, attachment.mime_type) == (b"voice", "audio/ogg")


def test_messenger_send_uses_access_token_param():
    rec = Recorder(lambda request: httpx.Response(200, json={"message_id": "m.out"}))
    adapter = MessengerAdapter(transport=rec.transport)
    integration = _integration("messenger", access_token="PAGE_TOKEN")

    asyncio.run(adapter.send_message(integration, OutgoingMessage(chat_id="PSID1", content="yo")))
    asyncio.run(
        adapter.send_message(
            integration,
            OutgoingMessage(chat_id="PSID1", content="", media_url="https://x/a.pdf", media_type="document"),
        )
    )

    assert rec.requests[0].url.params["access_token"] == "PAGE_TOKEN"
    assert rec.body(0) == {"recipient": {"id": "PSID1"}, "message": {"text": "yo"}}
    assert rec.body(1)["message"]["attachment"] == {
        "type": "file",
        "payload": {"url": "https://x/a.pdf", "is_reusable": True},
    }


def test_messenger_sender_actions():
    rec = Recorder()
    adapter = MessengerAdapter(transport=rec.transport)
    integration = _integration("messenger", access_token="PAGE_TOKEN")
    inbound = IncomingMessage(
        platform="messenger", chat_id="PSID1", message_id="m.1", sender_id="PSID1", content="hi"
    )

    asyncio.run(adapter.mark_seen(integration, inbound))
    asyncio.run(adapter.send_typing_indicator(integration, "PSID1"))

    assert [rec.body(i)["sender_action"] for i in range(2)] == ["mark_seen", "typing_on"]


def test_messenger_download_and_profile():
    def responder(request: httpx.Request) -> httpx.Response:
        if request.url.host == "cdn.example":
            return httpx.Response(200, content=b"jpeg", headers={"content-type": "image/jpeg; q=1"})
        return httpx.Response(200, json={"first_name": "Lin", "last_name": "Q"})

    rec = Recorder(responder)
    adapter = MessengerAdapter(transport=rec.transport)
    integration = _integration("messenger", access_token="PAGE_TOKEN")

    attachment = asyncio.run(adapter.download_media(integration, "https://cdn.example/p.jpg"))
    profile = asyncio.run(adapter.get_user_profile(integration, "PSID1"))

    assert attachment.mime_type == "image/jpeg"
    assert profile["first_name"] == "Lin"
    assert rec.requests[1].url.params["fields"] == "first_name,last_name,profile_pic"


def test_typing_indicator_network_errors_are_swallowed():
    def responder(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("unreachable", request=request)

    adapter = TelegramAdapter(transport=httpx.MockTransport(responder))
    asyncio.run(adapter.send_typing_indicator(_integration("telegram", bot_token="T"), "42"))


def test_undecodable_responses_do_not_break_best_effort_calls():
    rec = Recorder(lambda request: httpx.Response(200, content=b"\x80\x81 not utf8"))
    integration = _integration("messenger", access_token="PAGE_TOKEN")
    adapter = MessengerAdapter(transport=rec.transport)
    inbound = IncomingMessage(
        platform="messenger", chat_id="PSID1", message_id="m.1", sender_id="PSID1", content="hi"
    )

    asyncio.run(adapter.send_typing_indicator(integration, "PSID1"))
    asyncio.run(adapter.mark_seen(integration, inbound))
    telegram = TelegramAdapter(transport=rec.transport)
    asyncio.run(telegram.send_typing_indicator(_integration("telegram", bot_token="T"), "42"))
    result = asyncio.run(
        telegram.send_message(
            _integration("telegram", bot_token="T"), OutgoingMessage(chat_id="42", content="x")
        )
    )

    assert len(rec.requests) == 4
    assert "raw" in result


def test_typing_indicator_failures_outside_httpx_are_swallowed():
    def responder(request: httpx.Request) -> httpx.Response:
        raise RuntimeError("transport blew up")

    adapter = WhatsAppAdapter(transport=httpx.MockTransport(responder))
    integration = _integration("whatsapp", access_token="T", phone_number_id="PN1")
    asyncio.run(adapter.send_typing_indicator(integration, "15551234", "wamid.1"))


def test_send_message_network_errors_propagate():
    def responder(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("unreachable", request=request)

    adapter = TelegramAdapter(transport=httpx.MockTransport(responder))
    with pytest.raises(httpx.ConnectError):
        asyncio.run(
            adapter.send_message(_integration("telegram", bot_token="T"), OutgoingMessage(chat_id="1", content="x"))
        )
