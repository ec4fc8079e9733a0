"""HTTP gateway: platform webhooks, playground chat and admin read endpoints."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import parse_qsl, unquote, urlsplit

from loguru import logger

from relaybot.agent.engine import CompletionEngine
from relaybot.agent.errors import RelayError
from relaybot.agent.memory import ContextStore
from relaybot.channels.dispatcher import MessageRelay
from relaybot.channels.events import MediaAttachment
from relaybot.channels.integrations import IntegrationManager
from relaybot.channels.signatures import verify_request, verify_subscription
from relaybot.config.schema import GatewayConfig
from relaybot.store.models import PLATFORMS
from relaybot.utils.helpers import utc_now

MAX_BODY_BYTES = 20 * 1024 * 1024
JSON_CONTENT_TYPE = "application/json; charset=utf-8"
TEXT_CONTENT_TYPE = "text/plain; charset=utf-8"

_REASONS = {
    200: "OK",
    400: "Bad Request",
    401: "Unauthorized",
    403: "Forbidden",
    404: "Not Found",
    405: "Method Not Allowed",
    413: "Payload Too Large",
    500: "Internal Server Error",
}


class BadRequest(ValueError):
    """Request line, headers or body could not be read."""


@dataclass
class Request:
    method: str
    path: str
    query: dict[str, str] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    def json(self) -> Any:
        if not self.body:
            return {}
        return json.loads(self.body.decode("utf-8"))


@dataclass
class Response:
    status: int
    body: str
    content_type: str = JSON_CONTENT_TYPE


def json_response(status: int, payload: Any) -> Response:
    return Response(status, json.dumps(payload, ensure_ascii=False, default=str))


class GatewayHttpServer:
    """
    Serve the webhook and playground API over asyncio streams.

    Webhook POSTs are acknowledged with `{"ok": true}` as soon as the payload
    is queued on the relay; the reply is produced in the background.
    """

    def __init__(
        self,
        *,
        relay: MessageRelay,
        engine: CompletionEngine,
        context: ContextStore,
        integrations: IntegrationManager,
        config: GatewayConfig | None = None,
    ):
        self.relay = relay
        self.engine = engine
        self.context = context
        self.integrations = integrations
        self.config = config or GatewayConfig()
        self.host = str(self.config.host or "127.0.0.1").strip()
        self.port = max(0, int(self.config.port))
        self.owner_id = self.config.owner_id
        self._server: asyncio.AbstractServer | None = None

    @property
    def is_running(self) -> bool:
        return self._server is not None

    @property
    def bound_port(self) -> int:
        if not self._server or not self._server.sockets:
            return self.port
        return int(self._server.sockets[0].getsockname()[1])

    async def start(self) -> None:
        if self._server:
            return
        self._server = await asyncio.start_server(
            self._handle_client, host=self.host, port=self.port
        )
        logger.info(f"Gateway listening on {self.host}:{self.bound_port}")

    async def stop(self) -> None:
        if not self._server:
            return
        self._server.close()
        await self._server.wait_closed()
        self._server = None
        await self.relay.drain()

    def _http_response(self, response: Response) -> bytes:
        reason = _REASONS.get(response.status, "OK")
        data = response.body.encode("utf-8")
        headers = [
            f"HTTP/1.1 {response.status} {reason}",
            f"Content-Type: {response.content_type}",
            f"Content-Length: {len(data)}",
            "Connection: close",
            "",
            "",
        ]
        return "\r\n".join(headers).encode("utf-8") + data

    async def _read_request(self, reader: asyncio.StreamReader) -> Request:
        try:
            head = await reader.readuntil(b"\r\n\r\n")
        except (asyncio.IncompleteReadError, asyncio.LimitOverrunError) as e:
            raise BadRequest("incomplete request head") from e

        lines = head.decode("latin-1").split("\r\n")
        parts = lines[0].split()
        if len(parts) < 2:
            raise BadRequest("bad request line")

        headers: dict[str, str] = {}
        for line in lines[1:]:
            if not line:
                continue
            name, sep, value = line.partition(":")
            if sep:
                headers[name.strip().lower()] = value.strip()

        try:
            length = int(headers.get("content-length", "0") or 0)
        except ValueError as e:
            raise BadRequest("bad content-length") from e
        if length < 0:
            raise BadRequest("bad content-length")
        if length > MAX_BODY_BYTES:
            raise OverflowError(length)

        body = b""
        if length:
            try:
                body = await reader.readexactly(length)
            except asyncio.IncompleteReadError as e:
                raise BadRequest("truncated body") from e

        target = urlsplit(parts[1])
        return Request(
            method=parts[0].upper(),
            path=unquote(target.path or "/"),
            query=dict(parse_qsl(target.query or "", keep_blank_values=True)),
            headers=headers,
            body=body,
        )

    async def _handle_client(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        try:
            try:
                request = await self._read_request(reader)
            except BadRequest as e:
                response = json_response(400, {"error": str(e)})
            except OverflowError:
                response = json_response(413, {"error": "payload too large"})
            else:
                response = await self._dispatch(request)
            writer.write(self._http_response(response))
            await writer.drain()
        except Exception as e:
            logger.error(f"Gateway request failed: {e}")
            writer.write(self._http_response(json_response(500, {"error": "internal error"})))
            await writer.drain()
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except (ConnectionError, OSError) as e:
                logger.debug(f"Gateway connection close failed: {e}")

    async def _dispatch(self, request: Request) -> Response:
        segments = [part for part in request.path.split("/") if part]
        if segments[:1] != ["api"]:
            return json_response(404, {"error": "not found"})
        route = segments[1:]

        if route == ["health"]:
            if request.method != "GET":
                return json_response(405, {"error": "method not allowed"})
            return json_response(200, {"status": "ok", "timestamp": utc_now().isoformat()})

        if len(route) == 3 and route[0] == "webhooks":
            platform, integration_id = route[1], route[2]
            if request.method == "POST":
                return self._webhook(platform, integration_id, request)
            if request.method == "GET":
                return self._verify(platform, integration_id, request)
            return json_response(405, {"error": "method not allowed"})

        if not self._authorized(request):
            return json_response(401, {"error": "unauthorized"})

        if route == ["bot", "chat"] and request.method == "POST":
            return await self._chat(request)
        if route == ["bot", "clear-memory"] and request.method == "POST":
            return self._clear_memory(request)
        if route == ["logs"] and request.method == "GET":
            return self._logs(request)
        if route == ["playground", "sessions"] and request.method == "GET":
            return json_response(200, self.context.playground_sessions(self.owner_id))
        if len(route) == 3 and route[:2] == ["playground", "history"] and request.method == "GET":
            history = self.context.playground_history(self.owner_id, route[2])
            return json_response(200, [message.to_record() for message in history])
        if len(route) == 3 and route[:2] == ["playground", "session"] and request.method == "DELETE":
            deleted = self.context.delete_playground_session(self.owner_id, route[2])
            return json_response(200, {"success": True, "deleted": deleted})
        if route == ["playground", "history"] and request.method == "DELETE":
            deleted = self.context.clear_playground(self.owner_id)
            return json_response(200, {"success": True, "deleted": deleted})
        if route == ["context", "recent"] and request.method == "GET":
            contacts = self.context.recent_contacts(self.owner_id)
            return json_response(200, [contact.to_record() for contact in contacts])
        return json_response(404, {"error": "not found"})

    def _authorized(self, request: Request) -> bool:
        token = self.config.admin_token
        if not token:
            return True
        return request.headers.get("authorization", "") == f"Bearer {token}"

    def _webhook(self, platform: str, integration_id: str, request: Request) -> Response:
        integration = self.integrations.get(integration_id) if platform in PLATFORMS else None
        if integration is None or integration.platform != platform or integration.status != "active":
            return json_response(404, {"error": "Integration not found"})
        if not verify_request(platform, request.body, request.headers, integration.app_secret):
            logger.warning(f"Rejected {platform} webhook for {integration_id}: bad signature")
            return json_response(401, {"error": "Invalid signature"})
        try:
            payload = request.json()
        except ValueError as e:
            logger.debug(f"Unparseable {platform} webhook body for {integration_id}: {e}")
            return json_response(200, {"ok": True})
        self.relay.accept_webhook(integration, payload)
        return json_response(200, {"ok": True})

    def _verify(self, platform: str, integration_id: str, request: Request) -> Response:
        if platform not in ("whatsapp", "messenger"):
            return json_response(405, {"error": "method not allowed"})
        integration = self.integrations.get(integration_id)
        if integration is None or integration.platform != platform:
            return json_response(404, {"error": "Integration not found"})
        if "hub.mode" not in request.query or "hub.challenge" not in request.query:
            return Response(400, "Bad Request", TEXT_CONTENT_TYPE)
        expected = integration.verify_token or self.config.verify_token
        challenge = verify_subscription(request.query, expected)
        if challenge is None:
            return Response(403, "Forbidden", TEXT_CONTENT_TYPE)
        logger.info(f"Webhook verified for {platform} integration {integration_id}")
        return Response(200, challenge, TEXT_CONTENT_TYPE)

    async def _chat(self, request: Request) -> Response:
        try:
            payload = request.json()
            if not isinstance(payload, dict):
                raise ValueError("body must be a JSON object")
            media = [
                MediaAttachment.from_base64(str(item["data"]), str(item["mimeType"]))
                for item in payload.get("media") or []
            ]
        except (KeyError, TypeError, ValueError) as e:
            return json_response(400, {"error": f"invalid request: {e}"})

        prompt = str(payload.get("prompt") or "")
        if not prompt and not media:
            return json_response(400, {"error": "prompt is required"})
        chat_id = str(payload.get("chatId") or "default")

        self.context.save_playground_message(chat_id, "user", prompt, self.owner_id)
        try:
            result = await self.engine.complete(self.owner_id, chat_id, prompt, media)
        except RelayError as e:
            logger.warning(f"Playground chat failed: {e}")
            return json_response(500, {"error": str(e)})
        self.context.save_playground_message(chat_id, "assistant", result.reply_text, self.owner_id)
        return json_response(200, {"response": result.reply_text, "keyId": result.credential_id_used})

    def _clear_memory(self, request: Request) -> Response:
        try:
            payload = request.json()
        except ValueError as e:
            return json_response(400, {"error": f"invalid request: {e}"})
        if not isinstance(payload, dict):
            payload = {}
        chat_id = str(payload.get("chatId") or "default")
        self.context.clear_memory(self.owner_id, chat_id)
        return json_response(200, {"success": True})

    def _logs(self, request: Request) -> Response:
        try:
            limit = max(1, min(100, int(request.query.get("limit", "100"))))
        except ValueError:
            limit = 100
        entries = self.context.list_audit(self.owner_id, limit=limit)
        return json_response(200, [entry.to_record() for entry in entries])
