"""Base adapter interface for chat platforms."""

from __future__ import annotations

import random
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any

import httpx
from loguru import logger

from relaybot.agent.errors import WebhookParseFailure
from relaybot.channels.events import IncomingMessage, MediaAttachment, OutgoingMessage
from relaybot.store.models import PlatformIntegration
from relaybot.utils.helpers import utc_now

GRAPH_API_BASE = "https://graph.facebook.com/v18.0"

USER_AGENTS = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) "
    "Version/17.2 Safari/605.1.15",
    "Mozilla/5.0 (Linux; Android 14; Pixel 8) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Mobile Safari/537.36",
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_2 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) "
    "Version/17.2 Mobile/15E148 Safari/604.1",
)


def pick_user_agent(integration: PlatformIntegration | None = None) -> str:
    """Pinned integration user agent, or a random one from the pool."""
    if integration is not None and integration.user_agent:
        return integration.user_agent
    return random.choice(USER_AGENTS)


def epoch_to_datetime(value: Any, scale: float = 1) -> datetime:
    """UTC datetime for a platform epoch value; out-of-range or junk values map to now."""
    try:
        return datetime.fromtimestamp(float(value) / scale, tz=timezone.utc)
    except (OverflowError, OSError, TypeError, ValueError):
        return utc_now()


class PlatformAdapter(ABC):
    """
    Abstract base class for chat platform adapters.

    Adapters are stateless: every call receives the integration it acts for.
    Outbound HTTP goes through a short-lived `httpx.AsyncClient`; pass a
    `transport` to route requests elsewhere (tests use `httpx.MockTransport`).
    """

    platform: str = "base"

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None, timeout: float = 20.0):
        self.transport = transport
        self.timeout = timeout

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport, timeout=self.timeout)

    def _headers(
        self, integration: PlatformIntegration, extra: dict[str, str] | None = None
    ) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "User-Agent": pick_user_agent(integration),
        }
        if extra:
            headers.update(extra)
        return headers

    @staticmethod
    def _decode(response: httpx.Response) -> dict[str, Any]:
        try:
            payload = response.json()
        except ValueError:
            return {"raw": response.text}
        return payload if isinstance(payload, dict) else {"result": payload}

    async def _post_json(
        self,
        url: str,
        integration: PlatformIntegration,
        body: dict[str, Any],
        *,
        params: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        async with self._client() as client:
            response = await client.post(
                url, json=body, params=params, headers=self._headers(integration, headers)
            )
        if response.status_code >= 400:
            logger.warning(f"{self.platform} API returned HTTP {response.status_code} for {url}")
        return self._decode(response)

    @abstractmethod
    async def send_message(
        self, integration: PlatformIntegration, message: OutgoingMessage
    ) -> dict[str, Any]:
        """
        Send a message through this platform.

        Returns:
            The decoded platform API response.
        """
        pass

    async def send_typing_indicator(
        self,
        integration: PlatformIntegration,
        chat_id: str,
        message_id: str | None = None,
    ) -> None:
        """Best-effort typing signal; failures are logged and ignored."""
        try:
            await self._send_typing(integration, chat_id, message_id)
        except Exception as e:
            logger.debug(f"{self.platform} typing indicator failed for {chat_id}: {e}")

    @abstractmethod
    async def _send_typing(
        self, integration: PlatformIntegration, chat_id: str, message_id: str | None
    ) -> None:
        pass

    def parse_webhook(self, payload: Any) -> IncomingMessage | None:
        """
        Turn a webhook body into an IncomingMessage.

        Returns None for anything that is not a user message (delivery
        receipts, status updates, malformed bodies). Never raises.
        """
        if not isinstance(payload, dict):
            return None
        try:
            return self._parse(payload)
        except (
            AttributeError,
            IndexError,
            KeyError,
            OverflowError,
            TypeError,
            ValueError,
            WebhookParseFailure,
        ) as e:
            logger.debug(f"Ignoring unparseable {self.platform} webhook: {e}")
            return None

    @abstractmethod
    def _parse(self, payload: dict[str, Any]) -> IncomingMessage | None:
        pass

    @abstractmethod
    def validate_webhook(self, payload: Any, signature: str | None = None) -> bool:
        """Structural check of a webhook body."""
        pass

    @abstractmethod
    async def download_media(
        self, integration: PlatformIntegration, media_ref: str
    ) -> MediaAttachment:
        """Fetch inbound media referenced by `IncomingMessage.media_url`."""
        pass

    async def mark_seen(self, integration: PlatformIntegration, message: IncomingMessage) -> None:
        """Platform read receipt; no-op unless the platform supports one."""
        return None
