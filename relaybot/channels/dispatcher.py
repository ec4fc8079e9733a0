"""Inbound relay: webhook -> completion -> platform reply, with human-like pacing."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

import httpx
from loguru import logger

from relaybot.agent.errors import RelayError
from relaybot.channels.base import PlatformAdapter
from relaybot.channels.behavior import HumanBehavior, random_delay, simulate_delay
from relaybot.channels.events import IncomingMessage, MediaAttachment, OutgoingMessage
from relaybot.channels.registry import get_adapter
from relaybot.config.schema import BehaviorConfig, MediaConfig
from relaybot.store.models import PlatformIntegration

if TYPE_CHECKING:
    from relaybot.agent.engine import CompletionEngine
    from relaybot.agent.memory import ContextStore

ProcessCallback = Callable[[IncomingMessage], Awaitable[str]]
AdapterLookup = Callable[[str], PlatformAdapter]


async def handle_incoming_message(
    integration: PlatformIntegration,
    message: IncomingMessage,
    process: ProcessCallback,
    *,
    behavior: BehaviorConfig | None = None,
    adapter: PlatformAdapter | None = None,
) -> dict[str, Any]:
    """
    Reply to one inbound message the way a person would.

    Reading delay sized to the inbound text, then `process`, then a typing
    indicator and a typing delay sized to the reply, then the reply itself
    threaded onto the inbound message.
    """
    adapter = adapter or get_adapter(integration.platform)
    profile = HumanBehavior.for_integration(integration, behavior)
    try:
        await simulate_delay(profile, len(message.content))
        await adapter.mark_seen(integration, message)

        reply = await process(message)

        await adapter.send_typing_indicator(
            integration, message.chat_id, message_id=message.message_id
        )
        await simulate_delay(profile, len(reply))

        return await adapter.send_message(
            integration,
            OutgoingMessage(
                chat_id=message.chat_id,
                content=reply,
                reply_to_message_id=message.message_id,
            ),
        )
    except Exception as e:
        logger.error(f"Error handling message on {integration.platform}: {e}")
        raise


async def send_message_with_behavior(
    integration: PlatformIntegration,
    message: OutgoingMessage,
    *,
    adapter: PlatformAdapter | None = None,
) -> dict[str, Any]:
    """Typing indicator, a base typing delay, then send."""
    adapter = adapter or get_adapter(integration.platform)
    await adapter.send_typing_indicator(integration, message.chat_id)
    delay_ms = random_delay(integration.typing_delay_min, integration.typing_delay_max)
    await asyncio.sleep(delay_ms / 1000)
    return await adapter.send_message(integration, message)


class MessageRelay:
    """
    Accept webhook payloads and process them in supervised background tasks.

    Webhook handlers must answer quickly, so `accept_webhook` only parses and
    schedules. Each task runs one message end to end; its failures are
    logged and dropped.
    """

    def __init__(
        self,
        engine: CompletionEngine,
        context: ContextStore,
        *,
        behavior: BehaviorConfig | None = None,
        media: MediaConfig | None = None,
        adapters: AdapterLookup = get_adapter,
    ):
        self.engine = engine
        self.context = context
        self.behavior = behavior or BehaviorConfig()
        self.media = media or MediaConfig()
        self.adapters = adapters
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def accept_webhook(self, integration: PlatformIntegration, payload: Any) -> bool:
        """Parse and schedule; True when a user message was queued."""
        adapter = self.adapters(integration.platform)
        if not adapter.validate_webhook(payload):
            logger.debug(f"Ignoring invalid {integration.platform} webhook for {integration.id}")
            return False
        message = adapter.parse_webhook(payload)
        if message is None:
            return False
        message.integration_id = integration.id

        task = asyncio.create_task(self._run(integration, message, adapter))
        self._tasks.add(task)
        task.add_done_callback(lambda done_task: self._tasks.discard(done_task))
        return True

    async def drain(self) -> None:
        """Wait for every in-flight message task."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _run(
        self, integration: PlatformIntegration, message: IncomingMessage, adapter: PlatformAdapter
    ) -> None:
        try:
            await handle_incoming_message(
                integration,
                message,
                lambda msg: self._reply(integration, msg, adapter),
                behavior=self.behavior,
                adapter=adapter,
            )
        except RelayError as e:
            logger.warning(f"Dropped {message.chat_key} message {message.message_id}: {e}")
        except Exception as e:
            logger.error(f"Relay task failed for {message.chat_key}: {e}")

    async def _reply(
        self, integration: PlatformIntegration, message: IncomingMessage, adapter: PlatformAdapter
    ) -> str:
        owner_id = integration.owner_id
        self.context.get_or_create_contact(
            message.sender_id, message.platform, message.chat_id, owner_id
        )
        media = await self._fetch_media(integration, message, adapter)
        result = await self.engine.complete(owner_id, message.chat_key, message.content, media)
        self.context.update_contact_summary(
            message.sender_id, message.platform, owner_id, result.reply_text
        )
        return result.reply_text

    async def _fetch_media(
        self, integration: PlatformIntegration, message: IncomingMessage, adapter: PlatformAdapter
    ) -> list[MediaAttachment]:
        if not message.media_url or not self.media.download_inbound_media:
            return []
        try:
            return [await adapter.download_media(integration, message.media_url)]
        except (RelayError, httpx.HTTPError) as e:
            logger.warning(f"Skipping {message.media_type} from {message.chat_key}: {e}")
            return []
