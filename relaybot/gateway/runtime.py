"""Wire stores, engine and relay together from a Config."""

from __future__ import annotations

from dataclasses import dataclass

from relaybot.agent.engine import CompletionEngine
from relaybot.agent.keys import KeyPoolManager
from relaybot.agent.memory import ContextStore
from relaybot.agent.personas import PersonaResolver
from relaybot.agent.tools import default_registry
from relaybot.channels.dispatcher import MessageRelay
from relaybot.channels.integrations import IntegrationManager
from relaybot.config.schema import Config
from relaybot.gateway.server import GatewayHttpServer
from relaybot.providers.factory import ProviderFactory, provider_factory
from relaybot.providers.transcoder import MediaTranscoder
from relaybot.store.base import KeyedStore
from relaybot.store.json_store import JsonFileStore


@dataclass
class Runtime:
    config: Config
    store: KeyedStore
    key_pool: KeyPoolManager
    personas: PersonaResolver
    context: ContextStore
    integrations: IntegrationManager
    engine: CompletionEngine
    relay: MessageRelay

    @classmethod
    def from_config(
        cls,
        config: Config,
        store: KeyedStore | None = None,
        providers: ProviderFactory | None = None,
    ) -> Runtime:
        store = store if store is not None else JsonFileStore(config.data_path)
        key_pool = KeyPoolManager(store)
        personas = PersonaResolver(store, config.persona.default_system_prompt)
        context = ContextStore(
            store,
            persisted_turns=config.memory.persisted_turns,
            context_turns=config.memory.context_turns,
        )
        engine = CompletionEngine(
            key_pool,
            personas,
            context,
            providers or provider_factory(config),
            tools=default_registry(),
            transcoder=MediaTranscoder(
                enabled=config.media.transcode_voice_notes,
                ffmpeg_path=config.media.ffmpeg_path,
            ),
            model=config.provider.model,
            max_tokens=config.provider.max_tokens,
            temperature=config.provider.temperature,
        )
        relay = MessageRelay(engine, context, behavior=config.behavior, media=config.media)
        return cls(
            config=config,
            store=store,
            key_pool=key_pool,
            personas=personas,
            context=context,
            integrations=IntegrationManager(store),
            engine=engine,
            relay=relay,
        )

    def gateway_server(self) -> GatewayHttpServer:
        return GatewayHttpServer(
            relay=self.relay,
            engine=self.engine,
            context=self.context,
            integrations=self.integrations,
            config=self.config.gateway,
        )
