"""Provider factory: one provider instance per credential."""

from __future__ import annotations

from collections.abc import Callable

from relaybot.config.schema import Config
from relaybot.providers.base import LLMProvider
from relaybot.providers.litellm_provider import LiteLLMProvider
from relaybot.store.models import Credential

ProviderFactory = Callable[[Credential], LLMProvider]


def build_provider(credential: Credential, config: Config) -> LLMProvider:
    """Build the runtime provider scoped to one credential."""
    provider_cfg = config.provider
    return LiteLLMProvider(
        api_key=credential.secret,
        api_base=provider_cfg.api_base,
        default_model=provider_cfg.model,
        extra_headers=provider_cfg.extra_headers,
        timeout=provider_cfg.request_timeout,
    )


def provider_factory(config: Config) -> ProviderFactory:
    """Bind `build_provider` to a config for use by the completion engine."""

    def _build(credential: Credential) -> LLMProvider:
        return build_provider(credential, config)

    return _build
