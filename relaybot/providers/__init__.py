"""LLM provider abstraction module."""

from relaybot.providers.base import LLMProvider, LLMResponse, MediaAttachment, ToolCallRequest
from relaybot.providers.factory import ProviderFactory, build_provider, provider_factory
from relaybot.providers.litellm_provider import LiteLLMProvider
from relaybot.providers.transcoder import MediaTranscoder

__all__ = [
    "LLMProvider",
    "LLMResponse",
    "ToolCallRequest",
    "MediaAttachment",
    "LiteLLMProvider",
    "MediaTranscoder",
    "ProviderFactory",
    "build_provider",
    "provider_factory",
]
