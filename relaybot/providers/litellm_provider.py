"""LiteLLM provider implementation."""

from __future__ import annotations

import json
from typing import Any

import litellm
from litellm import acompletion
from loguru import logger

from relaybot.providers.base import LLMProvider, LLMResponse, ToolCallRequest

# Bare model names that need a LiteLLM routing prefix.
_MODEL_PREFIXES = (
    ("gemini", "gemini/"),
    ("claude", "anthropic/"),
    ("gpt", "openai/"),
)


class LiteLLMProvider(LLMProvider):
    """
    Provider backed by LiteLLM's unified completion API.

    Defaults to Gemini models; the API key is passed per request so several
    keys can be used side by side in one process.
    """

    def __init__(
        self,
        api_key: str | None = None,
        api_base: str | None = None,
        default_model: str = "gemini/gemini-1.5-flash",
        extra_headers: dict[str, str] | None = None,
        timeout: float | None = None,
    ):
        super().__init__(api_key, api_base)
        self.default_model = default_model
        self.extra_headers = extra_headers or {}
        self.timeout = timeout if timeout and timeout > 0 else None

        litellm.suppress_debug_info = True
        litellm.drop_params = True

    def _resolve_model(self, model: str) -> str:
        """Add a LiteLLM provider prefix to bare model names."""
        if "/" in model:
            return model
        lowered = model.lower()
        for keyword, prefix in _MODEL_PREFIXES:
            if lowered.startswith(keyword):
                return f"{prefix}{model}"
        return model

    async def chat(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        model: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ) -> LLMResponse:
        kwargs: dict[str, Any] = {
            "model": self._resolve_model(model or self.default_model),
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.api_base:
            kwargs["api_base"] = self.api_base
        if self.extra_headers:
            kwargs["extra_headers"] = self.extra_headers
        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = "auto"

        if self.timeout:
            kwargs["timeout"] = self.timeout

        try:
            response = await acompletion(**kwargs)
        except Exception as e:
            return LLMResponse(content=f"Error calling LLM: {e}", finish_reason="error")
        return self._parse_response(response)

    def _parse_response(self, response: Any) -> LLMResponse:
        """Convert a LiteLLM ModelResponse into our LLMResponse."""
        choice = response.choices[0]
        message = choice.message

        tool_calls: list[ToolCallRequest] = []
        for tc in getattr(message, "tool_calls", None) or []:
            raw_args = tc.function.arguments
            if isinstance(raw_args, str):
                try:
                    args = json.loads(raw_args) if raw_args else {}
                except json.JSONDecodeError:
                    logger.debug(f"Non-JSON tool arguments for {tc.function.name}: {raw_args[:80]}")
                    args = {"raw": raw_args}
            else:
                args = dict(raw_args or {})
            tool_calls.append(ToolCallRequest(id=tc.id, name=tc.function.name, arguments=args))

        usage: dict[str, int] = {}
        if getattr(response, "usage", None):
            usage = {
                "prompt_tokens": int(getattr(response.usage, "prompt_tokens", 0) or 0),
                "completion_tokens": int(getattr(response.usage, "completion_tokens", 0) or 0),
                "total_tokens": int(getattr(response.usage, "total_tokens", 0) or 0),
            }

        raw: dict[str, Any] = {}
        if hasattr(response, "model_dump"):
            try:
                raw = response.model_dump()
            except Exception as e:
                logger.debug(f"Could not serialize provider response: {e}")

        return LLMResponse(
            content=message.content,
            tool_calls=tool_calls,
            finish_reason=choice.finish_reason or "stop",
            usage=usage,
            raw=raw,
        )

    def get_default_model(self) -> str:
        return self.default_model
