"""Completion engine: one chat turn with API key failover."""

from __future__ import annotations

import json
from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from loguru import logger

from relaybot.agent.errors import AllCredentialsFailed, ProviderCallFailed
from relaybot.agent.keys import KeyPoolManager
from relaybot.agent.memory import ContextStore
from relaybot.agent.personas import PersonaResolver
from relaybot.agent.tools.registry import ToolRegistry
from relaybot.providers.base import LLMProvider, LLMResponse, MediaAttachment
from relaybot.store.models import AuditLogEntry, Credential, Turn

if TYPE_CHECKING:
    from relaybot.providers.factory import ProviderFactory
    from relaybot.providers.transcoder import MediaTranscoder


@dataclass
class CompletionResult:
    reply_text: str
    credential_id_used: str


@dataclass
class _Attempt:
    reply_text: str
    raw_responses: list[dict[str, Any]]


def _content_parts(prompt: str, media: Sequence[MediaAttachment]) -> str | list[dict[str, Any]]:
    """User message content; attachments are inlined as base64 data URLs."""
    if not media:
        return prompt
    parts: list[dict[str, Any]] = [{"type": "text", "text": prompt}]
    for item in media:
        if item.mime_type.startswith("image/"):
            parts.append({"type": "image_url", "image_url": {"url": item.to_data_url()}})
        else:
            parts.append({"type": "file", "file": {"file_data": item.to_data_url()}})
    return parts


class CompletionEngine:
    """
    Produce one reply for a conversation.

    Credentials are tried in rotation order, one provider call in flight at a
    time. The first candidate that yields non-empty text wins; every failure
    (exception, error response, timeout, empty reply) moves on to the next
    candidate. Memory, the key's `last_used_at` and the audit log are only
    written when a candidate succeeds.
    """

    def __init__(
        self,
        key_pool: KeyPoolManager,
        personas: PersonaResolver,
        context: ContextStore,
        provider_factory: ProviderFactory,
        tools: ToolRegistry | None = None,
        transcoder: MediaTranscoder | None = None,
        model: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ):
        self.key_pool = key_pool
        self.personas = personas
        self.context = context
        self.provider_factory = provider_factory
        self.tools = tools if tools is not None else ToolRegistry()
        self.transcoder = transcoder
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature

    async def complete(
        self,
        owner_id: str,
        chat_key: str,
        prompt: str,
        media: Sequence[MediaAttachment] = (),
    ) -> CompletionResult:
        """
        Run one chat turn.

        Raises:
            NoCredentialsAvailable: The owner has no active key.
            AllCredentialsFailed: Every candidate failed; carries the last error.
        """
        candidates = self.key_pool.select_ordered_candidates(owner_id)
        system_prompt = self.personas.resolve_system_prompt(owner_id)
        attachments = await self._prepare_media(media)

        async with self.context.conversation_lock(owner_id, chat_key):
            history = self.context.context_window(self.context.load_turns(owner_id, chat_key))
            messages = self._build_messages(system_prompt, history, prompt, attachments)

            last_error: str | None = None
            winner: Credential | None = None
            attempt: _Attempt | None = None
            for credential in candidates:
                try:
                    attempt = await self._attempt(credential, messages)
                except ProviderCallFailed as e:
                    last_error = str(e)
                    logger.warning(f"API key {credential.id} failed: {last_error}")
                    continue
                winner = credential
                break

            if winner is None or attempt is None:
                logger.error(f"All {len(candidates)} API keys failed for owner {owner_id}")
                raise AllCredentialsFailed(last_error)

            self.key_pool.mark_used(winner.id)
            self.context.append_turns(
                owner_id,
                chat_key,
                [Turn(role="user", content=prompt), Turn(role="model", content=attempt.reply_text)],
            )
            self.context.append_audit(
                AuditLogEntry(
                    request_payload={
                        "chat_key": chat_key,
                        "prompt": prompt,
                        "system_prompt": system_prompt,
                        "history_turns": len(history),
                        "media": [
                            {"mime_type": item.mime_type, "size": len(item.data)}
                            for item in attachments
                        ],
                    },
                    response_payload=attempt.reply_text,
                    raw_provider_response=attempt.raw_responses,
                    credential_id_used=winner.id,
                    owner_id=owner_id,
                )
            )

        logger.info(f"Completed turn for {chat_key} with key {winner.id}")
        return CompletionResult(reply_text=attempt.reply_text, credential_id_used=winner.id)

    async def _prepare_media(self, media: Sequence[MediaAttachment]) -> list[MediaAttachment]:
        if self.transcoder is None:
            return list(media)
        return [await self.transcoder.process(item) for item in media]

    def _build_messages(
        self,
        system_prompt: str,
        history: list[Turn],
        prompt: str,
        media: Sequence[MediaAttachment],
    ) -> list[dict[str, Any]]:
        messages: list[dict[str, Any]] = [{"role": "system", "content": system_prompt}]
        for turn in history:
            role = "assistant" if turn.role == "model" else "user"
            messages.append({"role": role, "content": turn.content})
        messages.append({"role": "user", "content": _content_parts(prompt, media)})
        return messages

    async def _call(
        self,
        provider: LLMProvider,
        credential: Credential,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None,
    ) -> LLMResponse:
        try:
            response = await provider.chat(
                messages=messages,
                tools=tools,
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
            )
        except Exception as e:
            raise ProviderCallFailed(credential.id, str(e)) from e
        if response.finish_reason == "error":
            raise ProviderCallFailed(credential.id, response.content or "provider error")
        return response

    async def _attempt(self, credential: Credential, messages: list[dict[str, Any]]) -> _Attempt:
        provider = self.provider_factory(credential)
        tools = self.tools.get_definitions() or None
        messages = list(messages)

        response = await self._call(provider, credential, messages, tools)
        raw_responses = [response.raw]

        # Exactly one tool round trip; tool calls in the follow-up are ignored.
        if response.has_tool_calls:
            messages.append(
                {
                    "role": "assistant",
                    "content": response.content or "",
                    "tool_calls": [
                        {
                            "id": tc.id,
                            "type": "function",
                            "function": {"name": tc.name, "arguments": json.dumps(tc.arguments)},
                        }
                        for tc in response.tool_calls
                    ],
                }
            )
            for tool_call in response.tool_calls:
                logger.debug(f"Executing tool: {tool_call.name}")
                result = await self.tools.execute(tool_call.name, tool_call.arguments)
                messages.append(
                    {
                        "role": "tool",
                        "tool_call_id": tool_call.id,
                        "name": tool_call.name,
                        "content": result,
                    }
                )
            response = await self._call(provider, credential, messages, tools)
            raw_responses.append(response.raw)

        reply_text = (response.content or "").strip()
        if not reply_text:
            raise ProviderCallFailed(credential.id, "Empty response from provider")
        return _Attempt(reply_text=reply_text, raw_responses=raw_responses)
