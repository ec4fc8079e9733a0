"""Context store: conversation memory, audit log, contacts and playground history."""

from __future__ import annotations

import asyncio
import weakref
from collections.abc import Iterable

from relaybot.store.base import KeyedStore
from relaybot.store.models import (
    AuditLogEntry,
    ContactContext,
    ConversationMemory,
    PlaygroundMessage,
    Turn,
)
from relaybot.utils.helpers import utc_now

PERSISTED_TURNS = 50
CONTEXT_TURNS = 20
SUMMARY_CHARS = 200


def _memory_key(owner_id: str, chat_key: str) -> str:
    return f"{owner_id}::{chat_key}"


class ContextStore:
    """
    Owns ConversationMemory and AuditLogEntry records.

    Memory is a sliding window: `append_turns` keeps only the newest
    `persisted_turns` turns. Callers that read, extend and write a
    conversation should hold `conversation_lock` for the whole sequence.
    """

    def __init__(
        self,
        store: KeyedStore,
        persisted_turns: int = PERSISTED_TURNS,
        context_turns: int = CONTEXT_TURNS,
    ):
        self.store = store
        self.persisted_turns = max(2, int(persisted_turns))
        self.context_turns = max(0, int(context_turns))
        # Entries vanish once no turn holds the lock
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    # Conversation memory

    def conversation_lock(self, owner_id: str, chat_key: str) -> asyncio.Lock:
        key = _memory_key(owner_id, chat_key)
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def get_memory(self, owner_id: str, chat_key: str) -> ConversationMemory | None:
        row = self.store.get(ConversationMemory.COLLECTION, _memory_key(owner_id, chat_key))
        return ConversationMemory.model_validate(row) if row else None

    def load_turns(self, owner_id: str, chat_key: str) -> list[Turn]:
        memory = self.get_memory(owner_id, chat_key)
        return list(memory.turns) if memory else []

    def context_window(self, turns: list[Turn]) -> list[Turn]:
        """Turns sent to the provider as prior context."""
        if self.context_turns == 0:
            return []
        return turns[-self.context_turns:]

    def append_turns(
        self, owner_id: str, chat_key: str, turns: Iterable[Turn]
    ) -> ConversationMemory:
        memory = self.get_memory(owner_id, chat_key) or ConversationMemory(
            chat_key=chat_key, owner_id=owner_id
        )
        memory.turns = [*memory.turns, *turns][-self.persisted_turns:]
        memory.updated_at = utc_now()
        self.store.put(
            ConversationMemory.COLLECTION, _memory_key(owner_id, chat_key), memory.to_record()
        )
        return memory

    def clear_memory(self, owner_id: str, chat_key: str) -> bool:
        return self.store.delete(ConversationMemory.COLLECTION, _memory_key(owner_id, chat_key))

    # Audit log

    def append_audit(self, entry: AuditLogEntry) -> AuditLogEntry:
        if self.store.get(AuditLogEntry.COLLECTION, entry.id) is not None:
            raise ValueError(f"Audit entry {entry.id} already exists")
        self.store.put(AuditLogEntry.COLLECTION, entry.id, entry.to_record())
        return entry

    def list_audit(self, owner_id: str, limit: int = 100) -> list[AuditLogEntry]:
        rows = self.store.scan(AuditLogEntry.COLLECTION, owner_id=owner_id)
        entries = sorted(
            (AuditLogEntry.model_validate(row) for row in rows),
            key=lambda entry: entry.created_at,
            reverse=True,
        )
        return entries[: max(0, limit)]

    # Contacts

    def get_or_create_contact(
        self, external_user_id: str, platform: str, chat_id: str, owner_id: str
    ) -> ContactContext:
        key = f"{owner_id}::{platform}::{external_user_id}"
        row = self.store.get(ContactContext.COLLECTION, key)
        if row:
            return ContactContext.model_validate(row)
        contact = ContactContext(
            external_user_id=external_user_id,
            platform=platform,
            chat_id=chat_id,
            owner_id=owner_id,
        )
        self.store.put(ContactContext.COLLECTION, key, contact.to_record())
        return contact

    def update_contact_summary(
        self, external_user_id: str, platform: str, owner_id: str, summary: str
    ) -> ContactContext | None:
        key = f"{owner_id}::{platform}::{external_user_id}"
        row = self.store.get(ContactContext.COLLECTION, key)
        if not row:
            return None
        contact = ContactContext.model_validate(row)
        contact.context_summary = (summary or "")[:SUMMARY_CHARS]
        contact.last_interaction = utc_now()
        self.store.put(ContactContext.COLLECTION, key, contact.to_record())
        return contact

    def contacts_for_user(self, external_user_id: str, owner_id: str) -> list[ContactContext]:
        rows = self.store.scan(
            ContactContext.COLLECTION, external_user_id=external_user_id, owner_id=owner_id
        )
        contacts = [ContactContext.model_validate(row) for row in rows]
        return sorted(contacts, key=lambda c: c.last_interaction, reverse=True)

    def recent_contacts(self, owner_id: str, limit: int = 20) -> list[ContactContext]:
        rows = self.store.scan(ContactContext.COLLECTION, owner_id=owner_id)
        contacts = sorted(
            (ContactContext.model_validate(row) for row in rows),
            key=lambda c: c.last_interaction,
            reverse=True,
        )
        return contacts[: max(0, limit)]

    # Playground

    def save_playground_message(
        self,
        chat_id: str,
        role: str,
        content: str,
        owner_id: str,
        media_ids: list[str] | None = None,
    ) -> PlaygroundMessage:
        message = PlaygroundMessage(
            chat_id=chat_id,
            role=role,
            content=content,
            owner_id=owner_id,
            media_ids=list(media_ids or []),
        )
        self.store.put(PlaygroundMessage.COLLECTION, message.id, message.to_record())
        return message

    def playground_history(
        self, owner_id: str, chat_id: str, limit: int = 50
    ) -> list[PlaygroundMessage]:
        rows = self.store.scan(PlaygroundMessage.COLLECTION, owner_id=owner_id, chat_id=chat_id)
        messages = sorted(
            (PlaygroundMessage.model_validate(row) for row in rows),
            key=lambda m: (m.created_at, m.id),
        )
        return messages[: max(0, limit)]

    def playground_sessions(self, owner_id: str) -> list[dict[str, object]]:
        """Chat ids with message counts, most recently active first."""
        sessions: dict[str, dict[str, object]] = {}
        for row in self.store.scan(PlaygroundMessage.COLLECTION, owner_id=owner_id):
            message = PlaygroundMessage.model_validate(row)
            entry = sessions.setdefault(
                message.chat_id,
                {"chat_id": message.chat_id, "message_count": 0, "last_message": message.created_at},
            )
            entry["message_count"] = int(entry["message_count"]) + 1
            if message.created_at > entry["last_message"]:
                entry["last_message"] = message.created_at
        return sorted(sessions.values(), key=lambda s: s["last_message"], reverse=True)

    def delete_playground_session(self, owner_id: str, chat_id: str) -> int:
        rows = self.store.scan(PlaygroundMessage.COLLECTION, owner_id=owner_id, chat_id=chat_id)
        for row in rows:
            self.store.delete(PlaygroundMessage.COLLECTION, str(row.get("id", "")))
        return len(rows)

    def clear_playground(self, owner_id: str) -> int:
        rows = self.store.scan(PlaygroundMessage.COLLECTION, owner_id=owner_id)
        for row in rows:
            self.store.delete(PlaygroundMessage.COLLECTION, str(row.get("id", "")))
        return len(rows)
