"""Durable record storage."""

from relaybot.store.base import KeyedStore
from relaybot.store.json_store import JsonFileStore
from relaybot.store.models import (
    PLATFORMS,
    AuditLogEntry,
    ContactContext,
    ConversationMemory,
    Credential,
    Persona,
    PlatformIntegration,
    PlaygroundMessage,
    Turn,
)

__all__ = [
    "KeyedStore",
    "JsonFileStore",
    "PLATFORMS",
    "AuditLogEntry",
    "ContactContext",
    "ConversationMemory",
    "Credential",
    "Persona",
    "PlatformIntegration",
    "PlaygroundMessage",
    "Turn",
]
