"""Persisted record types."""

from __future__ import annotations

from datetime import datetime
from typing import Any, ClassVar, Literal

from pydantic import BaseModel, Field

from relaybot.utils.helpers import new_id, utc_now

PlatformName = Literal["telegram", "whatsapp", "messenger"]
PLATFORMS: tuple[str, ...] = ("telegram", "whatsapp", "messenger")


class Record(BaseModel):
    """Base for stored records; `COLLECTION` names the store collection."""

    COLLECTION: ClassVar[str] = ""

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class Credential(Record):
    """Provider API key plus rotation metadata."""

    COLLECTION = "credentials"

    id: str = Field(default_factory=lambda: new_id("key"))
    secret: str
    status: Literal["active", "exhausted", "revoked"] = "active"
    last_used_at: datetime | None = None
    owner_id: str
    created_at: datetime = Field(default_factory=utc_now)

    @property
    def masked(self) -> str:
        if len(self.secret) <= 8:
            return "****"
        return f"{self.secret[:4]}...{self.secret[-4:]}"


class Persona(Record):
    """Named system prompt; at most one active per owner."""

    COLLECTION = "personas"

    id: str = Field(default_factory=lambda: new_id("persona"))
    name: str
    system_prompt: str
    is_active: bool = False
    owner_id: str
    created_at: datetime = Field(default_factory=utc_now)


class Turn(BaseModel):
    role: Literal["user", "model"]
    content: str


class ConversationMemory(Record):
    """Bounded turn history for one (chat_key, owner_id)."""

    COLLECTION = "memories"

    id: str = Field(default_factory=lambda: new_id("mem"))
    chat_key: str
    turns: list[Turn] = Field(default_factory=list)
    owner_id: str
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class AuditLogEntry(Record):
    """Append-only record of one successful completion."""

    COLLECTION = "audit_log"

    id: str = Field(default_factory=lambda: new_id("log"))
    request_payload: dict[str, Any]
    response_payload: str
    raw_provider_response: list[dict[str, Any]] = Field(default_factory=list)
    credential_id_used: str
    owner_id: str
    created_at: datetime = Field(default_factory=utc_now)


class PlatformIntegration(Record):
    """Connection settings for one bot on one chat platform."""

    COLLECTION = "integrations"

    id: str = Field(default_factory=lambda: new_id("int"))
    platform: PlatformName
    name: str = ""
    bot_token: str = ""  # telegram
    access_token: str = ""  # whatsapp / messenger
    phone_number_id: str = ""  # whatsapp
    page_id: str = ""  # messenger
    app_secret: str = ""  # whatsapp / messenger signature check
    verify_token: str = ""  # whatsapp / messenger subscription handshake
    status: Literal["active", "inactive", "error"] = "active"
    typing_delay_min: int = 500
    typing_delay_max: int = 2000
    user_agent: str = ""
    owner_id: str
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class ContactContext(Record):
    """Per external user cross-platform context."""

    COLLECTION = "contacts"

    id: str = Field(default_factory=lambda: new_id("ctx"))
    external_user_id: str
    platform: str
    chat_id: str
    context_summary: str | None = None
    file_references: list[str] = Field(default_factory=list)
    last_interaction: datetime = Field(default_factory=utc_now)
    owner_id: str
    created_at: datetime = Field(default_factory=utc_now)


class PlaygroundMessage(Record):
    """One message exchanged in the local playground."""

    COLLECTION = "playground"

    id: str = Field(default_factory=lambda: new_id("pg"))
    chat_id: str
    role: Literal["user", "assistant"]
    content: str
    media_ids: list[str] = Field(default_factory=list)
    owner_id: str
    created_at: datetime = Field(default_factory=utc_now)
