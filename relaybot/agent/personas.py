"""Persona lookup and activation."""

from __future__ import annotations

import threading

from loguru import logger

from relaybot.store.base import KeyedStore
from relaybot.store.models import Persona

DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant."


class PersonaResolver:
    """Resolve the active system prompt for an owner and manage activation."""

    def __init__(self, store: KeyedStore, default_system_prompt: str = DEFAULT_SYSTEM_PROMPT):
        self.store = store
        self.default_system_prompt = default_system_prompt or DEFAULT_SYSTEM_PROMPT
        self._activation_lock = threading.Lock()

    def list_personas(self, owner_id: str) -> list[Persona]:
        rows = self.store.scan(Persona.COLLECTION, owner_id=owner_id)
        return sorted((Persona.model_validate(row) for row in rows), key=lambda p: p.created_at)

    def get_active(self, owner_id: str) -> Persona | None:
        rows = self.store.scan(Persona.COLLECTION, owner_id=owner_id, is_active=True)
        if not rows:
            return None
        if len(rows) > 1:
            logger.warning(f"Owner {owner_id} has {len(rows)} active personas; using the newest")
        personas = sorted((Persona.model_validate(row) for row in rows), key=lambda p: p.created_at)
        return personas[-1]

    def resolve_system_prompt(self, owner_id: str) -> str:
        persona = self.get_active(owner_id)
        if persona and persona.system_prompt.strip():
            return persona.system_prompt
        return self.default_system_prompt

    def create(
        self, owner_id: str, name: str, system_prompt: str, activate: bool = False
    ) -> Persona:
        persona = Persona(name=name, system_prompt=system_prompt, owner_id=owner_id)
        self.store.put(Persona.COLLECTION, persona.id, persona.to_record())
        if activate:
            persona = self.activate(owner_id, persona.id)
        return persona

    def activate(self, owner_id: str, persona_id: str) -> Persona:
        """Deactivate every persona of the owner, then activate one."""
        with self._activation_lock:
            personas = self.list_personas(owner_id)
            target = next((p for p in personas if p.id == persona_id), None)
            if target is None:
                raise KeyError(f"Unknown persona for owner {owner_id}: {persona_id}")
            for persona in personas:
                if persona.is_active and persona.id != persona_id:
                    persona.is_active = False
                    self.store.put(Persona.COLLECTION, persona.id, persona.to_record())
            target.is_active = True
            self.store.put(Persona.COLLECTION, target.id, target.to_record())
        logger.info(f"Activated persona '{target.name}' ({target.id}) for owner {owner_id}")
        return target

    def delete(self, persona_id: str) -> bool:
        return self.store.delete(Persona.COLLECTION, persona_id)
