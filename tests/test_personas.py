from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from relaybot.agent.personas import DEFAULT_SYSTEM_PROMPT, PersonaResolver
from relaybot.store.json_store import JsonFileStore
from relaybot.store.models import Persona

T0 = datetime(2025, 1, 1, tzinfo=timezone.utc)


def _resolver(tmp_path: Path, default: str = DEFAULT_SYSTEM_PROMPT) -> PersonaResolver:
    return PersonaResolver(JsonFileStore(tmp_path), default)


def test_default_prompt_when_no_active_persona(tmp_path: Path):
    resolver = _resolver(tmp_path)
    resolver.create("admin", "Pirate", "Talk like a pirate.")

    assert resolver.get_active("admin") is None
    assert resolver.resolve_system_prompt("admin") == "You are a helpful assistant."


def test_configured_default_prompt_is_used(tmp_path: Path):
    resolver = _resolver(tmp_path, default="Be brief.")
    assert resolver.resolve_system_prompt("admin") == "Be brief."


def test_activate_keeps_a_single_active_persona(tmp_path: Path):
    resolver = _resolver(tmp_path)
    first = resolver.create("admin", "First", "You are first.", activate=True)
    second = resolver.create("admin", "Second", "You are second.")

    resolver.activate("admin", second.id)

    active = [p for p in resolver.list_personas("admin") if p.is_active]
    assert [p.id for p in active] == [second.id]
    assert resolver.resolve_system_prompt("admin") == "You are second."
    assert first.id != second.id


def test_activation_is_scoped_to_owner(tmp_path: Path):
    resolver = _resolver(tmp_path)
    mine = resolver.create("admin", "Mine", "Mine.", activate=True)
    theirs = resolver.create("other", "Theirs", "Theirs.", activate=True)

    assert resolver.get_active("admin").id == mine.id
    assert resolver.get_active("other").id == theirs.id


def test_activate_unknown_persona_raises(tmp_path: Path):
    resolver = _resolver(tmp_path)
    resolver.create("admin", "Only", "Only.", activate=True)
    with pytest.raises(KeyError):
        resolver.activate("admin", "persona_missing")
    assert resolver.get_active("admin") is not None


def test_multiple_active_rows_resolve_to_newest(tmp_path: Path):
    store = JsonFileStore(tmp_path)
    resolver = PersonaResolver(store)
    old = Persona(
        name="Old", system_prompt="Old.", owner_id="admin", is_active=True, created_at=T0
    )
    new = Persona(
        name="New",
        system_prompt="New.",
        owner_id="admin",
        is_active=True,
        created_at=T0 + timedelta(minutes=1),
    )
    store.put(Persona.COLLECTION, old.id, old.to_record())
    store.put(Persona.COLLECTION, new.id, new.to_record())

    assert resolver.resolve_system_prompt("admin") == "New."


def test_delete_active_persona_falls_back_to_default(tmp_path: Path):
    resolver = _resolver(tmp_path)
    persona = resolver.create("admin", "Gone", "Soon gone.", activate=True)
    assert resolver.delete(persona.id) is True
    assert resolver.resolve_system_prompt("admin") == DEFAULT_SYSTEM_PROMPT
