import asyncio
import gc
from pathlib import Path

import pytest

from relaybot.agent.memory import ContextStore
from relaybot.store.json_store import JsonFileStore
from relaybot.store.models import AuditLogEntry, Turn


def _context(tmp_path: Path, **kwargs) -> ContextStore:
    return ContextStore(JsonFileStore(tmp_path), **kwargs)


def _turns(count: int, start: int = 0) -> list[Turn]:
    return [
        Turn(role="user" if i % 2 == 0 else "model", content=f"turn {i}")
        for i in range(start, start + count)
    ]


def test_missing_memory_loads_empty(tmp_path: Path):
    assert _context(tmp_path).load_turns("admin", "telegram-1") == []


def test_append_keeps_newest_persisted_turns(tmp_path: Path):
    context = _context(tmp_path)
    for batch in range(30):
        context.append_turns("admin", "telegram-1", _turns(2, start=batch * 2))

    turns = context.load_turns("admin", "telegram-1")
    assert len(turns) == 50
    assert turns[0].content == "turn 10"
    assert turns[-1].content == "turn 59"


def test_single_record_per_conversation(tmp_path: Path):
    store = JsonFileStore(tmp_path)
    context = ContextStore(store)
    first = context.append_turns("admin", "chat", _turns(2))
    second = context.append_turns("admin", "chat", _turns(2, start=2))

    assert first.id == second.id
    assert len(store.scan("memories")) == 1
    assert second.updated_at >= first.updated_at


def test_memory_is_scoped_by_owner_and_chat(tmp_path: Path):
    context = _context(tmp_path)
    context.append_turns("admin", "telegram-1", _turns(2))
    context.append_turns("admin", "telegram-2", _turns(4))
    context.append_turns("other", "telegram-1", _turns(6))

    assert len(context.load_turns("admin", "telegram-1")) == 2
    assert len(context.load_turns("admin", "telegram-2")) == 4
    assert len(context.load_turns("other", "telegram-1")) == 6


def test_context_window_is_last_twenty_turns(tmp_path: Path):
    context = _context(tmp_path)
    window = context.context_window(_turns(50))
    assert len(window) == 20
    assert window[0].content == "turn 30"

    assert _context(tmp_path, context_turns=0).context_window(_turns(4)) == []


def test_clear_memory(tmp_path: Path):
    context = _context(tmp_path)
    context.append_turns("admin", "default", _turns(2))
    assert context.clear_memory("admin", "default") is True
    assert context.load_turns("admin", "default") == []
    assert context.clear_memory("admin", "default") is False


def test_conversation_lock_is_shared_per_key(tmp_path: Path):
    context = _context(tmp_path)

    async def run():
        a = context.conversation_lock("admin", "chat")
        b = context.conversation_lock("admin", "chat")
        c = context.conversation_lock("admin", "other")
        return a is b, a is c

    same, different = asyncio.run(run())
    assert same is True
    assert different is False


def test_conversation_locks_are_released_after_use(tmp_path: Path):
    context = _context(tmp_path)

    async def run():
        for i in range(5):
            async with context.conversation_lock("admin", f"chat-{i}"):
                pass

    asyncio.run(run())
    gc.collect()

    assert len(context._locks) == 0


def test_chat_keys_differing_only_in_punctuation_stay_separate(tmp_path: Path):
    context = _context(tmp_path)
    context.append_turns("admin", "room a", _turns(2))

    assert context.load_turns("admin", "room:a") == []
    assert context.load_turns("admin", "room_a") == []
    assert len(context.load_turns("admin", "room a")) == 2


def test_audit_log_is_append_only_and_newest_first(tmp_path: Path):
    context = _context(tmp_path)
    entries = []
    for i in range(3):
        entry = AuditLogEntry(
            request_payload={"prompt": f"p{i}"},
            response_payload=f"r{i}",
            credential_id_used="key_1",
            owner_id="admin",
        )
        entries.append(context.append_audit(entry))

    listed = context.list_audit("admin", limit=2)
    assert [e.response_payload for e in listed] == ["r2", "r1"]
    assert context.list_audit("other") == []

    with pytest.raises(ValueError):
        context.append_audit(entries[0])


def test_contact_context_summary_is_truncated(tmp_path: Path):
    context = _context(tmp_path)
    contact = context.get_or_create_contact("user-1", "telegram", "42", "admin")
    again = context.get_or_create_contact("user-1", "telegram", "42", "admin")
    assert contact.id == again.id

    updated = context.update_contact_summary("user-1", "telegram", "admin", "x" * 500)
    assert updated is not None
    assert len(updated.context_summary) == 200
    assert context.update_contact_summary("nobody", "telegram", "admin", "hi") is None

    context.get_or_create_contact("user-1", "whatsapp", "15550001", "admin")
    assert {c.platform for c in context.contacts_for_user("user-1", "admin")} == {
        "telegram",
        "whatsapp",
    }
    assert len(context.recent_contacts("admin", limit=1)) == 1


def test_playground_history_and_sessions(tmp_path: Path):
    context = _context(tmp_path)
    context.save_playground_message("default", "user", "hello", "admin")
    context.save_playground_message("default", "assistant", "hi there", "admin")
    context.save_playground_message("other", "user", "second chat", "admin")

    history = context.playground_history("admin", "default")
    assert [m.role for m in history] == ["user", "assistant"]

    sessions = {s["chat_id"]: s["message_count"] for s in context.playground_sessions("admin")}
    assert sessions == {"default": 2, "other": 1}

    assert context.delete_playground_session("admin", "default") == 2
    assert context.playground_history("admin", "default") == []
    assert context.clear_playground("admin") == 1
    assert context.playground_sessions("admin") == []
