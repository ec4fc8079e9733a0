"""Durable keyed store contract."""

from __future__ import annotations

from typing import Any, Protocol


class KeyedStore(Protocol):
    """
    Minimal durable key/value contract used by the relay core.

    Records are JSON-compatible dicts grouped in named collections. `scan`
    filters by exact field equality (owner, chat key, category...).
    """

    def get(self, collection: str, key: str) -> dict[str, Any] | None:
        ...

    def put(self, collection: str, key: str, record: dict[str, Any]) -> None:
        ...

    def delete(self, collection: str, key: str) -> bool:
        ...

    def scan(self, collection: str, **filters: Any) -> list[dict[str, Any]]:
        ...
