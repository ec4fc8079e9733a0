"""JSON file store: one file per record under <root>/<collection>/."""

from __future__ import annotations

import hashlib
import json
import re
import threading
from pathlib import Path
from typing import Any
from urllib.parse import quote

from loguru import logger

from relaybot.utils.helpers import ensure_dir

_SAFE_KEY = re.compile(r"[^A-Za-z0-9._-]+")
_MAX_NAME = 200


def record_filename(key: str) -> str:
    """Collision-free file name for a record key (percent-encoded, hashed when long)."""
    encoded = quote(key, safe="").replace(".", "%2E") or "%"
    if len(encoded) > _MAX_NAME:
        # "%s" never appears in percent-encoded output
        encoded = "%sha256-" + hashlib.sha256(key.encode("utf-8")).hexdigest()
    return f"{encoded}.json"


class JsonFileStore:
    """Store records as JSON documents with atomic tmp+replace writes."""

    def __init__(self, root: Path):
        self.root = ensure_dir(Path(root).expanduser())
        self._lock = threading.RLock()

    def _collection_dir(self, collection: str) -> Path:
        return ensure_dir(self.root / _SAFE_KEY.sub("_", collection))

    def _record_path(self, collection: str, key: str) -> Path:
        return self._collection_dir(collection) / record_filename(key)

    def _safe_read(self, path: Path) -> dict[str, Any] | None:
        try:
            if not path.exists():
                return None
            payload = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Unreadable record {path.name}: {e}")
            return None
        return payload if isinstance(payload, dict) else None

    def _safe_write(self, path: Path, payload: dict[str, Any]) -> None:
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
        tmp_path.replace(path)

    def get(self, collection: str, key: str) -> dict[str, Any] | None:
        with self._lock:
            return self._safe_read(self._record_path(collection, key))

    def put(self, collection: str, key: str, record: dict[str, Any]) -> None:
        with self._lock:
            self._safe_write(self._record_path(collection, key), record)

    def delete(self, collection: str, key: str) -> bool:
        with self._lock:
            path = self._record_path(collection, key)
            if not path.exists():
                return False
            path.unlink()
            return True

    def scan(self, collection: str, **filters: Any) -> list[dict[str, Any]]:
        """Return every record in a collection matching all `field=value` filters."""
        with self._lock:
            records: list[dict[str, Any]] = []
            for path in sorted(self._collection_dir(collection).glob("*.json")):
                payload = self._safe_read(path)
                if payload is None:
                    continue
                if all(payload.get(field) == value for field, value in filters.items()):
                    records.append(payload)
            return records
