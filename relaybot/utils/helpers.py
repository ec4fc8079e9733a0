"""Filesystem and identifier helpers."""

import os
import uuid
from datetime import datetime, timezone
from pathlib import Path

PRIMARY_DATA_DIR = ".relaybot"
DATA_DIR_ENV = "RELAYBOT_DATA_DIR"


def ensure_dir(path: Path) -> Path:
    """Create a directory (and parents) if missing and return it."""
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_path() -> Path:
    """
    Resolve the active data directory.

    `RELAYBOT_DATA_DIR` overrides the default `~/.relaybot`. Relative values
    are resolved against the home directory.
    """
    raw = os.environ.get(DATA_DIR_ENV, "").strip()
    home = Path.home()
    if raw:
        candidate = Path(raw).expanduser()
        if not candidate.is_absolute():
            candidate = home / candidate
    else:
        candidate = home / PRIMARY_DATA_DIR
    return ensure_dir(candidate)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    """Short sortable-ish record id, e.g. `key_20250101120000_1a2b3c4d`."""
    stamp = utc_now().strftime("%Y%m%d%H%M%S")
    return f"{prefix}_{stamp}_{uuid.uuid4().hex[:8]}"
