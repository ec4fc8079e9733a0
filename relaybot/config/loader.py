"""Load and save the JSON configuration file."""

import json
import re
from pathlib import Path
from typing import Any

from loguru import logger

from relaybot.config.schema import Config
from relaybot.utils.helpers import get_data_path


def get_config_path() -> Path:
    """Config file inside the active data directory."""
    return get_data_path() / "config.json"


def camel_to_snake(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


def snake_to_camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def convert_keys(data: Any, convert) -> Any:
    """Recursively rename dict keys; header maps keep their keys."""
    if isinstance(data, dict):
        converted: dict[str, Any] = {}
        for key, value in data.items():
            new_key = convert(key) if isinstance(key, str) else key
            if new_key in {"extra_headers", "extraHeaders"}:
                converted[new_key] = value
            else:
                converted[new_key] = convert_keys(value, convert)
        return converted
    if isinstance(data, list):
        return [convert_keys(item, convert) for item in data]
    return data


def load_config(config_path: Path | None = None) -> Config:
    """
    Load configuration from disk, falling back to defaults.

    Environment variables (`RELAYBOT_*`) still apply on top of defaults when
    the file is missing or unreadable.
    """
    path = config_path or get_config_path()
    if path.exists():
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
            return Config(**convert_keys(raw, camel_to_snake))
        except (OSError, TypeError, ValueError) as e:
            logger.warning(f"Failed to load config from {path}: {e}; using defaults")
    return Config()


def save_config(config: Config, config_path: Path | None = None) -> Path:
    """Write configuration to disk using camelCase keys."""
    path = config_path or get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = convert_keys(config.model_dump(mode="json"), snake_to_camel)
    path.write_text(json.dumps(payload, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
    return path
