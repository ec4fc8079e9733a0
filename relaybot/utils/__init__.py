"""Utility helpers."""

from relaybot.utils.helpers import ensure_dir, get_data_path, new_id, utc_now

__all__ = ["ensure_dir", "get_data_path", "new_id", "utc_now"]
