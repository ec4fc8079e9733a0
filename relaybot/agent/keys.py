"""Key pool: per-owner provider credential rotation."""

from __future__ import annotations

from datetime import datetime, timezone

from loguru import logger

from relaybot.agent.errors import NoCredentialsAvailable
from relaybot.store.base import KeyedStore
from relaybot.store.models import Credential
from relaybot.utils.helpers import utc_now

_NEVER = datetime.min.replace(tzinfo=timezone.utc)


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def rotation_key(credential: Credential) -> tuple[bool, datetime, datetime, str]:
    """
    Sort key for least-recently-used rotation.

    Never-used credentials sort first, then ascending `last_used_at`; ties
    fall back to creation order and id so the order is total.
    """
    used = credential.last_used_at is not None
    last_used = _as_utc(credential.last_used_at) if credential.last_used_at else _NEVER
    return (used, last_used, _as_utc(credential.created_at), credential.id)


class KeyPoolManager:
    """
    Owns Credential records and hands out rotation order.

    Failing credentials are never demoted: status only changes through
    `set_status`, so a key that failed on one request is retried on the next.
    """

    def __init__(self, store: KeyedStore):
        self.store = store

    def _load(self, owner_id: str, **filters: str) -> list[Credential]:
        rows = self.store.scan(Credential.COLLECTION, owner_id=owner_id, **filters)
        return [Credential.model_validate(row) for row in rows]

    def select_ordered_candidates(self, owner_id: str) -> list[Credential]:
        """Return the owner's active credentials in LRU order."""
        candidates = sorted(self._load(owner_id, status="active"), key=rotation_key)
        if not candidates:
            raise NoCredentialsAvailable(owner_id)
        return candidates

    def mark_used(self, credential_id: str, timestamp: datetime | None = None) -> Credential:
        """Advance `last_used_at`; only called after a successful completion."""
        credential = self.get(credential_id)
        if credential is None:
            raise KeyError(f"Unknown credential: {credential_id}")
        credential.last_used_at = _as_utc(timestamp) if timestamp else utc_now()
        self.store.put(Credential.COLLECTION, credential.id, credential.to_record())
        return credential

    def get(self, credential_id: str) -> Credential | None:
        row = self.store.get(Credential.COLLECTION, credential_id)
        return Credential.model_validate(row) if row else None

    def add(self, owner_id: str, secret: str) -> Credential:
        secret = (secret or "").strip()
        if not secret:
            raise ValueError("API key must not be empty")
        credential = Credential(secret=secret, owner_id=owner_id)
        self.store.put(Credential.COLLECTION, credential.id, credential.to_record())
        logger.info(f"Added API key {credential.id} for owner {owner_id}")
        return credential

    def list_credentials(self, owner_id: str) -> list[Credential]:
        return sorted(self._load(owner_id), key=lambda item: _as_utc(item.created_at))

    def set_status(self, credential_id: str, status: str) -> Credential:
        credential = self.get(credential_id)
        if credential is None:
            raise KeyError(f"Unknown credential: {credential_id}")
        credential = Credential.model_validate({**credential.to_record(), "status": status})
        self.store.put(Credential.COLLECTION, credential.id, credential.to_record())
        logger.info(f"API key {credential_id} status -> {status}")
        return credential

    def remove(self, credential_id: str) -> bool:
        return self.store.delete(Credential.COLLECTION, credential_id)
