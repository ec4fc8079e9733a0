"""Platform integration records: creation, lookup and activation."""

from __future__ import annotations

from typing import Any

from loguru import logger

from relaybot.agent.errors import UnknownPlatformError
from relaybot.store.base import KeyedStore
from relaybot.store.models import PLATFORMS, PlatformIntegration
from relaybot.utils.helpers import utc_now

# Fields without which an adapter cannot reach the platform.
REQUIRED_FIELDS: dict[str, tuple[str, ...]] = {
    "telegram": ("bot_token",),
    "whatsapp": ("access_token", "phone_number_id"),
    "messenger": ("access_token",),
}


class IntegrationManager:
    """CRUD over PlatformIntegration records; the relay core only reads them."""

    def __init__(self, store: KeyedStore):
        self.store = store

    def get(self, integration_id: str) -> PlatformIntegration | None:
        row = self.store.get(PlatformIntegration.COLLECTION, integration_id)
        return PlatformIntegration.model_validate(row) if row else None

    def list_integrations(
        self, owner_id: str | None = None, platform: str | None = None
    ) -> list[PlatformIntegration]:
        filters: dict[str, Any] = {}
        if owner_id:
            filters["owner_id"] = owner_id
        if platform:
            filters["platform"] = platform
        rows = self.store.scan(PlatformIntegration.COLLECTION, **filters)
        return sorted(
            (PlatformIntegration.model_validate(row) for row in rows), key=lambda i: i.created_at
        )

    def add(self, platform: str, owner_id: str, **fields: Any) -> PlatformIntegration:
        if platform not in PLATFORMS:
            raise UnknownPlatformError(platform)
        missing = [name for name in REQUIRED_FIELDS[platform] if not fields.get(name)]
        if missing:
            raise ValueError(f"{platform} integration requires: {', '.join(missing)}")
        integration = PlatformIntegration(platform=platform, owner_id=owner_id, **fields)
        if integration.typing_delay_min > integration.typing_delay_max:
            raise ValueError("typing_delay_min must not exceed typing_delay_max")
        self.store.put(PlatformIntegration.COLLECTION, integration.id, integration.to_record())
        logger.info(f"Added {platform} integration {integration.id} for owner {owner_id}")
        return integration

    def set_status(self, integration_id: str, status: str) -> PlatformIntegration:
        integration = self.get(integration_id)
        if integration is None:
            raise KeyError(f"Unknown integration: {integration_id}")
        integration = PlatformIntegration.model_validate(
            {**integration.to_record(), "status": status, "updated_at": utc_now()}
        )
        self.store.put(PlatformIntegration.COLLECTION, integration.id, integration.to_record())
        return integration

    def toggle(self, integration_id: str) -> PlatformIntegration:
        """Flip active <-> inactive; an errored integration becomes active."""
        integration = self.get(integration_id)
        if integration is None:
            raise KeyError(f"Unknown integration: {integration_id}")
        status = "inactive" if integration.status == "active" else "active"
        logger.info(f"Integration {integration_id} status -> {status}")
        return self.set_status(integration_id, status)

    def remove(self, integration_id: str) -> bool:
        return self.store.delete(PlatformIntegration.COLLECTION, integration_id)
