"""Provisioning handlers for device groups and individual devices."""

from __future__ import annotations

import logging
from typing import Optional

from apps.adapters.base import AppServerAdapter
from apps.repositories.models import DeviceRecord, GroupConfig, find_lorawan_section
from apps.services.app_server_config import AppServerConfig, resolve_app_server_config
from apps.services.app_server_registry import AppServerRegistry
from apps.services.errors import ProvisioningValidationError

logger = logging.getLogger(__name__)


def _resolve(internal_attributes) -> AppServerConfig:
    if not internal_attributes:
        raise ProvisioningValidationError(
            "internal_attributes is mandatory to define specific agent configuration"
        )
    return resolve_app_server_config(find_lorawan_section(internal_attributes))


class ProvisioningService:
    """Validates provisioning requests and applies them to the registry.

    Validation happens before the registry is touched, so a rejected request
    leaves no adapter behind.
    """

    def __init__(self, registry: AppServerRegistry) -> None:
        self._registry = registry

    async def register_configuration(self, group: GroupConfig) -> AppServerAdapter:
        """Bind the group's application server and observe every device in it."""

        logger.info(f"Configuration provisioning: {group.key}")
        config = _resolve(group.internal_attributes)
        adapter = await self._registry.register_app_server(config, group.key)
        await adapter.observe_all_devices()
        return adapter

    async def remove_configuration(self, group: GroupConfig) -> bool:
        logger.info(f"Removing configuration: {group.key}")
        return await self._registry.remove_app_server_by_group_key(group.key)

    async def register_device(self, device: DeviceRecord) -> AppServerAdapter:
        """Bind the device's application server and subscribe its single-device topics."""

        logger.info(f"Device provisioning: {device.id}")
        config = _resolve(device.internal_attributes)
        self._registry.validate_device(config, device.id, device.eui)
        adapter = await self._registry.register_app_server(config, None)
        await adapter.add_device(device.id, device.eui, device)
        return adapter

    async def remove_device(self, device: DeviceRecord) -> bool:
        logger.info(f"Removing device: {device.id}")
        config = _resolve(device.internal_attributes)
        return await self._registry.remove_device(config.identity, device.id, device.eui)

    def owning_app_server(self, device: DeviceRecord) -> Optional[AppServerAdapter]:
        config = _resolve(device.internal_attributes)
        return self._registry.find_by_identity(config.identity)


__all__ = ["ProvisioningService"]
