"""Startup/shutdown of the agent: rebuilds adapters from persisted provisioning data."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from django.conf import settings
from django.utils.functional import SimpleLazyObject
from django.utils.module_loading import import_string

from apps.repositories.base import ProvisioningStore
from apps.repositories.models import DeviceRecord, GroupConfig, find_lorawan_section
from apps.services.app_server_registry import AppServerRegistry
from apps.services.message_router import UplinkRouter
from apps.services.provisioning import ProvisioningService

logger = logging.getLogger(__name__)


def group_from_type(type_name: str, definition: Dict[str, Any]) -> GroupConfig:
    """Build a group from a statically configured type definition."""

    return GroupConfig(
        service=definition.get("service", ""),
        subservice=definition.get("subservice", ""),
        apikey=definition.get("apikey", ""),
        resource=definition.get("resource", ""),
        type=type_name,
        attributes=list(definition.get("attributes", [])),
        lazy=list(definition.get("lazy", [])),
        commands=list(definition.get("commands", [])),
        static_attributes=list(definition.get("static_attributes", [])),
        internal_attributes=definition.get("internal_attributes", {}),
    )


def load_static_types() -> Dict[str, Dict[str, Any]]:
    types = getattr(settings, "LORABRIDGE_TYPES", None) or {}
    path = getattr(settings, "LORABRIDGE_TYPES_FILE", None)
    if path:
        types = {**json.loads(Path(path).read_text(encoding="utf-8")), **types}
    return types


class Bootstrap:
    """Owns the wired registry, router and provisioning handlers of one process."""

    def __init__(
        self,
        *,
        store: ProvisioningStore,
        registry: AppServerRegistry,
        provisioning: ProvisioningService,
        page_size: int = 100,
        static_types: Optional[Dict[str, Dict[str, Any]]] = None,
    ) -> None:
        self.store = store
        self.registry = registry
        self.provisioning = provisioning
        self._page_size = page_size
        self._static_types = static_types or {}

    async def startup(self) -> None:
        await self.load_types_from_config()
        await self.load_groups()
        await self.load_devices()
        logger.info(f"Bootstrap finished; application servers: {len(self.registry.adapters)}")

    async def shutdown(self) -> None:
        logger.info("Stopping IoT Agent")
        await self.registry.stop_all()
        logger.info("Agent stopped")

    async def load_types_from_config(self) -> None:
        logger.info("Loading types from configuration file")
        groups = [
            group_from_type(type_name, definition)
            for type_name, definition in self._static_types.items()
            if "lorawan" in find_lorawan_section(definition.get("internal_attributes"))
        ]
        await self._register_groups(groups, "configuration file")

    async def load_groups(self) -> None:
        logger.info("Loading services from registry")
        groups: List[GroupConfig] = []
        offset = 0
        while True:
            page = await self.store.list_groups(self._page_size, offset)
            groups.extend(page)
            if len(page) < self._page_size:
                break
            offset += self._page_size
        await self._register_groups(groups, "registry")

    async def _register_groups(self, groups: List[GroupConfig], source: str) -> None:
        results = await asyncio.gather(
            *(self.provisioning.register_configuration(group) for group in groups),
            return_exceptions=True,
        )
        errors = [result for result in results if isinstance(result, Exception)]
        for error in errors:
            logger.error(f"Error loading services from {source}: {error}")
        if errors:
            raise errors[0]

    async def load_devices(self) -> None:
        logger.info("Loading devices from registry")
        devices = await self.store.list_devices()
        results = await asyncio.gather(
            *(self._restore_device(device) for device in devices),
            return_exceptions=True,
        )
        errors = [result for result in results if isinstance(result, Exception)]
        for error in errors:
            logger.error(f"Error loading devices: {error}")
        if errors:
            raise errors[0]

    async def _restore_device(self, device: DeviceRecord) -> None:
        owner = self.provisioning.owning_app_server(device)
        if owner is not None and owner.group_key is not None:
            # Auto-provisioned under a group: its wildcard topic already covers the device.
            owner.cache_device(device.id, device.eui, device)
            return
        await self.provisioning.register_device(device)


def build_bootstrap() -> Bootstrap:
    """Wire collaborators named in settings into a ready-to-start agent."""

    store = import_string(settings.LORABRIDGE_PROVISIONING_STORE)()
    translator = import_string(settings.LORABRIDGE_TRANSLATOR)()
    updater = import_string(settings.LORABRIDGE_CONTEXT_UPDATER)()
    registry = AppServerRegistry(message_handler=UplinkRouter(store, translator, updater))
    return Bootstrap(
        store=store,
        registry=registry,
        provisioning=ProvisioningService(registry),
        page_size=int(getattr(settings, "LORABRIDGE_GROUP_PAGE_SIZE", 100)),
        static_types=load_static_types(),
    )


agent = SimpleLazyObject(build_bootstrap)

__all__ = ["Bootstrap", "agent", "build_bootstrap", "group_from_type", "load_static_types"]
