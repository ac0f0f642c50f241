"""In-process implementations of the external collaborators.

Used for local runs and tests; production deployments point the
``LORABRIDGE_*`` settings at their own store, translator and updater.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from typing import Any, Dict, List, Optional, Tuple

from apps.repositories.base import AttributeUpdate
from apps.repositories.models import DeviceRecord, GroupConfig, GroupKey

logger = logging.getLogger(__name__)


class InMemoryProvisioningStore:
    """Groups and devices kept in dictionaries."""

    def __init__(self) -> None:
        self._groups: Dict[GroupKey, GroupConfig] = {}
        self._devices: Dict[Tuple[str, str, str], DeviceRecord] = {}
        self._lock = asyncio.Lock()

    async def add_group(self, group: GroupConfig) -> GroupConfig:
        async with self._lock:
            self._groups[group.key] = group
        return group

    async def remove_group(self, group_key: GroupKey) -> None:
        async with self._lock:
            self._groups.pop(group_key, None)

    async def load_group_config(self, group_key: GroupKey) -> Optional[GroupConfig]:
        async with self._lock:
            return self._groups.get(group_key)

    async def provision_device(self, device: DeviceRecord) -> DeviceRecord:
        key = (device.id, device.service, device.subservice)
        async with self._lock:
            if key in self._devices:
                raise ValueError(f"device already provisioned: {device.id}")
            self._devices[key] = copy.deepcopy(device)
        logger.info(f"Device provisioned: {device.id}")
        return device

    async def remove_device(self, device_id: str, service: str, subservice: str) -> None:
        async with self._lock:
            self._devices.pop((device_id, service, subservice), None)

    async def get_device(self, device_id: str, service: str, subservice: str) -> Optional[DeviceRecord]:
        async with self._lock:
            device = self._devices.get((device_id, service, subservice))
        return copy.deepcopy(device) if device else None

    async def list_groups(self, page_size: int, offset: int) -> List[GroupConfig]:
        async with self._lock:
            groups = list(self._groups.values())
        return groups[offset:offset + page_size]

    async def list_devices(self) -> List[DeviceRecord]:
        async with self._lock:
            return [copy.deepcopy(device) for device in self._devices.values()]


def _attribute_type(value: Any) -> str:
    if isinstance(value, bool):
        return "Boolean"
    if isinstance(value, (int, float)):
        return "Number"
    if isinstance(value, (dict, list)):
        return "StructuredValue"
    return "Text"


class JSONObjectTranslator:
    """Maps a decoded JSON object to one attribute update per key.

    Keys matching an active attribute's ``object_id`` are renamed to the
    attribute ``name``. Raw (undecoded) payloads yield no updates.
    """

    async def translate(self, payload: Any, device: DeviceRecord) -> List[AttributeUpdate]:
        if not isinstance(payload, dict):
            return []
        aliases = {
            attribute.get("object_id"): attribute
            for attribute in device.active
            if isinstance(attribute, dict) and attribute.get("object_id")
        }
        updates: List[AttributeUpdate] = []
        for key, value in payload.items():
            attribute = aliases.get(key, {})
            updates.append(
                {
                    "name": attribute.get("name", key),
                    "type": attribute.get("type", _attribute_type(value)),
                    "value": value,
                }
            )
        return updates


class LoggingContextUpdater:
    """Logs each update instead of calling a context broker; keeps no state."""

    async def push_update(
        self,
        device_name: str,
        device_type: str,
        updates: List[AttributeUpdate],
        device: DeviceRecord,
    ) -> None:
        names = ", ".join(str(update.get("name")) for update in updates)
        logger.info(f"Context update: {device_name} ({device_type}) attributes=[{names}]")


class RecordingContextUpdater:
    """Keeps every pushed update in memory; meant for tests and short local runs."""

    def __init__(self) -> None:
        self.updates: List[Tuple[str, str, List[AttributeUpdate]]] = []

    async def push_update(
        self,
        device_name: str,
        device_type: str,
        updates: List[AttributeUpdate],
        device: DeviceRecord,
    ) -> None:
        self.updates.append((device_name, device_type, list(updates)))
        logger.debug(f"Context update recorded: {device_name} attributes={len(updates)}")


__all__ = [
    "InMemoryProvisioningStore",
    "JSONObjectTranslator",
    "LoggingContextUpdater",
    "RecordingContextUpdater",
]
