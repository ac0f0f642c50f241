"""Interfaces of the provisioning store, payload translator and context update client."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol

from apps.repositories.models import DeviceRecord, GroupConfig, GroupKey

AttributeUpdate = Dict[str, Any]


class ProvisioningStore(Protocol):
    """Persisted groups and devices, owned by the provisioning layer."""

    async def load_group_config(self, group_key: GroupKey) -> Optional[GroupConfig]:
        ...

    async def provision_device(self, device: DeviceRecord) -> DeviceRecord:
        ...

    async def get_device(self, device_id: str, service: str, subservice: str) -> Optional[DeviceRecord]:
        ...

    async def list_groups(self, page_size: int, offset: int) -> List[GroupConfig]:
        ...

    async def list_devices(self) -> List[DeviceRecord]:
        ...


class PayloadTranslator(Protocol):
    async def translate(self, payload: Any, device: DeviceRecord) -> List[AttributeUpdate]:
        ...


class ContextUpdater(Protocol):
    async def push_update(
        self,
        device_name: str,
        device_type: str,
        updates: List[AttributeUpdate],
        device: DeviceRecord,
    ) -> None:
        ...


__all__ = ["AttributeUpdate", "ContextUpdater", "PayloadTranslator", "ProvisioningStore"]
