"""Routes normalized uplinks to the context broker, provisioning unseen devices first."""

from __future__ import annotations

import asyncio
import logging
from time import perf_counter
from typing import Dict, Optional, Tuple

from apps.adapters.base import AppServerAdapter, UplinkPayload
from apps.repositories.base import ContextUpdater, PayloadTranslator, ProvisioningStore
from apps.repositories.models import DeviceRecord
from apps.telemetry.metrics import observe_context_update, record_dropped, record_provisioned

logger = logging.getLogger(__name__)


class UplinkRouter:
    """Handles one uplink per call; nothing is retried or queued.

    First uplinks of the same unseen device are serialized by a per-device
    lock so only one of them provisions the device.
    """

    def __init__(
        self,
        store: ProvisioningStore,
        translator: PayloadTranslator,
        updater: ContextUpdater,
    ) -> None:
        self._store = store
        self._translator = translator
        self._updater = updater
        self._provisioning_locks: Dict[Tuple[int, str], asyncio.Lock] = {}
        self._provisioning_waiters: Dict[Tuple[int, str], int] = {}

    async def __call__(
        self,
        adapter: Optional[AppServerAdapter],
        device_id: Optional[str],
        device_eui: Optional[str],
        payload: UplinkPayload,
    ) -> None:
        await self.handle_uplink(adapter, device_id, device_eui, payload)

    async def handle_uplink(
        self,
        adapter: Optional[AppServerAdapter],
        device_id: Optional[str],
        device_eui: Optional[str],
        payload: UplinkPayload,
    ) -> None:
        if adapter is None:
            logger.error("Message handler received empty app object")
            record_dropped("missing_app")
            return
        if not device_id:
            logger.error("Message handler received empty deviceId")
            record_dropped("missing_device_id")
            return

        cached = adapter.get_device(device_id)
        if cached is None:
            device = await self._provision_first_seen(adapter, device_id, device_eui)
        else:
            device = await self._load_canonical(device_id, cached)
        if device is None:
            return

        await self._forward(device, payload)

    async def _provision_first_seen(
        self,
        adapter: AppServerAdapter,
        device_id: str,
        device_eui: Optional[str],
    ) -> Optional[DeviceRecord]:
        key = (id(adapter), device_id)
        lock = self._provisioning_locks.setdefault(key, asyncio.Lock())
        self._provisioning_waiters[key] = self._provisioning_waiters.get(key, 0) + 1
        try:
            async with lock:
                return await self._provision_locked(adapter, device_id, device_eui)
        finally:
            # The lock lives as long as any uplink of this device holds or awaits it.
            self._provisioning_waiters[key] -= 1
            if not self._provisioning_waiters[key]:
                del self._provisioning_waiters[key]
                del self._provisioning_locks[key]

    async def _provision_locked(
        self,
        adapter: AppServerAdapter,
        device_id: str,
        device_eui: Optional[str],
    ) -> Optional[DeviceRecord]:
        cached = adapter.get_device(device_id)
        if cached is not None:
            # Provisioned by a concurrent uplink while this one waited.
            return await self._load_canonical(device_id, cached)

        logger.info(f"LoRaWAN device unprovisioned: {device_id}")
        if adapter.group_key is None:
            logger.error(f"No device group bound to application {adapter.application_id}; dropping uplink")
            record_dropped("no_group")
            return None
        try:
            group = await self._store.load_group_config(adapter.group_key)
            if group is None:
                raise LookupError(f"device group not found: {adapter.group_key}")
            device = await self._store.provision_device(DeviceRecord.from_group(device_id, device_eui, group))
        except Exception:
            logger.exception(f"Error auto-provisioning device {device_id}")
            record_dropped("provisioning_failed")
            return None
        if device is None:
            logger.error(f"Unexpected empty provisioning result for {device_id}")
            record_dropped("provisioning_failed")
            return None

        adapter.cache_device(device.id, device_eui, device)
        record_provisioned(adapter.provider.value)
        return device

    async def _load_canonical(self, device_id: str, cached: DeviceRecord) -> Optional[DeviceRecord]:
        # Attribute templates may have changed since the device was cached.
        try:
            device = await self._store.get_device(device_id, cached.service, cached.subservice)
        except Exception:
            logger.exception("Error getting IoTA device object")
            record_dropped("device_lookup_failed")
            return None
        if device is None:
            logger.error(f"Couldn't find device data for DeviceId {device_id}")
            record_dropped("device_not_found")
            return None
        return device

    async def _forward(self, device: DeviceRecord, payload: UplinkPayload) -> None:
        try:
            updates = await self._translator.translate(payload, device)
        except Exception:
            logger.exception(f"Error translating payload of {device.id}")
            updates = None
        if not isinstance(updates, list) or not updates:
            logger.error("Could not cast message to NGSI")
            record_dropped("untranslatable")
            return

        started = perf_counter()
        try:
            await self._updater.push_update(device.name, device.type, updates, device)
        except Exception:
            observe_context_update("error", perf_counter() - started)
            logger.exception("Couldn't send the updated values to the Context Broker due to an error")
            record_dropped("update_failed")
            return
        observe_context_update("success", perf_counter() - started)
        logger.info(f"Observations sent to CB successfully for device {device.id}")


__all__ = ["UplinkRouter"]
