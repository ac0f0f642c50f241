"""Registry of live application server adapters.

Every sequence that reads the adapter list to decide a mutation runs under
one ``asyncio.Lock``. Lookups that only forward a call to an adapter (device
removal) read without the lock.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional, Tuple, Type

from apps.adapters.base import AppServerAdapter, BindingFactory, UplinkHandler
from apps.adapters.chirpstack import ChirpStackAdapter
from apps.adapters.ttn import TTNAdapter
from apps.adapters.ttn_v3 import TTNv3Adapter
from apps.repositories.models import GroupKey, ProviderIdentity
from apps.services.app_server_config import AppServerConfig
from apps.services.errors import AppServerConflictError
from apps.telemetry.metrics import set_active_app_servers

logger = logging.getLogger(__name__)

Identity = Tuple[ProviderIdentity, str, Optional[str]]


class AdapterFactory:
    """Builds the adapter variant for a provider."""

    variants: Dict[ProviderIdentity, Type[AppServerAdapter]] = {
        ProviderIdentity.TTN: TTNAdapter,
        ProviderIdentity.TTN_V3: TTNv3Adapter,
        ProviderIdentity.CHIRPSTACK: ChirpStackAdapter,
    }

    def __init__(self, binding_factory: Optional[BindingFactory] = None) -> None:
        self._binding_factory = binding_factory

    def variant_for(self, provider: ProviderIdentity) -> Type[AppServerAdapter]:
        try:
            return self.variants[provider]
        except KeyError:
            raise ValueError(f"unsupported provider: {provider}") from None

    def create(
        self,
        config: AppServerConfig,
        message_handler: UplinkHandler,
        group_key: Optional[GroupKey] = None,
    ) -> AppServerAdapter:
        variant = self.variant_for(config.provider)
        return variant(
            config=config,
            message_handler=message_handler,
            group_key=group_key,
            binding_factory=self._binding_factory,
        )


class AppServerRegistry:
    """Owns the adapter collection and drives create/replace/remove/stop."""

    def __init__(
        self,
        message_handler: UplinkHandler,
        adapter_factory: Optional[AdapterFactory] = None,
    ) -> None:
        self._message_handler = message_handler
        self._adapter_factory = adapter_factory or AdapterFactory()
        self._adapters: List[AppServerAdapter] = []
        self._lock = asyncio.Lock()

    @property
    def adapters(self) -> Tuple[AppServerAdapter, ...]:
        return tuple(self._adapters)

    def _find_by_group_key(self, group_key: GroupKey) -> Optional[AppServerAdapter]:
        for adapter in self._adapters:
            if adapter.group_key == group_key:
                return adapter
        return None

    def validate_device(self, config: AppServerConfig, device_id: str, device_eui: Optional[str]) -> None:
        """Check a device against its variant before any adapter is created for it."""

        self._adapter_factory.variant_for(config.provider).validate_device(device_id, device_eui)

    def find_by_identity(self, identity: Identity) -> Optional[AppServerAdapter]:
        """Lock-free lookup, only for callers that do not mutate the collection."""

        for adapter in self._adapters:
            if adapter.identity == identity:
                return adapter
        return None

    def _publish_count(self) -> None:
        set_active_app_servers(len(self._adapters))

    async def register_app_server(
        self,
        config: AppServerConfig,
        group_key: Optional[GroupKey] = None,
    ) -> AppServerAdapter:
        """Return the adapter serving ``config``, creating and starting it if needed.

        An adapter already bound to ``group_key`` is stopped and replaced. An
        adapter for the same application in a different scope is a conflict.
        """

        async with self._lock:
            previous = self._find_by_group_key(group_key) if group_key is not None else None
            existing = next(
                (
                    adapter
                    for adapter in self._adapters
                    if adapter is not previous and adapter.identity == config.identity
                ),
                None,
            )
            if existing is not None:
                logger.info(f"LoRaWAN application exists: {config.application_id}")
                if group_key is not None or existing.group_key is not None:
                    message = (
                        f"Could not assign a new type or service to the LoRaWAN application "
                        f"{config.application_id}: already bound to another provisioning scope"
                    )
                    logger.error(message)
                    raise AppServerConflictError(message)
                return existing

            if previous is not None:
                logger.info(f"Updating existing device group configuration: {group_key}")
                # Old adapter must be fully unsubscribed before its replacement subscribes.
                await previous.stop()
                self._adapters.remove(previous)
                self._publish_count()

            logger.info(f"Creating new LoRaWAN application: {config.provider.value}/{config.application_id}")
            adapter = self._adapter_factory.create(config, self._message_handler, group_key)
            await adapter.start()
            self._adapters.append(adapter)
            self._publish_count()
            return adapter

    async def remove_app_server_by_group_key(self, group_key: GroupKey) -> bool:
        async with self._lock:
            adapter = self._find_by_group_key(group_key)
            if adapter is None:
                return False
            logger.info(f"Removing application server of group {group_key}")
            await adapter.stop()
            self._adapters.remove(adapter)
            self._publish_count()
            return True

    async def remove_device(self, identity: Identity, device_id: str, device_eui: Optional[str]) -> bool:
        """Forward a device removal to its adapter; the adapter itself keeps running."""

        adapter = self.find_by_identity(identity)
        if adapter is None:
            logger.warning(f"No application server for removed device {device_id}")
            return False
        await adapter.remove_device(device_id, device_eui)
        return True

    async def stop_all(self) -> None:
        async with self._lock:
            adapters = list(self._adapters)
            for adapter in adapters:
                logger.info(f"Stopping App service: {adapter.application_id}")
            results = await asyncio.gather(*(adapter.stop() for adapter in adapters), return_exceptions=True)
            for adapter, result in zip(adapters, results):
                if isinstance(result, Exception):
                    logger.error(f"Error stopping App service {adapter.application_id}", exc_info=result)
            self._adapters.clear()
            self._publish_count()
        logger.info("All application servers stopped")

    def snapshot(self) -> List[Dict[str, object]]:
        return [adapter.snapshot() for adapter in self._adapters]


__all__ = ["AdapterFactory", "AppServerRegistry", "Identity"]
