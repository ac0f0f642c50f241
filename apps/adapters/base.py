"""Application server adapter contract shared by the TTN, TTNv3 and ChirpStack variants."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, FrozenSet, List, Optional, Sequence, Tuple, Union

from apps.repositories.models import DeviceRecord, GroupKey, ProviderIdentity
from apps.services.app_server_config import AppServerConfig
from apps.services.errors import AdapterStateError, AppServerStartError, UplinkFormatError
from apps.telemetry.logging import get_logger
from apps.telemetry.metrics import record_dropped, record_uplink, set_subscribed_topics
from .mqtt_binding import MQTTBinding

UplinkPayload = Union[Dict[str, Any], str, None]


class AdapterState(str, Enum):
    CREATED = "created"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


@dataclass(frozen=True)
class NormalizedUplink:
    """Provider independent view of one uplink.

    ``payload`` is ``None`` when the message carried nothing usable for the
    configured data model.
    """

    device_id: Optional[str]
    device_eui: Optional[str]
    payload: UplinkPayload


UplinkHandler = Callable[["AppServerAdapter", Optional[str], Optional[str], UplinkPayload], Awaitable[None]]
BindingFactory = Callable[..., MQTTBinding]


class AppServerAdapter(ABC):
    """One LoRaWAN application server connection and its subscriptions.

    Lifecycle: created -> starting -> running -> stopping -> stopped. Topics
    are only ever subscribed while running, and ``stop`` removes all of them
    before the transport disconnects.
    """

    provider: ProviderIdentity

    def __init__(
        self,
        *,
        config: AppServerConfig,
        message_handler: UplinkHandler,
        group_key: Optional[GroupKey] = None,
        binding_factory: Optional[BindingFactory] = None,
    ) -> None:
        if not config.application_id:
            raise ValueError(f"applicationId is mandatory for {self.provider.value}")
        self._config = config
        self._message_handler = message_handler
        self._group_key = group_key
        self._binding_factory = binding_factory or MQTTBinding
        self._binding: Optional[MQTTBinding] = None
        self._state = AdapterState.CREATED
        self._devices: Dict[str, DeviceRecord] = {}
        self._device_euis: Dict[str, Optional[str]] = {}
        self._logger = get_logger(
            "app_server",
            provider=self.provider.value,
            application_id=config.application_id,
        )

    @property
    def config(self) -> AppServerConfig:
        return self._config

    @property
    def group_key(self) -> Optional[GroupKey]:
        return self._group_key

    @property
    def state(self) -> AdapterState:
        return self._state

    @property
    def application_id(self) -> str:
        return self._config.application_id

    @property
    def identity(self) -> Tuple[ProviderIdentity, str, Optional[str]]:
        return self._config.identity

    @property
    def topics(self) -> FrozenSet[str]:
        if self._binding is None:
            return frozenset()
        return self._binding.topics

    # Lifecycle

    async def start(self) -> None:
        """Connect the transport and bind ``pre_process_message`` as its listener."""

        if self._state is not AdapterState.CREATED:
            raise AdapterStateError(f"cannot start adapter in state {self._state.value}")
        self._state = AdapterState.STARTING
        self._binding = self._binding_factory(
            host=self._config.host,
            username=self._config.username,
            password=self._config.password,
            listener=self.pre_process_message,
        )
        try:
            await self._binding.start()
        except Exception as exc:
            self._state = AdapterState.STOPPED
            self._logger.error(f"Error connecting to MQTT server: {exc!r}")
            raise AppServerStartError(f"Error starting {self.provider.value} application server") from exc
        self._state = AdapterState.RUNNING
        self._logger.info("Application server started")

    async def stop(self) -> None:
        """Unsubscribe every topic, then disconnect. Returns once fully stopped."""

        if self._state in (AdapterState.STOPPING, AdapterState.STOPPED):
            return
        if self._state is AdapterState.CREATED or self._binding is None:
            self._state = AdapterState.STOPPED
            return
        self._state = AdapterState.STOPPING
        try:
            for topic in sorted(self._binding.topics):
                await self._binding.unsubscribe(topic)
            await self._binding.stop()
        finally:
            self._state = AdapterState.STOPPED
            self._refresh_topic_gauge()
        self._logger.info("Application server stopped")

    def _require_running(self) -> MQTTBinding:
        if self._state is not AdapterState.RUNNING or self._binding is None:
            raise AdapterStateError(f"adapter is {self._state.value}, expected running")
        return self._binding

    # Subscriptions

    @classmethod
    def validate_device(cls, device_id: Optional[str], device_eui: Optional[str]) -> None:
        """Reject a device this variant cannot subscribe to; raises ``ProvisioningValidationError``."""

    @abstractmethod
    def device_topics(self, device_id: Optional[str], device_eui: Optional[str]) -> List[str]:
        """Topics carrying uplinks of a single device."""

    @abstractmethod
    def wildcard_topics(self) -> List[str]:
        """Topics carrying uplinks of every device in the application."""

    async def observe_device(self, device_id: Optional[str], device_eui: Optional[str]) -> None:
        binding = self._require_running()
        await self._subscribe_all(binding, self.device_topics(device_id, device_eui))

    async def stop_observing_device(self, device_id: Optional[str], device_eui: Optional[str]) -> None:
        await self._unsubscribe_all(self.device_topics(device_id, device_eui))

    async def observe_all_devices(self) -> None:
        binding = self._require_running()
        await self._subscribe_all(binding, self.wildcard_topics())

    async def stop_observe_all_devices(self) -> None:
        await self._unsubscribe_all(self.wildcard_topics())

    async def _subscribe_all(self, binding: MQTTBinding, topics: Sequence[str]) -> None:
        for topic in topics:
            await binding.subscribe(topic)
            self._logger.info(f"MQTT topic subscribed: {topic}")
        self._refresh_topic_gauge()

    async def _unsubscribe_all(self, topics: Sequence[str]) -> None:
        if self._binding is None:
            return
        for topic in topics:
            if topic in self._binding.topics:
                await self._binding.unsubscribe(topic)
                self._logger.info(f"MQTT topic unsubscribed: {topic}")
        self._refresh_topic_gauge()

    def _refresh_topic_gauge(self) -> None:
        set_subscribed_topics(self.provider.value, self.application_id, len(self.topics))

    # Device cache

    def cache_device(self, device_id: str, device_eui: Optional[str], device: DeviceRecord) -> None:
        self._devices[device_id] = device
        self._device_euis[device_id] = device_eui.lower() if device_eui else None

    async def add_device(self, device_id: str, device_eui: Optional[str], device: DeviceRecord) -> None:
        """Cache a provisioned device and subscribe its single-device topics."""

        await self.observe_device(device_id, device_eui)
        self.cache_device(device_id, device_eui, device)

    async def remove_device(self, device_id: str, device_eui: Optional[str]) -> None:
        self._devices.pop(device_id, None)
        self._device_euis.pop(device_id, None)
        await self.stop_observing_device(device_id, device_eui)

    def get_device(self, device_id: str) -> Optional[DeviceRecord]:
        return self._devices.get(device_id)

    def get_device_by_eui(self, device_eui: Optional[str]) -> Optional[DeviceRecord]:
        if not device_eui:
            return None
        wanted = device_eui.lower()
        for device_id, eui in self._device_euis.items():
            if eui == wanted:
                return self._devices.get(device_id)
        return None

    def data_model_for(self, device_id: Optional[str] = None, device_eui: Optional[str] = None) -> Optional[str]:
        """Device level ``lorawan.data_model`` wins over the application's."""

        device = self.get_device(device_id) if device_id else self.get_device_by_eui(device_eui)
        if device is not None and device.data_model:
            return device.data_model
        return self._config.data_model

    # Inbound messages

    @abstractmethod
    def parse_message(self, topic: str, raw: bytes) -> NormalizedUplink:
        """Turn one transport message into a normalized uplink; raises ``UplinkFormatError``."""

    async def pre_process_message(self, topic: str, raw: bytes) -> None:
        """Transport listener. Never raises: bad messages are logged and dropped."""

        self._logger.info(f"New message in topic {topic}")
        record_uplink(self.provider.value)
        try:
            uplink = self.parse_message(topic, raw)
        except UplinkFormatError as exc:
            self._logger.error(str(exc))
            record_dropped("bad_format")
            return
        except Exception:
            self._logger.exception(f"Unexpected error parsing message from {topic}")
            record_dropped("parse_error")
            return

        try:
            await self._message_handler(self, uplink.device_id, uplink.device_eui, uplink.payload)
        except Exception:
            self._logger.exception(f"Uplink handler failed for topic {topic}")
            record_dropped("handler_error")

    def _split_topic(self, topic: str, allowed: Sequence[int]) -> List[str]:
        parts = topic.split("/")
        if len(parts) not in allowed:
            raise UplinkFormatError(f"Bad format for a {self.provider.value} topic: {topic}")
        return parts

    @staticmethod
    def _decode_json(raw: Union[bytes, str]) -> Dict[str, Any]:
        try:
            message = json.loads(raw)
        except (ValueError, TypeError) as exc:
            raise UplinkFormatError(f"Error decoding message: {exc}") from exc
        if not isinstance(message, dict):
            raise UplinkFormatError("Error decoding message: body is not a JSON object")
        return message

    def snapshot(self) -> Dict[str, Any]:
        group = self._group_key
        return {
            "provider": self.provider.value,
            "application_id": self.application_id,
            "tenant_id": self._config.tenant_id,
            "host": self._config.host,
            "state": self._state.value,
            # The apikey authenticates southbound devices and stays out of listings.
            "group": None
            if group is None
            else {"service": group.service, "subservice": group.subservice, "resource": group.resource},
            "topics": sorted(self.topics),
            "devices": sorted(self._devices),
        }


__all__ = [
    "AdapterState",
    "AppServerAdapter",
    "BindingFactory",
    "NormalizedUplink",
    "UplinkHandler",
    "UplinkPayload",
]
